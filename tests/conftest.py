# tests/conftest.py
import os

# Settings are read at import time; required values must exist first.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ALLOWED_ORIGIN", "http://localhost:3000")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import asyncio
import logging
import time
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from fakeredis import aioredis

from model.job import SourceFileRef
from repository.blob_repository import ChunkedBlobStore
from service.drive_source import DownloadResult
from service.job_queue import JobQueue
from service.staging import StagingArea
from service.token_manager import TokenManager
from util.errors import TransferIOError


# FAKES -------------------------------------------------------------------------------------------------------
class FakeSource:
    """Stands in for Google Drive. Records calls and peak concurrency."""

    def __init__(self, fail_ids=(), payloads=None, delay=0.01, write_before_fail=True):
        self.fail_ids = set(fail_ids)
        self.payloads = dict(payloads or {})
        self.delay = delay
        self.write_before_fail = write_before_fail
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.staged_paths = []

    def content_for(self, file_id):
        return self.payloads.get(file_id, f"content-of-{file_id}".encode())

    async def download_to(self, source, access_token, dest: Path):
        self.calls.append((source.id, access_token))
        self.staged_paths.append(dest)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if source.id in self.fail_ids:
                if self.write_before_fail:
                    dest.write_bytes(b"partial")
                raise TransferIOError(f"Download failed: boom {source.id}")
            data = self.content_for(source.id)
            dest.write_bytes(data)
            return DownloadResult(
                path=dest, byte_length=len(data), mime_type="text/plain", name=source.name
            )
        finally:
            self.in_flight -= 1


class TokenEndpoint:
    """httpx.MockTransport handler emulating Google's token endpoint."""

    def __init__(self, status_code=200, access_token="fresh-token", expires_in=3599, error=None):
        self.status_code = status_code
        self.access_token = access_token
        self.expires_in = expires_in
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.requests.append(form)
        if self.error is not None:
            raise self.error
        if self.status_code != 200:
            return httpx.Response(
                self.status_code,
                json={"error": "invalid_grant", "error_description": "Token has been expired or revoked."},
            )
        body = {"access_token": self.access_token, "expires_in": self.expires_in}
        if form.get("grant_type") == "authorization_code":
            body["refresh_token"] = "issued-refresh-token"
        return httpx.Response(200, json=body)

    @property
    def calls(self):
        return len(self.requests)


def make_files(n, prefix="f"):
    return [
        SourceFileRef(
            id=f"{prefix}{i}",
            name=f"document-{i}.txt",
            mime_type="text/plain",
            size=len(f"content-of-{prefix}{i}"),
            url=f"https://drive.google.com/file/d/{prefix}{i}",
        )
        for i in range(1, n + 1)
    ]


# FIXTURES ----------------------------------------------------------------------------------------------------
@pytest_asyncio.fixture(scope="function")
async def redis_client():
    """In-process Redis, emptied per test."""
    client = aioredis.FakeRedis()
    await client.flushall()
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture(scope="function")
async def blob_store(redis_client):
    return ChunkedBlobStore(redis_client)


@pytest.fixture
def job_queue():
    return JobQueue()


@pytest.fixture
def staging(tmp_path):
    return StagingArea(tmp_path / "staging")


@pytest.fixture
def token_endpoint():
    return TokenEndpoint()


@pytest_asyncio.fixture(scope="function")
async def token_manager(token_endpoint):
    http = httpx.AsyncClient(transport=httpx.MockTransport(token_endpoint))
    yield TokenManager(
        client_id="cid",
        client_secret="secret",
        redirect_uri="http://localhost/callback",
        token_url="https://oauth2.example.test/token",
        http=http,
    )
    await http.aclose()


@pytest.fixture
def fresh_expiry():
    return time.time() + 3600


# Logging -----------------------------------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def setup_test_logging():
    """Plain console logging at DEBUG for every test."""
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)
    logging.getLogger("httpx").setLevel(logging.WARNING)
