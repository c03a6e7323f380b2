# service/drive_source.py
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol
import async_timeout
import httpx
from fastapi import status
from config.settings import settings
from model.job import SourceFileRef
from util.constants import ExternalURIs
from util.errors import TransferIOError
from util.timing import timed

logger = logging.getLogger(__name__)


@dataclass
class DownloadResult:
    path: Path
    byte_length: int
    mime_type: Optional[str]
    name: str


class SourceClient(Protocol):
    async def download_to(
        self, source: SourceFileRef, access_token: str, dest: Path
    ) -> DownloadResult: ...


_STATUS_MESSAGES = {
    status.HTTP_401_UNAUTHORIZED: "Google Drive access token expired",
    status.HTTP_403_FORBIDDEN: "Insufficient permissions to download file",
    status.HTTP_404_NOT_FOUND: "File not found in Google Drive",
}


class GoogleDriveSource:
    """
    Streams Drive file content to a local path.
    Metadata is only fetched when the caller's declared size or mime type is
    missing; content always goes through `alt=media`.
    """

    def __init__(
        self,
        *,
        api_url: str = settings.GOOGLE_DRIVE_API_URL,
        download_timeout: float = settings.DOWNLOAD_TIMEOUT_SECONDS,
        metadata_timeout: float = settings.METADATA_TIMEOUT_SECONDS,
        chunk_size: int = 64 * 1024,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._download_timeout = float(download_timeout)
        self._metadata_timeout = float(metadata_timeout)
        self._chunk_size = int(chunk_size)
        self._http = http

    def _file_url(self, file_id: str) -> str:
        return self._api_url + ExternalURIs.GOOGLE_DRIVE_FILE.format(file_id=file_id)

    @staticmethod
    def _headers(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    @staticmethod
    def _status_error(code: int) -> TransferIOError:
        return TransferIOError(_STATUS_MESSAGES.get(code, f"Download failed: HTTP {code}"))

    async def fetch_metadata(self, file_id: str, access_token: str) -> Dict[str, Any]:
        try:
            async with async_timeout.timeout(self._metadata_timeout):
                res = await self._request(
                    "GET",
                    self._file_url(file_id),
                    params={"fields": "name,size,mimeType"},
                    headers=self._headers(access_token),
                )
        except asyncio.TimeoutError:
            raise TransferIOError("Metadata request timeout") from None
        except httpx.HTTPError as e:
            raise TransferIOError(f"Download failed: {type(e).__name__}") from e
        if res.status_code != status.HTTP_200_OK:
            raise self._status_error(res.status_code)
        try:
            data = res.json()
        except ValueError as e:
            raise TransferIOError("Download failed: malformed metadata") from e
        return data if isinstance(data, dict) else {}

    async def _request(self, method: str, url: str, **kw: Any) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(method, url, **kw)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, **kw)

    async def download_to(
        self, source: SourceFileRef, access_token: str, dest: Path
    ) -> DownloadResult:
        mime_type = source.mime_type
        if mime_type is None or source.size is None:
            meta = await self.fetch_metadata(source.id, access_token)
            mime_type = mime_type or meta.get("mimeType")

        with timed(logger, "drive.download", file=source.id) as t:
            try:
                async with async_timeout.timeout(self._download_timeout):
                    written = await self._stream_to(source.id, access_token, dest)
            except asyncio.TimeoutError:
                raise TransferIOError(
                    f"Download timeout ({self._download_timeout:g}s)"
                ) from None
            except httpx.HTTPError as e:
                raise TransferIOError(f"Download failed: {type(e).__name__}: {e}") from e
            t["bytes"] = written

        return DownloadResult(
            path=dest, byte_length=written, mime_type=mime_type, name=source.name
        )

    async def _stream_to(self, file_id: str, access_token: str, dest: Path) -> int:
        client = self._http or httpx.AsyncClient()
        try:
            async with client.stream(
                "GET",
                self._file_url(file_id),
                params={"alt": "media"},
                headers=self._headers(access_token),
            ) as res:
                if res.status_code != status.HTTP_200_OK:
                    await res.aread()
                    raise self._status_error(res.status_code)
                written = 0
                try:
                    with open(dest, "wb") as out:
                        async for chunk in res.aiter_bytes(self._chunk_size):
                            await asyncio.to_thread(out.write, chunk)
                            written += len(chunk)
                except OSError as e:
                    raise TransferIOError(f"Write failed: {e}") from e
                return written
        finally:
            if client is not self._http:
                await client.aclose()
