# tests/test_batch_processor.py
import time

import httpx
import pytest
import pytest_asyncio

from conftest import FakeSource, TokenEndpoint, make_files
from model.token import SourceCredentials
from service.batch_processor import BatchTransferProcessor
from service.token_manager import TokenManager
from util.enums import JobStatus
from util.errors import JobStateError, PreconditionError, StoreIOError


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class BrokenBlobs:
    """Consumes the staged file, then fails the write."""

    async def store(self, content, display_name, metadata=None):
        async for _ in content:
            pass
        raise StoreIOError(f"Blob upload failed for {display_name}: connection reset")


def _processor(job_queue, tokens, source, blobs, staging, sleep=None, batch_size=5):
    return BatchTransferProcessor(
        job_queue,
        tokens,
        source,
        blobs,
        staging,
        batch_size=batch_size,
        batch_delay_seconds=1.0,
        sleep=sleep or SleepRecorder(),
    )


def _session(fresh_expiry, access="session-token"):
    return SourceCredentials(access_token=access, refresh_token="refresh-1", expires_at=fresh_expiry)


def _assert_terminal_consistent(job):
    p = job.progress
    assert job.status.is_terminal
    assert p.completed + p.failed == p.total
    assert len(job.results.successful) == p.completed
    assert len(job.results.failed) == p.failed


@pytest_asyncio.fixture(scope="function")
async def rejecting_tokens():
    endpoint = TokenEndpoint(status_code=400)
    http = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    yield TokenManager(token_url="https://oauth2.example.test/token", http=http), endpoint
    await http.aclose()


@pytest.mark.asyncio
async def test_seven_files_two_failing(job_queue, token_manager, token_endpoint, blob_store, staging, fresh_expiry):
    """Batch of five then two, one pause between, failures isolated per file."""
    files = make_files(7)
    source = FakeSource(fail_ids={"f3", "f6"})
    sleep = SleepRecorder()
    processor = _processor(job_queue, token_manager, source, blob_store, staging, sleep)
    job_id = job_queue.create_job(files, {"uploaded_by": "user-1"})

    status = await processor.process_job(job_id, _session(fresh_expiry))

    assert status == JobStatus.completed_with_errors
    assert sleep.delays == [1.0]
    assert source.max_in_flight == 5
    assert {c[0] for c in source.calls[:5]} == {"f1", "f2", "f3", "f4", "f5"}
    assert {c[0] for c in source.calls[5:]} == {"f6", "f7"}
    assert token_endpoint.calls == 0

    job = job_queue.get_job(job_id)
    _assert_terminal_consistent(job)
    assert job.progress.completed == 5
    assert job.progress.failed == 2
    assert {r.source_file.id: r.error_message for r in job.results.failed} == {
        "f3": "Download failed: boom f3",
        "f6": "Download failed: boom f6",
    }
    for record in job.results.successful:
        assert await blob_store.read_all(record.storage_id) == source.content_for(record.source_ref)
        info = await blob_store.describe(record.storage_id)
        assert info.metadata["job_id"] == job_id
        assert info.metadata["uploaded_by"] == "user-1"
        assert info.metadata["source"] == "googledrive"
        assert info.metadata["source_ref"] == record.source_ref
    assert staging.leftovers() == []


@pytest.mark.asyncio
async def test_single_batch_has_no_pause(job_queue, token_manager, blob_store, staging, fresh_expiry):
    sleep = SleepRecorder()
    processor = _processor(job_queue, token_manager, FakeSource(), blob_store, staging, sleep)
    job_id = job_queue.create_job(make_files(5))

    assert await processor.process_job(job_id, _session(fresh_expiry)) == JobStatus.completed
    assert sleep.delays == []
    assert job_queue.get_progress_snapshot(job_id).percentage == 100


@pytest.mark.asyncio
async def test_one_refresh_serves_the_whole_batch(job_queue, token_manager, token_endpoint, blob_store, staging):
    source = FakeSource()
    processor = _processor(job_queue, token_manager, source, blob_store, staging)
    job_id = job_queue.create_job(make_files(5))
    expiring = SourceCredentials(
        access_token="old-token", refresh_token="refresh-1", expires_at=time.time() + 30
    )

    assert await processor.process_job(job_id, expiring) == JobStatus.completed
    assert token_endpoint.calls == 1
    assert {token for _, token in source.calls} == {"fresh-token"}


@pytest.mark.asyncio
async def test_every_refresh_failing_fails_every_file(job_queue, rejecting_tokens, blob_store, staging):
    tokens, endpoint = rejecting_tokens
    source = FakeSource()
    processor = _processor(job_queue, tokens, source, blob_store, staging)
    job_id = job_queue.create_job(make_files(3))
    refresh_only = SourceCredentials(refresh_token="revoked")

    status = await processor.process_job(job_id, refresh_only)

    assert status == JobStatus.completed_with_errors
    job = job_queue.get_job(job_id)
    _assert_terminal_consistent(job)
    assert job.progress.failed == 3
    assert all(r.error_message.startswith("authentication failed:") for r in job.results.failed)
    assert source.calls == []
    assert endpoint.calls == 3


@pytest.mark.asyncio
async def test_missing_credentials_fail_the_job_before_any_transfer(job_queue, token_manager, blob_store, staging):
    source = FakeSource()
    processor = _processor(job_queue, token_manager, source, blob_store, staging)
    job_id = job_queue.create_job(make_files(4))

    with pytest.raises(PreconditionError):
        await processor.process_job(job_id, None)

    view = job_queue.get_progress_snapshot(job_id)
    assert view.status == JobStatus.failed
    assert view.error == "User session with Google Drive access required"
    assert view.progress.completed + view.progress.failed == 0
    assert view.timestamps.completed is not None
    assert source.calls == []


@pytest.mark.asyncio
async def test_non_pending_job_is_left_untouched(job_queue, token_manager, blob_store, staging, fresh_expiry):
    processor = _processor(job_queue, token_manager, FakeSource(), blob_store, staging)
    job_id = job_queue.create_job(make_files(1))
    await processor.process_job(job_id, _session(fresh_expiry))

    with pytest.raises(JobStateError):
        await processor.process_job(job_id, _session(fresh_expiry))
    assert job_queue.status_of(job_id) == JobStatus.completed


@pytest.mark.asyncio
async def test_store_failure_is_per_file_and_staging_is_cleaned(job_queue, token_manager, staging, fresh_expiry):
    source = FakeSource()
    processor = _processor(job_queue, token_manager, source, BrokenBlobs(), staging)
    job_id = job_queue.create_job(make_files(2))

    assert await processor.process_job(job_id, _session(fresh_expiry)) == JobStatus.completed_with_errors

    job = job_queue.get_job(job_id)
    assert job.progress.failed == 2
    assert "connection reset" in job.results.failed[0].error_message
    assert staging.leftovers() == []
    assert all(not p.exists() for p in source.staged_paths)


@pytest.mark.asyncio
async def test_failed_download_does_not_leave_partial_file(job_queue, token_manager, blob_store, staging, fresh_expiry):
    source = FakeSource(fail_ids={"f1"}, write_before_fail=True)
    processor = _processor(job_queue, token_manager, source, blob_store, staging)
    job_id = job_queue.create_job(make_files(1))

    await processor.process_job(job_id, _session(fresh_expiry))

    assert staging.leftovers() == []
    assert (await blob_store.list_recent()).pagination.total == 0


@pytest.mark.asyncio
async def test_stats_report_no_active_jobs_after_finish(job_queue, token_manager, blob_store, staging, fresh_expiry):
    processor = _processor(job_queue, token_manager, FakeSource(), blob_store, staging)
    job_id = job_queue.create_job(make_files(2))
    await processor.process_job(job_id, _session(fresh_expiry))

    stats = processor.stats()
    assert stats["currently_processing"] == 0
    assert stats["active_jobs"] == []
    assert stats["queue"]["by_status"]["completed"] == 1


@pytest.mark.asyncio
async def test_batch_size_must_be_positive(job_queue, token_manager, blob_store, staging):
    with pytest.raises(ValueError):
        _processor(job_queue, token_manager, FakeSource(), blob_store, staging, batch_size=0)


class FailsJobMidBatch(FakeSource):
    """Fails the whole job from outside while the first file is in flight."""

    def __init__(self, jobs, **kw):
        super().__init__(**kw)
        self.jobs = jobs

    async def download_to(self, source, access_token, dest):
        if source.id == "f1":
            self.jobs.fail(self.jobs.list_jobs().jobs[0].job_id, "cancelled by operator")
        return await super().download_to(source, access_token, dest)


@pytest.mark.asyncio
async def test_batch_waits_for_every_file_when_job_is_failed_externally(
    job_queue, token_manager, blob_store, staging, fresh_expiry
):
    source = FailsJobMidBatch(job_queue, delay=0.02)
    processor = _processor(job_queue, token_manager, source, blob_store, staging)
    job_id = job_queue.create_job(make_files(3))

    with pytest.raises(JobStateError):
        await processor.process_job(job_id, _session(fresh_expiry))

    assert len(source.calls) == 3
    assert source.in_flight == 0
    assert staging.leftovers() == []
    assert processor.active_jobs == []
    view = job_queue.get_progress_snapshot(job_id)
    assert view.status == JobStatus.failed
    assert view.error == "cancelled by operator"
