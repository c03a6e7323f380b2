# service/ingestion_service.py
import asyncio
import logging
from typing import AsyncIterator, Optional
import async_timeout
from config.settings import settings
from model.api import (
    BlobInfoResponse,
    BlobListResponse,
    BlobStatsResponse,
    CreateJobRequest,
    CreateJobResponse,
    JobListResponse,
    JobProgressResponse,
    ProcessorStatsResponse,
)
from model.blob import BlobInfo
from model.job import Job
from model.token import SourceCredentials
from repository.blob_repository import ChunkedBlobStore
from service.batch_processor import BatchTransferProcessor
from service.job_queue import JobQueue
from util.enums import JobStatus
from util.errors import IngestError

logger = logging.getLogger(__name__)


class IngestionService:
    """
    What the HTTP layer talks to. Creates jobs, hands them to the processor as
    supervised background tasks, and serves read-only projections.
    """

    def __init__(
        self,
        jobs: JobQueue,
        processor: BatchTransferProcessor,
        blobs: ChunkedBlobStore,
        *,
        watchdog_seconds: float = settings.JOB_WATCHDOG_SECONDS,
    ) -> None:
        self._jobs = jobs
        self._processor = processor
        self._blobs = blobs
        self._watchdog = float(watchdog_seconds)
        self._tasks: set[asyncio.Task] = set()

    # ---------------- Jobs ----------------

    async def create_job(self, payload: CreateJobRequest) -> CreateJobResponse:
        """
        Register the job and start processing without waiting for it.
        Logs: job id and file count only.
        """
        files = [f.to_ref() for f in payload.sourceFiles]
        job_id = self._jobs.create_job(files, payload.metadata)
        creds = payload.credentials.to_credentials() if payload.credentials else None
        self.submit(job_id, creds)
        logger.info("job.submitted job=%s files=%d", job_id, len(files))
        return CreateJobResponse(jobId=job_id, totalFiles=len(files))

    def submit(self, job_id: str, credentials: Optional[SourceCredentials]) -> asyncio.Task:
        task = asyncio.create_task(
            self._supervise(job_id, credentials), name=f"job:{job_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def _supervise(
        self, job_id: str, credentials: Optional[SourceCredentials]
    ) -> Optional[JobStatus]:
        try:
            async with async_timeout.timeout(self._watchdog):
                return await self._processor.process_job(job_id, credentials)
        except asyncio.TimeoutError:
            message = f"Job watchdog expired after {self._watchdog:g}s"
            logger.error("job.watchdog job=%s", job_id)
            if not self._jobs.status_of(job_id).is_terminal:
                self._jobs.fail(job_id, message)
            return JobStatus.failed

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("job.task.cancelled task=%s", task.get_name())
            return
        exc = task.exception()
        if isinstance(exc, IngestError):
            logger.warning("job.task.rejected task=%s err=%s", task.get_name(), exc)
        elif exc is not None:
            logger.error(
                "job.task.crashed task=%s err=%s", task.get_name(), exc, exc_info=exc
            )

    async def wait_idle(self) -> None:
        """Block until every background job task has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def progress(self, job_id: str) -> JobProgressResponse:
        return JobProgressResponse.from_view(self._jobs.get_progress_snapshot(job_id))

    def list_jobs(
        self, status: Optional[JobStatus], limit: int, offset: int
    ) -> JobListResponse:
        return JobListResponse.from_page(
            self._jobs.list_jobs(status=status, limit=limit, offset=offset)
        )

    def job_detail(self, job_id: str) -> Job:
        return self._jobs.get_job(job_id)

    def stats(self) -> ProcessorStatsResponse:
        s = self._processor.stats()
        return ProcessorStatsResponse(
            currentlyProcessing=s["currently_processing"],
            activeJobs=s["active_jobs"],
            queue=s["queue"],
        )

    # ---------------- Blobs ----------------

    async def open_blob(self, storage_id: str) -> tuple[BlobInfo, AsyncIterator[bytes]]:
        info = await self._blobs.describe(storage_id)
        stream = await self._blobs.retrieve(storage_id, info)
        return info, stream

    async def blob_info(self, storage_id: str) -> BlobInfoResponse:
        return BlobInfoResponse.from_info(await self._blobs.describe(storage_id))

    async def list_blobs(self, limit: int, offset: int) -> BlobListResponse:
        return BlobListResponse.from_page(
            await self._blobs.list_recent(limit=limit, offset=offset)
        )

    async def blob_stats(self) -> BlobStatsResponse:
        return BlobStatsResponse.from_stats(await self._blobs.aggregate_stats())

    async def delete_blob(self, storage_id: str) -> None:
        await self._blobs.delete(storage_id)
