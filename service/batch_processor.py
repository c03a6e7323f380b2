# service/batch_processor.py
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from config.settings import settings
from model.job import FileOutcome, SourceFileRef, StoredFileRecord
from model.token import SourceCredentials
from repository.blob_repository import ChunkedBlobStore
from service.drive_source import SourceClient
from service.job_queue import JobQueue
from service.staging import StagingArea
from service.token_manager import TokenManager
from util.constants import SOURCE_GOOGLE_DRIVE
from util.enums import JobStatus
from util.errors import AuthRefreshError, IngestError, JobStateError, PreconditionError
from util.functions import batched
from util.timing import timed

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class _JobContext:
    """State shared by the in-flight files of one job."""

    job_id: str
    refresh_token: str
    access_token: Optional[str]
    metadata: dict[str, Any]
    token_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class BatchTransferProcessor:
    """
    Drives one job from pending to a terminal state.

    Files run in fixed-size batches: every file of a batch runs concurrently,
    the next batch starts only after all of them settled, with a fixed pause
    in between. A file's failure is recorded against that file alone.
    """

    def __init__(
        self,
        jobs: JobQueue,
        tokens: TokenManager,
        source: SourceClient,
        blobs: ChunkedBlobStore,
        staging: StagingArea,
        *,
        batch_size: int = settings.BATCH_SIZE,
        batch_delay_seconds: float = settings.BATCH_DELAY_MS / 1000,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._jobs = jobs
        self._tokens = tokens
        self._source = source
        self._blobs = blobs
        self._staging = staging
        self._batch_size = int(batch_size)
        self._batch_delay = float(batch_delay_seconds)
        self._sleep = sleep
        self._active: set[str] = set()

    @property
    def active_jobs(self) -> list[str]:
        return sorted(self._active)

    async def process_job(
        self, job_id: str, credentials: Optional[SourceCredentials]
    ) -> JobStatus:
        if job_id in self._active:
            raise PreconditionError("Job is already being processed")

        self._active.add(job_id)
        try:
            try:
                ctx = self._prepare(job_id, credentials)
                self._jobs.begin_processing(job_id)
                files = self._jobs.get_job(job_id).source_files
            except JobStateError as e:
                # Someone else owns this job's state; leave it alone.
                logger.warning("job.rejected job=%s err=%s", job_id, e)
                raise
            except IngestError as e:
                logger.warning("job.rejected job=%s err=%s", job_id, e)
                self._fail_if_open(job_id, str(e))
                raise

            try:
                await self._run_batches(ctx, files)
            except IngestError as e:
                logger.error("job.failed job=%s err=%s", job_id, e)
                self._fail_if_open(job_id, str(e))
                raise

            final = self._jobs.finalize(job_id)
            logger.info("job.finished job=%s status=%s", job_id, final.value)
            return final
        finally:
            self._active.discard(job_id)

    def _prepare(
        self, job_id: str, credentials: Optional[SourceCredentials]
    ) -> _JobContext:
        job = self._jobs.get_job(job_id)
        if job.status != JobStatus.pending:
            raise JobStateError(f"Job is not pending (status: {job.status.value})")
        if credentials is None or not credentials.usable:
            raise PreconditionError("User session with Google Drive access required")

        if credentials.access_token and credentials.expires_at:
            self._tokens.remember(
                credentials.access_token,
                credentials.refresh_token,
                credentials.expires_at,
            )
        return _JobContext(
            job_id=job_id,
            refresh_token=credentials.refresh_token or "",
            access_token=credentials.access_token,
            metadata=job.metadata,
        )

    def _fail_if_open(self, job_id: str, message: str) -> None:
        try:
            if not self._jobs.status_of(job_id).is_terminal:
                self._jobs.fail(job_id, message)
        except IngestError as e:
            logger.error("job.fail.error job=%s err=%s", job_id, e)

    async def _run_batches(
        self, ctx: _JobContext, files: tuple[SourceFileRef, ...]
    ) -> None:
        batches = list(batched(files, self._batch_size))
        offset = 0
        for n, batch in enumerate(batches, start=1):
            with timed(logger, "job.batch", job=ctx.job_id, batch=n, size=len(batch)):
                settled = await asyncio.gather(
                    *(
                        self._transfer_one(ctx, offset + i, f)
                        for i, f in enumerate(batch)
                    ),
                    return_exceptions=True,
                )
            for source, result in zip(batch, settled):
                if isinstance(result, BaseException):
                    logger.error(
                        "job.file.unrecorded job=%s file=%s err=%s",
                        ctx.job_id,
                        source.id,
                        result,
                    )
            offset += len(batch)
            if n < len(batches):
                await self._sleep(self._batch_delay)

    async def _acquire_token(self, ctx: _JobContext) -> str:
        # Serialized per job: one refresh serves the batch, the rest hit the cache.
        async with ctx.token_lock:
            token = await self._tokens.get_valid_access_token(
                ctx.refresh_token, ctx.access_token
            )
            ctx.access_token = token
            return token

    async def _transfer_one(
        self, ctx: _JobContext, index: int, source: SourceFileRef
    ) -> None:
        self._jobs.note_file_started(ctx.job_id, index, source.name)
        try:
            record = await self._store_file(ctx, source)
        except AuthRefreshError as e:
            outcome = FileOutcome(
                index=index, source_file=source, error=f"authentication failed: {e}"
            )
        except (IngestError, OSError) as e:
            outcome = FileOutcome(index=index, source_file=source, error=str(e))
        except Exception as e:
            logger.exception("job.file.unexpected job=%s file=%s", ctx.job_id, source.id)
            outcome = FileOutcome(
                index=index, source_file=source, error=str(e) or type(e).__name__
            )
        else:
            outcome = FileOutcome(index=index, source_file=source, record=record)

        if outcome.ok:
            logger.info("job.file.ok job=%s file=%s", ctx.job_id, source.id)
        else:
            logger.warning(
                "job.file.failed job=%s file=%s err=%s",
                ctx.job_id,
                source.id,
                outcome.error,
            )
        self._jobs.record_file_outcome(ctx.job_id, outcome)

    async def _store_file(
        self, ctx: _JobContext, source: SourceFileRef
    ) -> StoredFileRecord:
        access_token = await self._acquire_token(ctx)
        async with self._staging.artifact(source.id, source.name) as path:
            downloaded = await self._source.download_to(source, access_token, path)
            mime_type = source.mime_type or downloaded.mime_type
            metadata = {
                **ctx.metadata,
                "display_name": source.name,
                "declared_mime_type": mime_type,
                "declared_size": source.size,
                "source": SOURCE_GOOGLE_DRIVE,
                "source_ref": source.id,
                "source_url": source.url,
                "job_id": ctx.job_id,
            }
            stored = await self._blobs.store(
                self._staging.iter_file(path), source.name, metadata
            )
        return StoredFileRecord(
            storage_id=stored.storage_id,
            display_name=source.name,
            declared_size=source.size if source.size is not None else downloaded.byte_length,
            declared_mime_type=mime_type,
            source_ref=source.id,
            stored_at=stored.stored_at,
            byte_length=stored.byte_length,
        )

    def stats(self) -> dict[str, Any]:
        return {
            "currently_processing": len(self._active),
            "active_jobs": self.active_jobs,
            "queue": self._jobs.stats().model_dump(),
        }

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Wait for in-flight jobs to drain, giving up after `timeout` seconds."""
        logger.info("processor.stopping active=%d", len(self._active))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self._active and loop.time() < deadline:
            await asyncio.sleep(0.5)
        if self._active:
            logger.warning("processor.stop.timeout still_active=%d", len(self._active))
        else:
            logger.info("processor.stopped")
