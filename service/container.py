# service/container.py
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional
import httpx
from redis.asyncio import Redis
from config.settings import settings
from core.scheduler import PeriodicTask
from repository.blob_repository import ChunkedBlobStore
from repository.job_repository import InMemoryJobRepository
from service.batch_processor import BatchTransferProcessor
from service.drive_source import GoogleDriveSource, SourceClient
from service.ingestion_service import IngestionService
from service.job_queue import JobQueue
from service.staging import StagingArea
from service.token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Explicitly constructed services for one application instance.
    Built in the app lifespan; tests build their own with fakes.
    """

    jobs: JobQueue
    tokens: TokenManager
    blobs: ChunkedBlobStore
    staging: StagingArea
    source: SourceClient
    processor: BatchTransferProcessor
    ingestion: IngestionService
    http: Optional[httpx.AsyncClient] = None
    maintenance: list[PeriodicTask] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        redis: Optional[Redis] = None,
        *,
        http: Optional[httpx.AsyncClient] = None,
        jobs: Optional[JobQueue] = None,
        tokens: Optional[TokenManager] = None,
        source: Optional[SourceClient] = None,
        staging: Optional[StagingArea] = None,
        blob_retention_days: Optional[float] = settings.BLOB_RETENTION_DAYS,
    ) -> "ServiceContainer":
        jobs = jobs or JobQueue(InMemoryJobRepository())
        tokens = tokens or TokenManager(http=http)
        blobs = ChunkedBlobStore(redis)
        staging = staging or StagingArea(settings.STAGING_DIR)
        source = source or GoogleDriveSource(http=http)
        processor = BatchTransferProcessor(jobs, tokens, source, blobs, staging)
        ingestion = IngestionService(jobs, processor, blobs)
        max_age = timedelta(hours=settings.JOB_MAX_AGE_HOURS)
        maintenance = [
            PeriodicTask(
                "job-gc",
                settings.JOB_GC_INTERVAL_SECONDS,
                lambda: jobs.garbage_collect(max_age),
            ),
            PeriodicTask(
                "token-sweep",
                settings.TOKEN_SWEEP_INTERVAL_SECONDS,
                tokens.sweep_expired,
            ),
        ]
        if blob_retention_days is not None:
            maintenance.append(
                PeriodicTask(
                    "blob-cleanup",
                    settings.BLOB_CLEANUP_INTERVAL_SECONDS,
                    lambda: blobs.cleanup_older_than(blob_retention_days),
                )
            )
        return cls(
            jobs=jobs,
            tokens=tokens,
            blobs=blobs,
            staging=staging,
            source=source,
            processor=processor,
            ingestion=ingestion,
            http=http,
            maintenance=maintenance,
        )

    def start_maintenance(self) -> None:
        for task in self.maintenance:
            task.start()

    async def aclose(self, drain_timeout: float = 30.0) -> None:
        for task in self.maintenance:
            await task.stop()
        await self.processor.shutdown(timeout=drain_timeout)
        if self.http is not None:
            await self.http.aclose()
        logger.info("services.closed")
