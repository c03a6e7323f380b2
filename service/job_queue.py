# service/job_queue.py
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional
from uuid import uuid4
from config.settings import settings
from model.job import (
    FailedFileRecord,
    FileOutcome,
    Job,
    JobLogEntry,
    JobPage,
    JobProgress,
    JobTimestamps,
    Pagination,
    ProgressView,
    QueueStats,
    SourceFileRef,
)
from repository.job_repository import InMemoryJobRepository, JobRepository
from util.constants import JOB_TYPE_GOOGLE_DRIVE
from util.enums import JobStatus, LogLevel
from util.errors import InvalidJobError, JobStateError, NotFoundError
from util.functions import percentage

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """
    Owns every Job's lifecycle. Other components hold job ids and mutate
    through these methods only; reads hand out copies.

    All mutation happens under one lock with no awaits inside, so concurrent
    file transfers of the same job can report outcomes without lost updates.
    """

    def __init__(
        self,
        repository: Optional[JobRepository] = None,
        *,
        log_capacity: int = settings.JOB_LOG_CAPACITY,
    ) -> None:
        self._repo = repository or InMemoryJobRepository()
        self._log_capacity = max(1, int(log_capacity))
        self._lock = threading.RLock()

    # ---------------- Helpers ----------------

    def _require(self, job_id: str) -> Job:
        job = self._repo.get(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    def _append_log(self, job: Job, message: str, level: LogLevel = LogLevel.info) -> None:
        job.log.append(JobLogEntry(timestamp=_now(), level=level, message=message))
        overflow = len(job.log) - self._log_capacity
        if overflow > 0:
            del job.log[:overflow]
        log_fn = {
            LogLevel.info: logger.info,
            LogLevel.warning: logger.warning,
            LogLevel.error: logger.error,
        }[level]
        log_fn("job.log job=%s msg=%s", job.id, message)

    @staticmethod
    def _view(job: Job) -> ProgressView:
        p = job.progress
        return ProgressView(
            job_id=job.id,
            status=job.status,
            progress=p.model_copy(),
            current_file_name=job.current_file_name,
            timestamps=job.timestamps.model_copy(),
            error=job.error,
            percentage=percentage(p.completed, p.total),
            remaining=p.total - p.completed - p.failed,
        )

    # ---------------- Lifecycle ----------------

    def create_job(
        self,
        source_files: Iterable[SourceFileRef],
        metadata: Optional[dict[str, Any]] = None,
        *,
        job_type: str = JOB_TYPE_GOOGLE_DRIVE,
    ) -> str:
        files = tuple(source_files)
        if not files:
            raise InvalidJobError("No source files provided")
        for f in files:
            if not f.id or not f.name:
                raise InvalidJobError("Invalid file metadata: id and name are required")

        job = Job(
            id=f"job_{uuid4().hex}",
            type=job_type,
            source_files=files,
            metadata=dict(metadata or {}),
            progress=JobProgress(total=len(files)),
            timestamps=JobTimestamps(created=_now()),
        )
        with self._lock:
            self._repo.put(job)
            self._append_log(job, f"Job created with {len(files)} files")
        return job.id

    def begin_processing(self, job_id: str) -> None:
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.pending:
                raise JobStateError(f"Job is not pending (status: {job.status.value})")
            job.status = JobStatus.processing
            job.timestamps.started = _now()
            self._append_log(job, "Job processing started")

    def note_file_started(self, job_id: str, index: int, file_name: str) -> None:
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.processing:
                raise JobStateError(f"Job is not processing (status: {job.status.value})")
            job.progress.current_index = max(job.progress.current_index, index + 1)
            job.current_file_name = file_name
            self._append_log(job, f"Downloading: {file_name}")

    def record_file_outcome(self, job_id: str, outcome: FileOutcome) -> ProgressView:
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.processing:
                raise JobStateError(f"Job is not processing (status: {job.status.value})")
            p = job.progress
            if p.completed + p.failed >= p.total:
                raise JobStateError(f"Job {job_id} already has all {p.total} outcomes")

            if outcome.record is not None:
                job.results.successful.append(outcome.record)
                p.completed += 1
                self._append_log(job, f"Completed: {outcome.source_file.name}")
            else:
                message = outcome.error or "Unknown error"
                job.results.failed.append(
                    FailedFileRecord(source_file=outcome.source_file, error_message=message)
                )
                p.failed += 1
                self._append_log(
                    job, f"Error: {outcome.source_file.name} - {message}", LogLevel.error
                )
            p.current_index = max(p.current_index, outcome.index + 1)
            job.current_file_name = outcome.source_file.name
            return self._view(job)

    def finalize(self, job_id: str) -> JobStatus:
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.processing:
                raise JobStateError(f"Job is not processing (status: {job.status.value})")
            job.status = (
                JobStatus.completed_with_errors
                if job.progress.failed > 0
                else JobStatus.completed
            )
            self._close(job)
            return job.status

    def fail(self, job_id: str, message: str) -> None:
        with self._lock:
            job = self._require(job_id)
            if job.status.is_terminal:
                raise JobStateError(f"Job already finished (status: {job.status.value})")
            job.status = JobStatus.failed
            job.error = message
            self._append_log(job, f"Error: {message}", LogLevel.error)
            self._close(job)

    def _close(self, job: Job) -> None:
        job.timestamps.completed = _now()
        job.current_file_name = ""
        started = job.timestamps.started or job.timestamps.created
        duration = (job.timestamps.completed - started).total_seconds()
        self._append_log(job, f"Job {job.status.value} in {round(duration)}s")

    def add_log(self, job_id: str, message: str, level: LogLevel = LogLevel.info) -> None:
        with self._lock:
            self._append_log(self._require(job_id), message, level)

    # ---------------- Reads ----------------

    def get_progress_snapshot(self, job_id: str) -> ProgressView:
        with self._lock:
            return self._view(self._require(job_id))

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            return self._require(job_id).model_copy(deep=True)

    def status_of(self, job_id: str) -> JobStatus:
        with self._lock:
            return self._require(job_id).status

    def list_jobs(
        self, status: Optional[JobStatus] = None, limit: int = 20, offset: int = 0
    ) -> JobPage:
        limit = max(0, int(limit))
        offset = max(0, int(offset))
        with self._lock:
            jobs = [j for j in self._repo.all() if status is None or j.status == status]
            jobs.sort(key=lambda j: j.timestamps.created, reverse=True)
            page = [self._view(j) for j in jobs[offset : offset + limit]]
        return JobPage(
            jobs=page,
            pagination=Pagination(
                total=len(jobs),
                offset=offset,
                limit=limit,
                has_more=offset + limit < len(jobs),
            ),
        )

    def stats(self) -> QueueStats:
        by_status = {s.value: 0 for s in JobStatus}
        processed = 0
        in_queue = 0
        with self._lock:
            for job in self._repo.all():
                by_status[job.status.value] += 1
                processed += job.progress.completed + job.progress.failed
                in_queue += job.progress.total
            total = self._repo.count()
        return QueueStats(
            total=total,
            by_status=by_status,
            total_files_processed=processed,
            total_files_in_queue=in_queue,
        )

    # ---------------- Retention ----------------

    def garbage_collect(self, max_age: timedelta) -> int:
        """
        Drop finished jobs that completed at least `max_age` ago and jobs that
        never started within `max_age` of creation.
        """
        cutoff = _now() - max_age
        removed = 0
        with self._lock:
            for job in list(self._repo.all()):
                ts = job.timestamps
                if ts.completed is not None:
                    expired = ts.completed <= cutoff
                else:
                    expired = ts.started is None and ts.created <= cutoff
                if expired and self._repo.delete(job.id):
                    removed += 1
        if removed:
            logger.info("job.gc removed=%d", removed)
        return removed
