# model/job.py
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field
from util.constants import JOB_TYPE_GOOGLE_DRIVE
from util.enums import JobStatus, LogLevel


class SourceFileRef(BaseModel):
    """A file as the external store describes it. Frozen once a job owns it."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    mime_type: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None


class StoredFileRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    storage_id: str
    display_name: str
    declared_size: Optional[int] = None
    declared_mime_type: Optional[str] = None
    source_ref: str
    stored_at: datetime
    byte_length: int = 0


class FailedFileRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_file: SourceFileRef
    error_message: str


class FileOutcome(BaseModel):
    """What one transfer produced: exactly one of `record` / `error`."""

    index: int
    source_file: SourceFileRef
    record: Optional[StoredFileRecord] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


class JobProgress(BaseModel):
    total: int
    completed: int = 0
    failed: int = 0
    current_index: int = 0


class JobResults(BaseModel):
    successful: list[StoredFileRecord] = Field(default_factory=list)
    failed: list[FailedFileRecord] = Field(default_factory=list)


class JobTimestamps(BaseModel):
    created: datetime
    started: Optional[datetime] = None
    completed: Optional[datetime] = None


class JobLogEntry(BaseModel):
    timestamp: datetime
    level: LogLevel = LogLevel.info
    message: str


class Job(BaseModel):
    id: str
    type: str = JOB_TYPE_GOOGLE_DRIVE
    status: JobStatus = JobStatus.pending
    source_files: tuple[SourceFileRef, ...]
    metadata: dict[str, Any] = Field(default_factory=dict)
    progress: JobProgress
    results: JobResults = Field(default_factory=JobResults)
    current_file_name: str = ""
    timestamps: JobTimestamps
    error: Optional[str] = None
    log: list[JobLogEntry] = Field(default_factory=list)


class ProgressView(BaseModel):
    """Read-only projection handed to pollers."""

    job_id: str
    status: JobStatus
    progress: JobProgress
    current_file_name: str
    timestamps: JobTimestamps
    error: Optional[str] = None
    percentage: int
    remaining: int


class Pagination(BaseModel):
    total: int
    offset: int
    limit: int
    has_more: bool


class JobPage(BaseModel):
    jobs: list[ProgressView]
    pagination: Pagination


class QueueStats(BaseModel):
    total: int
    by_status: dict[str, int]
    total_files_processed: int
    total_files_in_queue: int
