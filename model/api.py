# model/api.py
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field
from model.blob import BlobInfo, BlobPage, BlobStats
from model.job import JobPage, ProgressView, SourceFileRef
from model.token import SourceCredentials
from util.enums import JobStatus


class SourceFileIn(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    mimeType: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    url: Optional[str] = None

    def to_ref(self) -> SourceFileRef:
        return SourceFileRef(
            id=self.id,
            name=self.name,
            mime_type=self.mimeType,
            size=self.size,
            url=self.url,
        )


class CredentialsIn(BaseModel):
    accessToken: Optional[str] = None
    refreshToken: Optional[str] = None
    expiresAt: Optional[float] = None  # epoch seconds

    def to_credentials(self) -> SourceCredentials:
        return SourceCredentials(
            access_token=self.accessToken,
            refresh_token=self.refreshToken,
            expires_at=self.expiresAt,
        )


class CreateJobRequest(BaseModel):
    sourceFiles: list[SourceFileIn] = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    credentials: Optional[CredentialsIn] = None


class CreateJobResponse(BaseModel):
    jobId: str
    totalFiles: int
    status: str = JobStatus.processing.value


class ProgressOut(BaseModel):
    total: int
    completed: int
    failed: int
    currentIndex: int
    percentage: int


class TimestampsOut(BaseModel):
    created: datetime
    started: Optional[datetime] = None
    completed: Optional[datetime] = None


class SummaryOut(BaseModel):
    total: int
    completed: int
    failed: int
    remaining: int


class JobProgressResponse(BaseModel):
    jobId: str
    status: JobStatus
    progress: ProgressOut
    currentFile: Optional[str] = None
    timestamps: TimestampsOut
    error: Optional[str] = None
    summary: SummaryOut

    @classmethod
    def from_view(cls, view: ProgressView) -> "JobProgressResponse":
        p = view.progress
        return cls(
            jobId=view.job_id,
            status=view.status,
            progress=ProgressOut(
                total=p.total,
                completed=p.completed,
                failed=p.failed,
                currentIndex=p.current_index,
                percentage=view.percentage,
            ),
            currentFile=view.current_file_name or None,
            timestamps=TimestampsOut(**view.timestamps.model_dump()),
            error=view.error,
            summary=SummaryOut(
                total=p.total,
                completed=p.completed,
                failed=p.failed,
                remaining=view.remaining,
            ),
        )


class PaginationOut(BaseModel):
    total: int
    offset: int
    limit: int
    hasMore: bool


class JobListResponse(BaseModel):
    jobs: list[JobProgressResponse]
    pagination: PaginationOut

    @classmethod
    def from_page(cls, page: JobPage) -> "JobListResponse":
        pg = page.pagination
        return cls(
            jobs=[JobProgressResponse.from_view(v) for v in page.jobs],
            pagination=PaginationOut(
                total=pg.total, offset=pg.offset, limit=pg.limit, hasMore=pg.has_more
            ),
        )


class ProcessorStatsResponse(BaseModel):
    currentlyProcessing: int
    activeJobs: list[str]
    queue: dict[str, Any]


class BlobInfoResponse(BaseModel):
    storageId: str
    displayName: str
    byteLength: int
    storedAt: datetime
    metadata: dict[str, Any]

    @classmethod
    def from_info(cls, info: BlobInfo) -> "BlobInfoResponse":
        return cls(
            storageId=info.storage_id,
            displayName=info.display_name,
            byteLength=info.byte_length,
            storedAt=info.stored_at,
            metadata=info.metadata,
        )


class BlobListResponse(BaseModel):
    blobs: list[BlobInfoResponse]
    pagination: PaginationOut

    @classmethod
    def from_page(cls, page: BlobPage) -> "BlobListResponse":
        pg = page.pagination
        return cls(
            blobs=[BlobInfoResponse.from_info(b) for b in page.blobs],
            pagination=PaginationOut(
                total=pg.total, offset=pg.offset, limit=pg.limit, hasMore=pg.has_more
            ),
        )


class BlobStatsResponse(BaseModel):
    totalObjects: int
    totalBytes: int
    averageBytes: int
    formattedTotalSize: str

    @classmethod
    def from_stats(cls, stats: BlobStats) -> "BlobStatsResponse":
        return cls(
            totalObjects=stats.total_objects,
            totalBytes=stats.total_bytes,
            averageBytes=stats.average_bytes,
            formattedTotalSize=stats.formatted_total_size,
        )
