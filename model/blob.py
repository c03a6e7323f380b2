# model/blob.py
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field
from util.constants import DEFAULT_MIME_TYPE


class StoredBlob(BaseModel):
    storage_id: str
    byte_length: int
    stored_at: datetime


class BlobInfo(BaseModel):
    storage_id: str
    display_name: str
    byte_length: int
    chunk_size: int
    chunk_count: int
    stored_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return str(
            self.metadata.get("declared_mime_type") or DEFAULT_MIME_TYPE
        )


class BlobPagination(BaseModel):
    total: int
    offset: int
    limit: int
    has_more: bool


class BlobPage(BaseModel):
    blobs: list[BlobInfo]
    pagination: BlobPagination


class BlobStats(BaseModel):
    total_objects: int
    total_bytes: int
    average_bytes: int
    formatted_total_size: str
