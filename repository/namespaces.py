# repository/namespaces.py
from typing import Final

ROOT: Final[str] = "driveingest"

BLOBS: Final[str] = f"{ROOT}:blobs"
BLOB_INDEX: Final[str] = f"{BLOBS}:index"  # zset storage_id -> stored_at ms
BLOB_PENDING: Final[str] = f"{BLOBS}:pending"  # chunks not yet committed
RATE_LIMIT: Final[str] = f"{ROOT}:ratelimit"
