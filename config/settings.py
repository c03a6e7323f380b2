# config/settings.py
import os
import sys
from dotenv import load_dotenv
from typing import Optional
from pydantic import ValidationError, Field
from pydantic_settings import BaseSettings
from util.enums import Environment
import logging


if os.getenv("APP_ENV", Environment.DEV) == Environment.DEV:
    load_dotenv()

_log = logging.getLogger("config.settings")


class Settings(BaseSettings):
    # App
    APP_ENV: str = Field(..., validation_alias="APP_ENV")
    REDIS_URL: str = Field(..., validation_alias="REDIS_URL")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, validation_alias="REDIS_MAX_CONNECTIONS")
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 10.0

    # CORS & Limits
    ALLOWED_ORIGIN: str = Field(..., validation_alias="ALLOWED_ORIGIN")
    RATE_LIMIT_ENABLED: bool = Field(default=True, validation_alias="RATE_LIMIT_ENABLED")
    RATE_LIMIT_TIMES: int = Field(default=120, validation_alias="RATE_LIMIT_TIMES")
    RATE_LIMIT_SECONDS: int = Field(default=60, validation_alias="RATE_LIMIT_SECONDS")
    TRUST_PROXY: bool = Field(default=False, validation_alias="TRUST_PROXY")

    # Google OAuth / Drive
    GOOGLE_CLIENT_ID: str = Field(..., validation_alias="GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET: str = Field(..., validation_alias="GOOGLE_CLIENT_SECRET")
    GOOGLE_REDIRECT_URI: str = Field(
        default="http://localhost:8000/api/v1/auth/callback",
        validation_alias="GOOGLE_REDIRECT_URI",
    )
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GOOGLE_DRIVE_API_URL: str = "https://www.googleapis.com/drive/v3"

    # Token cache
    TOKEN_REFRESH_SKEW_SECONDS: int = 5 * 60
    TOKEN_HTTP_TIMEOUT_SECONDS: float = 30.0
    TOKEN_SWEEP_INTERVAL_SECONDS: int = 15 * 60

    # Batch transfer
    BATCH_SIZE: int = Field(default=5, validation_alias="BATCH_SIZE")
    BATCH_DELAY_MS: int = Field(default=1000, validation_alias="BATCH_DELAY_MS")
    DOWNLOAD_TIMEOUT_SECONDS: float = 30.0
    METADATA_TIMEOUT_SECONDS: float = 10.0
    UPLOAD_TIMEOUT_SECONDS: float = 30.0
    JOB_WATCHDOG_SECONDS: float = 30 * 60
    STAGING_DIR: str = Field(default="temp", validation_alias="STAGING_DIR")

    # Job retention
    JOB_MAX_AGE_HOURS: float = Field(default=24, validation_alias="JOB_MAX_AGE_HOURS")
    JOB_GC_INTERVAL_SECONDS: int = 60 * 60
    JOB_LOG_CAPACITY: int = 100

    # Blob store
    BLOB_CHUNK_SIZE: int = 255 * 1024
    BLOB_PENDING_TTL_SECONDS: int = 60 * 60
    # Unset keeps blobs forever.
    BLOB_RETENTION_DAYS: Optional[float] = Field(default=None, validation_alias="BLOB_RETENTION_DAYS")
    BLOB_CLEANUP_INTERVAL_SECONDS: int = 24 * 60 * 60

    # Logging knobs
    LOGGER_NAME: str = "drive-ingest"
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    LOG_TO_FILE: bool = Field(default=False, validation_alias="LOG_TO_FILE")
    LOG_DIR: str = Field(default="logs", validation_alias="LOG_DIR")
    LOG_FILE_NAME: str = Field(default="app.log", validation_alias="LOG_FILE_NAME")
    LOG_MAX_BYTES: int = Field(
        default=50 * 1024 * 1024, validation_alias="LOG_MAX_BYTES"
    )
    LOG_BACKUP_COUNT: int = Field(default=5, validation_alias="LOG_BACKUP_COUNT")


try:
    settings = Settings()
except ValidationError as e:
    print("❌ Missing/invalid environment variables:", file=sys.stderr)
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", []))
        msg = err.get("msg", "")
        print(f" - {loc}: {msg}", file=sys.stderr)
    sys.exit(1)
except Exception as e:
    print(f"❌ Settings initialization failed: {e}", file=sys.stderr)
    sys.exit(1)
