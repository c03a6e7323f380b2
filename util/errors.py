# util/errors.py
from fastapi import HTTPException, status


class AppError(HTTPException):
    # Flow: raise AppError to short-circuit with a typed status & message.
    def __init__(
        self, message: str, http_status: int = status.HTTP_400_BAD_REQUEST
    ) -> None:
        super().__init__(status_code=http_status, detail=message)


class IngestError(Exception):
    """Base for everything the ingestion core raises on purpose."""


class InvalidJobError(IngestError):
    """Bad job input; the job never starts."""


class PreconditionError(IngestError):
    """Job cannot run (missing credentials, already running, ...)."""


class JobStateError(PreconditionError):
    """Illegal state-machine transition."""


class AuthRefreshError(IngestError):
    """Credential exchange rejected or unreachable. Fatal for one file, never retried."""


class TransferIOError(IngestError):
    """Download or stream fault for a single file."""


class StoreError(IngestError):
    pass


class StoreTimeoutError(StoreError):
    pass


class StoreIOError(StoreError):
    pass


class NotFoundError(IngestError):
    """Unknown job id or storage handle."""
