# util/enums.py
from enum import Enum
from typing import NamedTuple
from fastapi import status


class Color(str, Enum):
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    BOLD = "\033[1m"

    def __str__(self):
        return self.value


class Environment(str, Enum):
    DEV = "dev"
    PROD = "prod"


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.completed, JobStatus.completed_with_errors, JobStatus.failed}
)


class LogLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class ErrorInfo(NamedTuple):
    code: str
    http_status: int


class ErrorMessage(Enum):
    INVALID_REQUEST = ErrorInfo("invalid_request", status.HTTP_400_BAD_REQUEST)
    NOT_FOUND = ErrorInfo("not_found", status.HTTP_404_NOT_FOUND)
    PRECONDITION_FAILED = ErrorInfo("precondition_failed", status.HTTP_409_CONFLICT)
    AUTH_REQUIRED = ErrorInfo("authentication_required", status.HTTP_401_UNAUTHORIZED)
    STORAGE_ERROR = ErrorInfo("storage_error", status.HTTP_502_BAD_GATEWAY)
    INTERNAL_ERROR = ErrorInfo("internal_error", status.HTTP_500_INTERNAL_SERVER_ERROR)
