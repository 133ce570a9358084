"""Error taxonomy, retry helper and the in-memory error log.

Every error the services raise derives from ``PortalError`` so the API layer
can translate it to an HTTP response in one place (see ``portal.main``).
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from portal.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PortalError(Exception):
    code = "PORTAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PortalError):
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, field: str, message: str, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class RateLimitExceeded(ValidationError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, operation: str, message: str, reset_at: datetime):
        super().__init__("rateLimit", message)
        self.operation = operation
        self.reset_at = reset_at


class NetworkError(PortalError):
    code = "NETWORK_ERROR"
    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.http_status = status_code
        self.retryable = retryable


class PermissionDenied(PortalError):
    code = "PERMISSION_DENIED"
    status_code = 403


class NotFound(PortalError):
    code = "NOT_FOUND"
    status_code = 404


class AuthenticationRequired(PortalError):
    code = "AUTH_REQUIRED"
    status_code = 401


class FileOperationError(PortalError):
    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = code
        self.timestamp = datetime.now(timezone.utc)


FILE_ERROR_MESSAGES = {
    "FILE_TOO_LARGE": "File is too large. Maximum size is 100MB.",
    "INVALID_FILE_TYPE": "File type not supported. Please choose a different file.",
    "MALWARE_DETECTED": "The file was rejected by the security scan.",
    "UPLOAD_FAILED": "File upload failed. Please try again.",
    "DOWNLOAD_FAILED": "File download failed. Please try again.",
    "DELETE_FAILED": "File deletion failed. Please try again.",
    "PREVIEW_FAILED": "File preview failed. You can still download the file.",
    "AUTH_REQUIRED": "Please sign in to continue.",
    "MAX_RETRIES_EXCEEDED": "The operation kept failing. Please try again later.",
}

GENERIC_MESSAGE = "An unexpected error occurred. Please try again."


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, NetworkError):
        return exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, (OperationalError, InterfaceError)):
        return bool(getattr(exc, "connection_invalidated", False)) or "timeout" in str(exc).lower() \
            or "connection" in str(exc).lower()
    return False


def user_message(exc: BaseException) -> str:
    """Translate any error into text that can be shown to the user."""
    if isinstance(exc, RateLimitExceeded):
        return exc.message
    if isinstance(exc, ValidationError):
        return f"Invalid {exc.field}: {exc.message}"
    if isinstance(exc, NetworkError):
        if exc.http_status == 413:
            return "File is too large. Please choose a smaller file."
        if exc.http_status == 403:
            return "You don't have permission to perform this action."
        if exc.http_status == 404:
            return "The requested resource was not found."
        return "Network error. Please check your connection and try again."
    if isinstance(exc, FileOperationError):
        return FILE_ERROR_MESSAGES.get(exc.code, "File operation failed. Please try again.")
    if isinstance(exc, AuthenticationRequired):
        return "Your session has expired. Please log in again."
    if isinstance(exc, PermissionDenied):
        return "You don't have permission to access this resource."
    if isinstance(exc, NotFound):
        return exc.message

    text = str(exc)
    lowered = text.lower()
    if "JWT" in text:
        return "Your session has expired. Please log in again."
    if "row-level security" in lowered or "RLS" in text:
        return "You don't have permission to access this resource."
    if isinstance(exc, IntegrityError) and ("unique" in lowered or "duplicate key" in lowered):
        return "This item already exists."
    if "duplicate key" in lowered:
        return "This item already exists."
    return GENERIC_MESSAGE


@dataclass
class ErrorRecord:
    code: str
    message: str
    context: Optional[str]
    actor_id: Optional[str]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class ErrorLog:
    """Bounded ring buffer of caught errors, newest last."""

    def __init__(self, max_size: int = 500):
        self._records: deque[ErrorRecord] = deque(maxlen=max_size)

    def record(self, exc: BaseException, context: Optional[str] = None, actor_id: Any = None) -> ErrorRecord:
        entry = ErrorRecord(
            code=getattr(exc, "code", None) or type(exc).__name__,
            message=str(exc),
            context=context,
            actor_id=str(actor_id) if actor_id else None,
        )
        self._records.append(entry)
        logger.warning("error in %s (actor=%s): %s", context, entry.actor_id, entry.message)
        return entry

    def entries(self) -> list[ErrorRecord]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


error_log = ErrorLog(settings.ERROR_LOG_SIZE)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``max_retries`` times with exponential backoff.

    Validation, permission and non-retryable network errors are raised on the
    first attempt. Errors that are not transient are not retried either.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except (ValidationError, PermissionDenied, NotFound, AuthenticationRequired):
            raise
        except NetworkError as exc:
            if not exc.retryable:
                raise
            last_error = exc
        except Exception as exc:
            if not is_transient(exc):
                raise
            last_error = exc

        if attempt < max_retries:
            await sleep(delay * (backoff ** (attempt - 1)))

    raise FileOperationError(
        "MAX_RETRIES_EXCEEDED",
        f"Operation failed after {max_retries} attempts: {last_error}",
        {"attempts": max_retries},
    )
