import time
from datetime import datetime
from typing import Callable

from portal.core.config import settings
from portal.core.errors import RateLimitExceeded, ValidationError


class RateLimiter:
    """Per-actor sliding-window limiter kept in process memory."""

    def __init__(self, max_requests: int = 10, window_seconds: float = 60, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._requests: dict[str, list[float]] = {}

    def _valid(self, identifier: str, now: float) -> list[float]:
        requests = [t for t in self._requests.get(identifier, []) if now - t < self.window_seconds]
        if requests:
            self._requests[identifier] = requests
        else:
            self._requests.pop(identifier, None)
        return requests

    def is_allowed(self, identifier: str) -> bool:
        now = self.clock()
        requests = self._valid(identifier, now)
        if len(requests) >= self.max_requests:
            return False
        requests.append(now)
        self._requests[identifier] = requests
        return True

    def remaining(self, identifier: str) -> int:
        return max(0, self.max_requests - len(self._valid(identifier, self.clock())))

    def reset_time(self, identifier: str) -> float:
        requests = self._valid(identifier, self.clock())
        if not requests:
            return 0
        return min(requests) + self.window_seconds

    def reset(self) -> None:
        self._requests.clear()


class OperationLimits:
    """The upload/download/delete limiters, checked per actor."""

    def __init__(self, limiters: dict[str, RateLimiter]):
        self.limiters = limiters

    @classmethod
    def from_settings(cls, clock: Callable[[], float] = time.time) -> "OperationLimits":
        window = settings.RATE_LIMIT_WINDOW_SECONDS
        return cls({
            "upload": RateLimiter(settings.UPLOAD_RATE_LIMIT, window, clock),
            "download": RateLimiter(settings.DOWNLOAD_RATE_LIMIT, window, clock),
            "delete": RateLimiter(settings.DELETE_RATE_LIMIT, window, clock),
        })

    def check(self, operation: str, actor_id: object) -> None:
        limiter = self.limiters.get(operation)
        if limiter is None:
            raise ValidationError("operation", "Invalid operation", operation)
        identifier = str(actor_id)
        if not limiter.is_allowed(identifier):
            reset_at = datetime.fromtimestamp(limiter.reset_time(identifier))
            raise RateLimitExceeded(
                operation,
                f"Too many {operation} requests. Try again after {reset_at.strftime('%H:%M:%S')}",
                reset_at,
            )


operation_limits = OperationLimits.from_settings()
