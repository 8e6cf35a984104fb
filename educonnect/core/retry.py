import asyncio
from typing import Awaitable, Callable, TypeVar

from educonnect.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised by with_retry after the last attempt failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException | None) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    backoff: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> T:
    """
    Await `operation()` up to `max_attempts` times, sleeping `backoff` seconds
    between attempts. Returns the first successful result. Exceptions outside
    `retry_on` propagate immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            last_error = exc
            logger.warning(
                "retry_attempt_failed",
                label=label,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(exc),
            )
            if attempt < max_attempts and backoff > 0:
                await asyncio.sleep(backoff)

    raise RetryExhausted(label, max_attempts, last_error)
