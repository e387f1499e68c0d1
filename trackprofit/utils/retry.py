"""
Retry utilities with exponential backoff for adapter calls.

Only ``TransientError`` is retried; ``AuthFailed`` and ``InvalidInput``
propagate on the first attempt.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Type
from trackprofit.errors import TransientError
from trackprofit.utils.logger import log


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)

    def mark_success(self):
        self.success = True

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]
        }


DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (TransientError,)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add 0-25% randomness

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base ** (attempt - 1))
    delay = min(delay, max_delay)

    if jitter:
        delay += delay * random.uniform(0, 0.25)

    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
) -> bool:
    """Adapters normalize wire failures first, so the type alone decides."""
    return isinstance(error, retryable_exceptions)


async def retry_call(
    operation: Callable,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    operation_name: str = "operation",
    stats: Optional[RetryStats] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
):
    """
    Await ``operation()`` until it succeeds, fails permanently or attempts run out.

    ``operation`` is a zero-argument callable returning a coroutine, so each
    attempt builds a fresh request.
    """
    stats = stats if stats is not None else RetryStats()
    last_error = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
            stats.record_attempt()
            stats.mark_success()
            if attempt > 1:
                log.info(
                    f"{operation_name} succeeded on attempt {attempt} "
                    f"after {stats.total_delay_seconds:.1f}s total delay"
                )
            return result

        except Exception as e:
            last_error = e

            if attempt >= max_attempts or not is_retryable_error(e, retryable_exceptions):
                stats.record_attempt(error=e)
                log.error(f"{operation_name} failed after {attempt} attempts: {e}")
                raise

            delay = calculate_backoff(attempt, base_delay=base_delay, max_delay=max_delay)
            stats.record_attempt(error=e, delay=delay)

            log.warning(
                f"{operation_name} attempt {attempt} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await asyncio.sleep(delay)

    raise last_error if last_error else RuntimeError("Retry exhausted")
