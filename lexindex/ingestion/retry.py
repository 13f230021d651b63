"""
Generic retry wrapper for embedding calls.

The policy is plain data; the wait and sleep are injectable so tests run
without a real clock.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, stop_after_attempt

from lexindex.config import RetrySettings
from lexindex.exceptions import EmbeddingError
from lexindex.logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            multiplier=settings.multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt: 1s, 2s, 4s, ..."""
        return self.base_delay * self.multiplier ** (attempt - 1)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: Optional[str] = None,
) -> T:
    """
    Await ``fn()`` until it succeeds or the policy is exhausted.

    Raises:
        EmbeddingError: After the last attempt, chained to the last error
    """

    def wait(retry_state: RetryCallState) -> float:
        return policy.delay_for(retry_state.attempt_number)

    def before_sleep(retry_state: RetryCallState) -> None:
        log.warning(
            "retrying_after_error",
            label=label,
            attempt=retry_state.attempt_number,
            max_attempts=policy.max_attempts,
            delay_seconds=policy.delay_for(retry_state.attempt_number),
            error=str(retry_state.outcome.exception()),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait,
        retry=retry_if_exception_type(Exception),
        sleep=sleep,
        before_sleep=before_sleep,
    )
    try:
        # fn is usually a plain lambda returning a coroutine: await it inside each attempt
        async for attempt in retrying:
            with attempt:
                return await fn()
    except RetryError as e:
        last_error = e.last_attempt.exception()
        log.error("retries_exhausted", label=label, attempts=policy.max_attempts, error=str(last_error))
        raise EmbeddingError(
            f"{label or 'operation'} failed after {policy.max_attempts} attempts: {last_error}"
        ) from last_error
