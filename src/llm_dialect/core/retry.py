"""core.retry

Transport retry policy for network failures and retryable HTTP statuses:
exponential back-off, optional jitter, and the provider's Retry-After hint
when there is one. Only transports use it; detection and self-healing never
retry on their own.
"""

from __future__ import annotations

import functools
import logging
import secrets
import time
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from llm_dialect.core.exceptions import RateLimitExceededError, TransientNetworkError, TransportError

if TYPE_CHECKING:
    from collections.abc import Callable

    from llm_dialect.core.cancellation import CancellationToken

P = ParamSpec('P')
T = TypeVar('T')

logger = logging.getLogger(__name__)


class RetryStrategy(BaseModel):
    """How often and how patiently a transport retries."""

    max_attempts: int = Field(default=4, ge=1, description='first call plus retries')
    base_backoff_sec: float = Field(default=1.0, ge=0.0, description='delay before the second attempt')
    max_backoff_sec: float = Field(default=60.0, ge=0.0, description='cap on every delay, Retry-After included')
    jitter: bool = Field(default=True, description='add up to one second of random delay')

    model_config = ConfigDict(frozen=True)

    def compute_delay(self, attempt_number: int, retry_after: float | None = None) -> float:
        """Seconds to wait after failed attempt attempt_number (1-indexed)."""
        if retry_after is not None:
            return min(max(retry_after, 0.0), self.max_backoff_sec)

        delay = min(self.base_backoff_sec * 2 ** (attempt_number - 1), self.max_backoff_sec)
        if self.jitter:
            delay += secrets.randbelow(101) / 100
        return delay


def _sleep(delay: float, cancel: CancellationToken | None) -> None:
    if cancel is None:
        time.sleep(delay)
    elif cancel.wait(delay):
        cancel.raise_if_cancelled()


def with_retry(
    strategy: RetryStrategy | None = None,
    retry_on: tuple[type[Exception], ...] | None = None,
    *,
    cancel: CancellationToken | None = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorate a transport call with the retry policy.

    Parameters
    ----------
    strategy
        Policy to apply; `RetryStrategy()` when omitted.
    retry_on
        Exceptions worth another attempt. `TransientNetworkError` (and with
        it `RateLimitExceededError`) when omitted.
    cancel
        Checked before every attempt and while backing off.

    Raises
    ------
    TransportError
        Every attempt failed with a retryable error; the last one is chained.

    """
    policy = strategy or RetryStrategy()
    retryable = retry_on or (TransientNetworkError,)

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                attempt += 1
                if cancel is not None:
                    cancel.raise_if_cancelled()
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    if attempt >= policy.max_attempts:
                        raise TransportError(f'Retry limit exceeded after {attempt} attempts: {exc}') from exc
                    retry_after = exc.retry_after if isinstance(exc, RateLimitExceededError) else None
                    delay = policy.compute_delay(attempt, retry_after)
                    logger.warning(
                        'Request failed (%s). Waiting %.2f seconds before retry attempt %d',
                        exc,
                        delay,
                        attempt + 1,
                    )
                    _sleep(delay, cancel)

        return wrapper

    return decorator
