"""core.abc

Abstract base class that *all* transports must implement.

Design goals
============
1. **Dialect-agnostic public API** - the detector and the generation client
    interact exclusively via `send()` passing a `ChatRequest`. They never touch
    SDK objects.
2. **Built-in retry** - `send()` wraps `_send()` in the `with_retry()`
    decorator so every transport inherits the same back-off behaviour.
    Only network-layer failures and retryable statuses are retried; any other
    non-2xx answer surfaces at once as `ProviderHTTPError`.
3. **Cancellation** - the token is checked before every attempt and handed to
    `_send()` so a concrete transport can abort its in-flight request.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from llm_dialect.core.retry import RetryStrategy, with_retry

if TYPE_CHECKING:
    from llm_dialect.core.cancellation import CancellationToken
    from llm_dialect.core.types import ChatRequest, Completion, EndpointProfile


class AbstractTransport(ABC):
    """Sends one chat-completion request to one endpoint."""

    # ---------------------------------------------------------------------
    # Construction
    # ---------------------------------------------------------------------

    def __init__(
        self,
        profile: EndpointProfile,
        *,
        retry_strategy: RetryStrategy | None = None,
    ) -> None:
        """Store the endpoint profile and the retry policy."""
        self._profile: EndpointProfile = profile
        self._retry_strategy: RetryStrategy = retry_strategy or RetryStrategy(
            max_attempts=4,
            base_backoff_sec=1.0,
            max_backoff_sec=60.0,
            jitter=True,
        )

    @property
    def profile(self) -> EndpointProfile:
        return self._profile

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, request: ChatRequest, *, cancel: CancellationToken | None = None) -> Completion:
        """Send request, retrying transient failures.

        Subclasses **must not** override this - override `_send()` instead.

        Raises
        ------
        ProviderHTTPError
            Non-retryable non-2xx answer (raw status and body attached).
        TransportError
            Retry policy exhausted.
        OperationCancelledError
            cancel fired.

        """

        @with_retry(self._retry_strategy, cancel=cancel)
        def _call() -> Completion:  # inner closure captures args
            return self._send(request, cancel)

        return _call()

    # ------------------------------------------------------------------
    # Methods to implement in concrete transports
    # ------------------------------------------------------------------

    @abstractmethod
    def _send(self, request: ChatRequest, cancel: CancellationToken | None) -> Completion:
        """Transport-specific **blocking** implementation (to be overridden)."""

    def close(self) -> None:  # noqa: B027 - optional hook
        """Release resources held by the transport."""

    # ------------------------------------------------------------------
    # Debugging
    # ------------------------------------------------------------------

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        return f'<{self.__class__.__name__} endpoint={self._profile.base_url!r}>'
