"""core.cancellation

A single end-to-end cancellation flag threaded through every network call.

Cancelling sets the flag and runs registered callbacks (e.g. closing the HTTP
client so the in-flight request is aborted). Callers check the flag at every
suspension point with `raise_if_cancelled()`.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from llm_dialect.core.exceptions import OperationCancelledError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe, one-shot cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = 'Operation cancelled') -> None:
        """Fire the token. Idempotent; callbacks run once."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception('Cancellation callback %r failed', callback)

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run callback on cancel (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _unregister() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _unregister
        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self.reason)

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        return f'<CancellationToken cancelled={self.cancelled}>'
