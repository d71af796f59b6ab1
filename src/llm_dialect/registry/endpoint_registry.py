"""registry.endpoint_registry

Global, ordered table of URL patterns and the endpoint facts they imply
(auth header style, whether a key is needed at all).

Provider knowledge lives here as data: supporting a new vendor means
registering one more `EndpointPattern`, never adding a branch to the resolver.
The registry is a pure domain helper with no SDK imports so that it can be
imported freely from any layer.
"""

from __future__ import annotations

import ipaddress
import re
import threading
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from llm_dialect.core.types import AuthStyle

if TYPE_CHECKING:
    from collections.abc import Sequence
    from urllib.parse import SplitResult


def is_loopback_host(host: str | None) -> bool:
    """True for ``localhost`` (and subdomains) and loopback IP literals."""
    if not host:
        return False
    host = host.strip('[]').lower()
    if host == 'localhost' or host.endswith('.localhost'):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


class EndpointPattern(BaseModel):
    """One row of the table: a URL predicate and the facts it yields.

    A fact left as None means "this row has no opinion"; the resolver keeps
    walking the table for it.
    """

    name: str
    host_pattern: str | None = Field(None, description='regex searched in the lower-cased host')
    path_pattern: str | None = Field(None, description='regex searched in the lower-cased path')
    loopback: bool = Field(False, description='match loopback hosts')
    auth_style: AuthStyle | None = None
    requires_auth: bool | None = None

    model_config = ConfigDict(frozen=True)

    def matches(self, url: SplitResult) -> bool:
        host = (url.hostname or '').lower()
        path = (url.path or '').lower()
        if self.loopback and not is_loopback_host(host):
            return False
        if self.host_pattern is not None and not re.search(self.host_pattern, host):
            return False
        if self.path_pattern is not None and not re.search(self.path_pattern, path):
            return False
        return self.loopback or self.host_pattern is not None or self.path_pattern is not None


class _ThreadSafeSingleton(type):
    """Metaclass ensuring a single registry instance across threads."""

    _instance: EndpointRegistry | None = None
    _lock = threading.Lock()

    def __call__(cls, *args: object, **kwargs: object) -> EndpointRegistry:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__call__(*args, **kwargs)
        return cls._instance


class EndpointRegistry(metaclass=_ThreadSafeSingleton):
    """Ordered look-up of endpoint patterns.

    Usage:

    ```python
    from llm_dialect.registry.endpoint_registry import EndpointPattern, endpoint_registry

    endpoint_registry.register(
        EndpointPattern(name='acme', host_pattern=r'\\.acme\\.ai$', auth_style=AuthStyle.vendor_header),
    )
    ```
    """

    _patterns: list[EndpointPattern]

    def __init__(self) -> None:  # pragma: no cover - called once via singleton
        self._patterns = []
        self._lock = threading.Lock()

    def register(self, pattern: EndpointPattern, *, first: bool = False) -> None:
        """Add pattern to the table, replacing any row with the same name.

        Parameters
        ----------
        pattern
            The row to add.
        first
            Insert at the head of the table instead of appending, so it takes
            precedence over every existing row.

        """
        if not isinstance(pattern, EndpointPattern):
            raise TypeError('pattern must be an EndpointPattern')
        with self._lock:
            self._patterns = [p for p in self._patterns if p.name != pattern.name]
            if first:
                self._patterns.insert(0, pattern)
            else:
                self._patterns.append(pattern)

    def unregister(self, name: str) -> None:
        with self._lock:
            self._patterns = [p for p in self._patterns if p.name != name]

    def matching(self, url: SplitResult) -> list[EndpointPattern]:
        """Return every row matching url, in table order."""
        return [p for p in self.patterns() if p.matches(url)]

    def patterns(self) -> Sequence[EndpointPattern]:
        """Return a snapshot of the table (for introspection)."""
        with self._lock:
            return tuple(self._patterns)

    def names(self) -> list[str]:
        return [p.name for p in self.patterns()]


DEFAULT_PATTERNS: tuple[EndpointPattern, ...] = (
    EndpointPattern(name='azure-deployment', path_pattern=r'/openai/deployments/', auth_style=AuthStyle.vendor_header),
    EndpointPattern(name='azure-host', host_pattern=r'\.openai\.azure\.com$', auth_style=AuthStyle.vendor_header),
    EndpointPattern(name='loopback', loopback=True, requires_auth=False),
)

# Module-level instance pre-loaded with DEFAULT_PATTERNS
endpoint_registry: EndpointRegistry = EndpointRegistry()
for _pattern in DEFAULT_PATTERNS:
    endpoint_registry.register(_pattern)
