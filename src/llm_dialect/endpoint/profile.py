"""endpoint.profile

Endpoint Profile Resolver: derives auth facts from the endpoint URL alone,
before any network call is made.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from llm_dialect.core.exceptions import ConfigurationError
from llm_dialect.core.types import AuthStyle, EndpointProfile
from llm_dialect.registry.endpoint_registry import endpoint_registry

if TYPE_CHECKING:
    from urllib.parse import SplitResult

    from llm_dialect.registry.endpoint_registry import EndpointRegistry


def parse_endpoint_url(url: str | None) -> SplitResult:
    """Split url, raising ConfigurationError unless it is an absolute http(s) URL with a host."""
    if url is None or not url.strip():
        raise ConfigurationError('URL cannot be empty')
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError as exc:
        raise ConfigurationError(f'Malformed endpoint URL {url!r}: {exc}') from exc
    if parts.scheme not in ('http', 'https'):
        raise ConfigurationError(f'Endpoint URL must use HTTP or HTTPS, got {url!r}')
    if not host:
        raise ConfigurationError(f'Endpoint URL must have a valid hostname, got {url!r}')
    return parts


def resolve_endpoint_profile(
    url: str,
    requires_auth: bool | None = None,
    *,
    registry: EndpointRegistry | None = None,
) -> EndpointProfile:
    """Return the EndpointProfile for url.

    Parameters
    ----------
    url
        Chat-completions URL of the endpoint.
    requires_auth
        Explicit setting from configuration. None means "not configured";
        the table's loopback heuristic then decides.
    registry
        Pattern table to consult. Defaults to the global endpoint_registry.

    Raises
    ------
    ConfigurationError
        url is malformed.

    """
    parts = parse_endpoint_url(url)
    table = registry or endpoint_registry

    auth_style: AuthStyle | None = None
    table_requires_auth: bool | None = None
    for pattern in table.matching(parts):
        if auth_style is None and pattern.auth_style is not None:
            auth_style = pattern.auth_style
        if table_requires_auth is None and pattern.requires_auth is not None:
            table_requires_auth = pattern.requires_auth

    needs_auth = requires_auth if requires_auth is not None else table_requires_auth
    if needs_auth is None:
        needs_auth = True

    if not needs_auth:
        style = AuthStyle.none
    elif auth_style is None or auth_style is AuthStyle.none:
        style = AuthStyle.bearer
    else:
        style = auth_style

    return EndpointProfile(base_url=url.strip(), requires_auth=needs_auth, auth_style=style)
