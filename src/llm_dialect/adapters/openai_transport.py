"""adapters.openai_transport

Concrete transport that bridges :class:`llm_dialect.core.abc.AbstractTransport`
with any **OpenAI-compatible Chat Completions** endpoint through the official
`openai` client.

The SDK's own retries are disabled (``max_retries=0``); the retry policy of
`AbstractTransport.send()` is the only one. Auth headers follow the endpoint
profile: ``Authorization: Bearer`` for bearer endpoints, ``api-key`` for
vendor-header (Azure-style) endpoints, nothing otherwise.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import httpx
import openai

from llm_dialect.core.abc import AbstractTransport
from llm_dialect.core.exceptions import (
    ConfigurationError,
    OperationCancelledError,
    ProviderHTTPError,
    RateLimitExceededError,
    TransientNetworkError,
)
from llm_dialect.core.types import AuthStyle, Completion, Usage

if TYPE_CHECKING:
    from llm_dialect.core.cancellation import CancellationToken
    from llm_dialect.core.retry import RetryStrategy
    from llm_dialect.core.types import ChatRequest, EndpointProfile

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_SUFFIX = '/chat/completions'
VENDOR_API_KEY_HEADER = 'api-key'
DEFAULT_TIMEOUT_SEC = 120.0
PLACEHOLDER_API_KEY = 'unused'

RETRYABLE_STATUSES: frozenset[int] = frozenset(
    {
        HTTPStatus.REQUEST_TIMEOUT,
        HTTPStatus.TOO_MANY_REQUESTS,
        HTTPStatus.INTERNAL_SERVER_ERROR,
        HTTPStatus.BAD_GATEWAY,
        HTTPStatus.SERVICE_UNAVAILABLE,
        HTTPStatus.GATEWAY_TIMEOUT,
    },
)


def split_endpoint_url(url: str) -> tuple[str, dict[str, str]]:
    """Return (SDK base_url, default query) for a chat-completions URL.

    >>> split_endpoint_url('https://x.openai.azure.com/openai/deployments/gpt4o/chat/completions?api-version=2024-02-01')
    ('https://x.openai.azure.com/openai/deployments/gpt4o', {'api-version': '2024-02-01'})
    """
    parts = urlsplit(url.strip())
    path = parts.path.rstrip('/')
    if path.endswith(CHAT_COMPLETIONS_SUFFIX):
        path = path[: -len(CHAT_COMPLETIONS_SUFFIX)]
    base_url = urlunsplit((parts.scheme, parts.netloc, path, '', ''))
    return base_url, dict(parse_qsl(parts.query))


def auth_headers(profile: EndpointProfile, api_key: str | None) -> dict[str, Any]:
    """Headers to send on every request according to profile."""
    if profile.auth_style is AuthStyle.none:
        return {'Authorization': openai.Omit()}
    if not api_key:
        raise ConfigurationError('API key is missing for a provider that requires authentication.')
    if profile.auth_style is AuthStyle.vendor_header:
        return {'Authorization': openai.Omit(), VENDOR_API_KEY_HEADER: api_key}
    return {'Authorization': f'Bearer {api_key}'}


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get('retry-after')
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class OpenAITransport(AbstractTransport):
    """Transport for OpenAI-compatible ``/chat/completions`` endpoints."""

    def __init__(
        self,
        profile: EndpointProfile,
        api_key: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        retry_strategy: RetryStrategy | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(profile, retry_strategy=retry_strategy)
        base_url, query = split_endpoint_url(profile.base_url)
        headers = auth_headers(profile, api_key)
        try:
            self._client = openai.OpenAI(
                # Non-bearer styles omit Authorization in headers; the SDK still insists on some key.
                api_key=api_key if profile.auth_style is AuthStyle.bearer else PLACEHOLDER_API_KEY,
                base_url=base_url,
                default_headers=headers,
                default_query=query or None,
                timeout=timeout,
                max_retries=0,
                http_client=http_client,
            )
        except openai.OpenAIError as exc:
            raise ConfigurationError(f'Cannot create an API client for {profile.base_url}: {exc}') from exc

    # ------------------------------------------------------------------
    # Synchronous path
    # ------------------------------------------------------------------

    def _send(self, request: ChatRequest, cancel: CancellationToken | None) -> Completion:
        unregister = cancel.register(self._client.close) if cancel is not None else None
        try:
            response = self._client.chat.completions.create(**request.to_payload())
            if cancel is not None:
                cancel.raise_if_cancelled()
        except openai.APIStatusError as exc:
            if cancel is not None:
                cancel.raise_if_cancelled()
            raise self._status_error(exc) from exc
        except openai.APIConnectionError as exc:  # includes APITimeoutError
            if cancel is not None and cancel.cancelled:
                raise OperationCancelledError(cancel.reason) from exc
            raise TransientNetworkError(f'Connection to {self._profile.base_url} failed: {exc}') from exc
        finally:
            if unregister is not None:
                unregister()

        return self._to_completion(response)

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _status_error(self, exc: openai.APIStatusError) -> Exception:
        status = exc.status_code
        body = exc.response.text
        logger.debug('API error: %s - %s', status, body)
        if status == HTTPStatus.TOO_MANY_REQUESTS:
            return RateLimitExceededError(
                f'Rate limited by {self._profile.base_url}',
                retry_after=_retry_after(exc.response),
                body=body,
            )
        if status in RETRYABLE_STATUSES:
            return TransientNetworkError(f'Retryable status {status}: {body[:200]}', status_code=status, body=body)
        return ProviderHTTPError(status, body, url=self._profile.base_url)

    @staticmethod
    def _to_completion(response: Any) -> Completion:
        choices = getattr(response, 'choices', None) or []
        usage = getattr(response, 'usage', None)
        content: str | None = None
        finish_reason: str | None = None
        if choices:
            first = choices[0]
            message = getattr(first, 'message', None)
            content = (getattr(message, 'content', None) or '') if message is not None else ''
            finish_reason = getattr(first, 'finish_reason', None)
        return Completion(
            content=content,
            finish_reason=finish_reason,
            model=getattr(response, 'model', None),
            usage=Usage(
                prompt_tokens=getattr(usage, 'prompt_tokens', None),
                completion_tokens=getattr(usage, 'completion_tokens', None),
                total_tokens=getattr(usage, 'total_tokens', None),
            )
            if usage is not None
            else None,
        )
