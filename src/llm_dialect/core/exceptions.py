"""core.exceptions

Centralised exception hierarchy for *llm_dialect*.

Each error carries an `http_status` attribute so that upper layers (CLI exit
codes, web handlers wrapping the client, etc.) can translate exceptions to
appropriate responses *without* scattering status-code logic throughout
business code.
"""

from __future__ import annotations

import re
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


# ---------------------------------------------------------------------------
# Root of the hierarchy
# ---------------------------------------------------------------------------


class LLMDialectError(Exception):
    """Base class for all *llm_dialect* domain errors."""

    #: Status used when a subclass does not set its own.
    http_status: ClassVar[HTTPStatus] = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)

    def to_json(self) -> dict[str, dict[str, str]]:
        """Unified error body, same shape as the OpenAI error envelope."""
        return {'error': {'type': self.__class__.__name__, 'message': str(self)}}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(LLMDialectError):
    """Raised for malformed URLs, invalid model names or missing credentials."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.BAD_REQUEST  # 400


# ---------------------------------------------------------------------------
# Transport layer
# ---------------------------------------------------------------------------


class ProviderHTTPError(LLMDialectError):
    """Non-2xx response from the endpoint, carrying the raw body for classification."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.BAD_GATEWAY  # 502

    def __init__(self, status_code: int, body: str | bytes | None = None, *, url: str | None = None) -> None:
        self.status_code = status_code
        self.body = body.decode('utf-8', errors='replace') if isinstance(body, bytes) else (body or '')
        self.url = url
        message = f'API request failed with status {status_code}'
        if url:
            message += f' from {url}'
        if self.body:
            truncated = self.body if len(self.body) <= 200 else self.body[:200] + '...'  # noqa: PLR2004
            message += f': {truncated}'
        super().__init__(message)


class TransientNetworkError(LLMDialectError):
    """Network-layer failure or retryable status; the transport retries these."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.SERVICE_UNAVAILABLE  # 503

    def __init__(self, message: str | None = None, *, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitExceededError(TransientNetworkError):
    """HTTP 429; retried honouring the provider's Retry-After hint."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.TOO_MANY_REQUESTS  # 429

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: float | None = None,
        status_code: int | None = HTTPStatus.TOO_MANY_REQUESTS,
        body: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.retry_after = retry_after


class TransportError(LLMDialectError):
    """Raised when the transport's retry policy is exhausted."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.GATEWAY_TIMEOUT  # 504


class OperationCancelledError(LLMDialectError):
    """Raised once the cancellation token fires; nothing is retried afterwards."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.REQUEST_TIMEOUT  # 408


# ---------------------------------------------------------------------------
# Provider outcomes surfaced to callers
# ---------------------------------------------------------------------------

AUTHENTICATION_GUIDANCE = 'Check the API key and auth settings (LLM_DIALECT_API_KEY, LLM_DIALECT_REQUIRES_AUTH).'


class AuthenticationError(LLMDialectError):
    """Credentials rejected. Never retried."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.UNAUTHORIZED  # 401

    def __init__(self, message: str | None = None, *, provider_message: str | None = None) -> None:
        self.provider_message = provider_message
        super().__init__(
            message or f'Authentication failed. Your API key appears to be invalid or expired. {AUTHENTICATION_GUIDANCE}'
        )


class UnknownProviderError(LLMDialectError):
    """Unclassified provider failure; the message is the provider's own text."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.BAD_GATEWAY  # 502

    def __init__(self, raw_message: str, *, status_code: int | None = None) -> None:
        self.raw_message = raw_message
        self.status_code = status_code
        super().__init__(raw_message or 'Provider returned an unrecognised error')


_MAX_CONTEXT_PATTERNS = (
    re.compile(r'maximum context length is (\d+) tokens', re.IGNORECASE),
    re.compile(r'maximum prompt length is (\d+)', re.IGNORECASE),
)
_REQUESTED_PATTERNS = (
    re.compile(r'requested (\d+) tokens', re.IGNORECASE),
    re.compile(r'request contains (\d+) tokens', re.IGNORECASE),
)
_BREAKDOWN_PATTERN = re.compile(r'\((\d+) in the messages, (\d+) in the completion\)', re.IGNORECASE)


def _first_int(patterns: Sequence[re.Pattern[str]], text: str) -> int | None:
    for pattern in patterns:
        if (m := pattern.search(text)) is not None:
            return int(m.group(1))
    return None


class ContextLengthExceededError(LLMDialectError):
    """The request exceeded the model's context window. Input is never truncated here."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.REQUEST_ENTITY_TOO_LARGE  # 413

    def __init__(
        self,
        message: str | None = None,
        *,
        api_message: str | None = None,
        max_context_length: int | None = None,
        requested_tokens: int | None = None,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
    ) -> None:
        super().__init__(message or 'The request exceeds the model context length')
        self.api_message = api_message
        self.max_context_length = max_context_length
        self.requested_tokens = requested_tokens
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens

    @classmethod
    def from_api_message(cls, api_message: str) -> ContextLengthExceededError:
        """Parse token numbers out of the provider's text.

        >>> err = ContextLengthExceededError.from_api_message(
        ...     "This model's maximum context length is 4097 tokens. However, you requested "
        ...     '4927 tokens (3927 in the messages, 1000 in the completion).'
        ... )
        >>> (err.max_context_length, err.requested_tokens, err.prompt_tokens, err.completion_tokens)
        (4097, 4927, 3927, 1000)
        """
        prompt = completion = None
        if (m := _BREAKDOWN_PATTERN.search(api_message)) is not None:
            prompt, completion = int(m.group(1)), int(m.group(2))
        return cls(
            f'The request exceeds the model context length: {api_message}',
            api_message=api_message,
            max_context_length=_first_int(_MAX_CONTEXT_PATTERNS, api_message),
            requested_tokens=_first_int(_REQUESTED_PATTERNS, api_message),
            prompt_tokens=prompt,
            completion_tokens=completion,
        )


class ParameterDetectionFailedError(LLMDialectError):
    """Detection could not converge on an accepted request shape."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.BAD_GATEWAY  # 502

    def __init__(self, message: str | None = None, *, attempts: Sequence[Any] = (), classified: Any = None) -> None:
        super().__init__(message or 'Failed to detect API parameters')
        self.attempts = tuple(attempts)
        self.classified = classified


class SelfHealingFailedError(LLMDialectError):
    """A stale request shape could not be repaired by one re-detection + retry."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.BAD_GATEWAY  # 502

    def __init__(self, message: str | None = None, *, classified: Any = None) -> None:
        super().__init__(message or 'Failed to auto-correct API parameter configuration')
        self.classified = classified


HTTP_STATUS_MAP: Mapping[type[LLMDialectError], HTTPStatus] = {
    ConfigurationError: ConfigurationError.http_status,
    ProviderHTTPError: ProviderHTTPError.http_status,
    TransientNetworkError: TransientNetworkError.http_status,
    RateLimitExceededError: RateLimitExceededError.http_status,
    TransportError: TransportError.http_status,
    OperationCancelledError: OperationCancelledError.http_status,
    AuthenticationError: AuthenticationError.http_status,
    UnknownProviderError: UnknownProviderError.http_status,
    ContextLengthExceededError: ContextLengthExceededError.http_status,
    ParameterDetectionFailedError: ParameterDetectionFailedError.http_status,
    SelfHealingFailedError: SelfHealingFailedError.http_status,
}
