"""client

Generation Client: issues real requests with the cached request shape and
repairs a stale shape once per call.

Flow of `generate()`:

1. no cached `DetectedParameters` for (endpoint, model) → run the detector;
2. send the request shaped by the cached parameters;
3. on an unsupported-parameter/value failure, drop the cache entry, re-detect
   and retry exactly once; a second failure is `SelfHealingFailedError`;
4. every other failure class is surfaced at once.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NoReturn

from llm_dialect.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ContextLengthExceededError,
    LLMDialectError,
    OperationCancelledError,
    SelfHealingFailedError,
    TransportError,
    UnknownProviderError,
)
from llm_dialect.core.model_key import ModelKey, validate_model_name
from llm_dialect.core.types import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    MAX_OUTPUT_TOKENS,
    MIN_OUTPUT_TOKENS,
    ChatRequest,
    Completion,
    DetectedParameters,
    Message,
    Role,
)
from llm_dialect.detection.classifier import ClassifiedError, classify_exception, is_recoverable
from llm_dialect.detection.detector import ParameterDetector

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from llm_dialect.core.abc import AbstractTransport
    from llm_dialect.core.cancellation import CancellationToken
    from llm_dialect.core.types import EndpointProfile
    from llm_dialect.store import ParameterStore


class ParameterCache:
    """In-memory DetectedParameters per (endpoint, model), shared by clients of one process."""

    def __init__(self) -> None:
        self._entries: dict[ModelKey, DetectedParameters] = {}

    def get(self, key: ModelKey) -> DetectedParameters | None:
        return self._entries.get(key)

    def put(self, key: ModelKey, params: DetectedParameters) -> None:
        self._entries[key] = params

    def invalidate(self, key: ModelKey) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[ModelKey]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def _raise_classified(classified: ClassifiedError, cause: BaseException) -> NoReturn:
    """Translate a non-recoverable classification into its public exception."""
    if classified.kind == 'authentication_failure':
        raise AuthenticationError(provider_message=classified.message) from cause
    if classified.kind == 'context_length_exceeded':
        raise ContextLengthExceededError.from_api_message(classified.message) from cause
    if classified.kind == 'transient_network':
        if isinstance(cause, TransportError):
            raise cause
        raise TransportError(classified.message) from cause
    raise UnknownProviderError(classified.message, status_code=classified.status_code) from cause


class GenerationClient:
    """User-facing generation against one model behind one endpoint.

    Parameters
    ----------
    transport
        Sends requests; owns auth headers and the retry policy.
    model
        Provider model id.
    detector
        Parameter detector; one is built over transport if omitted.
    cache
        Shared parameter cache. A private one is created if omitted.
    store
        Optional persistence collaborator. Read once to seed the cache,
        written through after each successful detection.
    max_output_tokens
        Default output-length limit for generation requests.
    logger
        Logger for progress output. Defaults to this module's logger.

    """

    def __init__(
        self,
        transport: AbstractTransport,
        model: str,
        *,
        detector: ParameterDetector | None = None,
        cache: ParameterCache | None = None,
        store: ParameterStore | None = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._model = validate_model_name(model)
        self._logger = logger or logging.getLogger(__name__)
        self._detector = detector or ParameterDetector(transport, logger=self._logger)
        self._cache = cache if cache is not None else ParameterCache()
        self._store = store
        self._max_output_tokens = max_output_tokens
        self._key = ModelKey(endpoint=transport.profile.base_url, model=self._model)

        if self._key not in self._cache and store is not None and (stored := store.load(self._key)) is not None:
            self._logger.debug('Using stored parameters for %s', self._key)
            self._cache.put(self._key, stored)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def model(self) -> str:
        return self._model

    @property
    def profile(self) -> EndpointProfile:
        return self._transport.profile

    @property
    def key(self) -> ModelKey:
        return self._key

    @property
    def parameters(self) -> DetectedParameters | None:
        """Currently cached parameters, or None before the first detection."""
        return self._cache.get(self._key)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ensure_parameters(self, *, cancel: CancellationToken | None = None) -> DetectedParameters:
        """Return cached parameters, detecting them first if needed."""
        if (params := self._cache.get(self._key)) is not None:
            return params
        return self._detect(cancel)

    def test_connection(self, *, cancel: CancellationToken | None = None) -> DetectedParameters:
        """Force a fresh detection and replace the cached parameters."""
        self._cache.invalidate(self._key)
        return self._detect(cancel)

    def generate(
        self,
        prompt: str | Sequence[Message],
        *,
        system_prompt: str | None = None,
        max_output_tokens: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> Completion:
        """Generate a completion for prompt (a user string or a message list).

        Raises
        ------
        AuthenticationError, ContextLengthExceededError, UnknownProviderError, TransportError
            Surfaced without a self-heal attempt.
        SelfHealingFailedError
            The retry after re-detection failed too.
        ParameterDetectionFailedError
            The initial detection could not converge.
        ConfigurationError
            Output limit outside [100, 8000], or the parameter store failed.

        """
        request = self._build_request(prompt, system_prompt, max_output_tokens)
        params = self.ensure_parameters(cancel=cancel)

        try:
            completion = self._send(request.with_parameters(params), cancel)
        except OperationCancelledError:
            raise
        except LLMDialectError as exc:
            classified = classify_exception(exc, 'generation')
            if not is_recoverable(classified):
                self._logger.error('Generation failed: %s', classified.message or exc)
                _raise_classified(classified, exc)
            completion = self._self_heal(request, classified, exc, cancel)

        if not completion.content or not completion.content.strip():
            self._logger.warning(
                'Provider returned an empty response (may have hit the token limit during reasoning)',
            )
        else:
            self._logger.debug('Successfully generated response with %d characters', len(completion.content))
        return completion

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_request(
        self,
        prompt: str | Sequence[Message],
        system_prompt: str | None,
        max_output_tokens: int | None,
    ) -> ChatRequest:
        limit = self._max_output_tokens if max_output_tokens is None else max_output_tokens
        if not MIN_OUTPUT_TOKENS <= limit <= MAX_OUTPUT_TOKENS:
            raise ConfigurationError(
                f'Output token limit must be between {MIN_OUTPUT_TOKENS} and {MAX_OUTPUT_TOKENS}, got {limit}',
            )
        if isinstance(prompt, str):
            messages: list[Message] = [Message(role=Role.user, content=prompt)]
        else:
            messages = list(prompt)
        if system_prompt:
            messages.insert(0, Message(role=Role.system, content=system_prompt))
        return ChatRequest(
            model=self._model,
            messages=tuple(messages),
            max_output_tokens=limit,
        )

    def _send(self, request: ChatRequest, cancel: CancellationToken | None) -> Completion:
        self._logger.debug('Sending API request to %s with payload: %s', self.profile.base_url, request.to_payload())
        return self._transport.send(request, cancel=cancel)

    def _detect(self, cancel: CancellationToken | None) -> DetectedParameters:
        params = self._detector.detect(self._model, cancel=cancel)
        self._remember(params)
        return params

    def _remember(self, params: DetectedParameters) -> None:
        self._cache.put(self._key, params)
        if self._store is not None:
            self._store.save(self._key, params)

    def _self_heal(
        self,
        request: ChatRequest,
        classified: ClassifiedError,
        original: LLMDialectError,
        cancel: CancellationToken | None,
    ) -> Completion:
        self._logger.warning(
            'API parameter mismatch detected (%s). Attempting to self-heal configuration...',
            classified.message,
        )
        self._cache.invalidate(self._key)
        try:
            params = self._detect(cancel)
        except (AuthenticationError, ConfigurationError, OperationCancelledError):
            raise
        except LLMDialectError as exc:
            self._logger.error('Failed to auto-correct API parameter configuration: %s', exc)
            raise SelfHealingFailedError(
                f'Failed to auto-correct API parameter configuration: {exc}',
                classified=classified,
            ) from original

        self._logger.info('Re-detected API parameters; retrying the original request with corrected settings')
        try:
            return self._send(request.with_parameters(params), cancel)
        except OperationCancelledError:
            raise
        except LLMDialectError as exc:
            retry_classified = classify_exception(exc, 'generation retry after self-heal')
            if retry_classified.kind == 'authentication_failure':
                raise AuthenticationError(provider_message=retry_classified.message) from exc
            self._logger.error('Retry after self-heal failed: %s', retry_classified.message or exc)
            raise SelfHealingFailedError(
                f'Request still failing after re-detecting parameters: {retry_classified.message or exc}',
                classified=retry_classified,
            ) from exc
