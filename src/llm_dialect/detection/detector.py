"""detection.detector

Parameter Detector: converges on a request shape an endpoint accepts.

The loop issues minimal probe requests, classifies each failure and adjusts
exactly one aspect of the shape per round (token field or temperature). It is
bounded by a small round cap and never re-sends a shape that already failed
within the same run. A returned `DetectedParameters` has already succeeded
against the endpoint.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict

from llm_dialect.core.exceptions import (
    AuthenticationError,
    LLMDialectError,
    OperationCancelledError,
    ParameterDetectionFailedError,
    TransportError,
    UnknownProviderError,
)
from llm_dialect.core.model_key import validate_model_name
from llm_dialect.core.types import (
    DEFAULT_TEMPERATURE,
    MAX_TEMPERATURE,
    MIN_TEMPERATURE,
    PROBE_PROMPT,
    PROBE_TOKEN_LIMIT,
    REASONING_MODEL_TEMPERATURE,
    ChatRequest,
    DetectedParameters,
    Message,
    Role,
    TokenFieldStyle,
    clamp_temperature,
)
from llm_dialect.detection.classifier import (
    TEMPERATURE_FIELD,
    ClassifiedError,
    Unknown,
    classify_exception,
)

if TYPE_CHECKING:
    from llm_dialect.core.abc import AbstractTransport
    from llm_dialect.core.cancellation import CancellationToken

DEFAULT_PROBE_ROUNDS = 4

ProbeOutcome = Literal[
    'accepted',
    'authentication_failure',
    'unsupported_parameter',
    'unsupported_value',
    'context_length_exceeded',
    'transient_network',
    'unknown',
]


class ProbeShape(BaseModel):
    token_field_style: TokenFieldStyle
    temperature: float

    model_config = ConfigDict(frozen=True)


class ProbeAttempt(BaseModel):
    """One probe round: the shape sent and what came back."""

    round: int
    shape: ProbeShape
    outcome: ProbeOutcome
    message: str = ''

    model_config = ConfigDict(frozen=True)


def _probe_request(model: str, shape: ProbeShape) -> ChatRequest:
    return ChatRequest(
        model=model,
        messages=(Message(role=Role.user, content=PROBE_PROMPT),),
        temperature=shape.temperature,
        max_output_tokens=PROBE_TOKEN_LIMIT,
        token_field_style=shape.token_field_style,
    )


def _temperature_candidates(rejected: float, classified: ClassifiedError) -> list[float]:
    """Temperatures worth trying after rejected was refused, best first."""
    suggested = getattr(classified, 'suggested_value', None)
    allowed = getattr(classified, 'allowed_range', None)
    if allowed is not None and (allowed[0] > MAX_TEMPERATURE or allowed[1] < MIN_TEMPERATURE):
        allowed = None
    low, high = allowed if allowed is not None else (MIN_TEMPERATURE, MAX_TEMPERATURE)

    candidates: list[float] = []
    if suggested is not None:
        candidates.append(clamp_temperature(suggested, low, high))
    if allowed is not None:
        candidates.append(clamp_temperature(rejected, low, high))
    candidates.append(clamp_temperature(REASONING_MODEL_TEMPERATURE, low, high))
    if allowed is not None:
        candidates.extend((clamp_temperature(high, low, high), clamp_temperature(low, low, high)))
    return [c for c in dict.fromkeys(candidates) if c != rejected]


class ParameterDetector:
    """Probes one endpoint and returns the request shape it accepts.

    Parameters
    ----------
    transport
        Sends probe requests; owns auth headers and the retry policy.
    probe_rounds
        Hard cap on probe requests per run.
    logger
        Logger for progress output. Defaults to this module's logger.

    """

    def __init__(
        self,
        transport: AbstractTransport,
        *,
        probe_rounds: int = DEFAULT_PROBE_ROUNDS,
        logger: logging.Logger | None = None,
    ) -> None:
        if probe_rounds < 1:
            raise ValueError('probe_rounds must be at least 1')
        self._transport = transport
        self._probe_rounds = probe_rounds
        self._logger = logger or logging.getLogger(__name__)
        self.last_attempts: tuple[ProbeAttempt, ...] = ()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, model: str, *, cancel: CancellationToken | None = None) -> DetectedParameters:
        """Run the convergence protocol for model.

        Raises
        ------
        AuthenticationError
            The endpoint rejected the credentials (no further rounds).
        UnknownProviderError
            An unclassified failure; carries the provider's raw message.
        TransportError
            Network failure persisted through the transport's retries.
        ParameterDetectionFailedError
            Context-length failure on a probe, a repeated shape, or the round cap.
        OperationCancelledError
            cancel fired.

        """
        model = validate_model_name(model)
        self._logger.debug('Starting API parameter detection for model: %s', model)

        shape = ProbeShape(token_field_style=TokenFieldStyle.modern, temperature=DEFAULT_TEMPERATURE)
        attempts: list[ProbeAttempt] = []
        tried: set[ProbeShape] = set()
        classified: ClassifiedError | None = None

        try:
            for round_number in range(1, self._probe_rounds + 1):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                tried.add(shape)
                classified = self._probe(model, shape, cancel)
                if classified is None:
                    attempts.append(ProbeAttempt(round=round_number, shape=shape, outcome='accepted'))
                    params = DetectedParameters(
                        token_field_style=shape.token_field_style,
                        temperature=shape.temperature,
                        last_verified_at=datetime.now(UTC),
                    )
                    self._log_success(params, round_number)
                    return params

                attempts.append(
                    ProbeAttempt(round=round_number, shape=shape, outcome=classified.kind, message=classified.message),
                )
                self._logger.debug(
                    'Probe %d with %s/temperature=%s failed: %s (%s)',
                    round_number,
                    shape.token_field_style.value,
                    shape.temperature,
                    classified.kind,
                    classified.message,
                )
                next_shape = self._adjust(shape, classified, attempts)
                if next_shape in tried:
                    raise ParameterDetectionFailedError(
                        f'Endpoint rejected every known request shape: {classified.message}',
                        attempts=attempts,
                        classified=classified,
                    )
                shape = next_shape

            raise ParameterDetectionFailedError(
                f'No accepted request shape after {self._probe_rounds} probe rounds',
                attempts=attempts,
                classified=classified,
            )
        finally:
            self.last_attempts = tuple(attempts)

    def validate_connection(self, model: str, *, cancel: CancellationToken | None = None) -> bool:
        """Send one conservative request (legacy field, default temperature).

        Returns False on any failure except bad credentials and cancellation,
        which raise.
        """
        model = validate_model_name(model)
        shape = ProbeShape(token_field_style=TokenFieldStyle.legacy, temperature=DEFAULT_TEMPERATURE)
        try:
            classified = self._probe(model, shape, cancel)
        except (AuthenticationError, OperationCancelledError):
            raise
        except LLMDialectError:
            self._logger.exception('API connection validation failed')
            return False
        if classified is None:
            self._logger.debug('API connection validated successfully')
            return True
        self._logger.error('API connection validation failed: %s', classified.message)
        return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _probe(self, model: str, shape: ProbeShape, cancel: CancellationToken | None) -> ClassifiedError | None:
        """Send one probe. None means accepted; auth and network failures raise."""
        context = f'parameter detection ({shape.token_field_style.value}, temperature={shape.temperature})'
        try:
            completion = self._transport.send(_probe_request(model, shape), cancel=cancel)
        except OperationCancelledError:
            raise
        except TransportError as exc:
            self._logger.error('Network failure during parameter detection: %s', exc)
            raise
        except LLMDialectError as exc:
            classified = classify_exception(exc, context)
        else:
            if completion.has_choice:
                return None
            classified = Unknown(
                raw_message='Endpoint answered without any completion choice',
                message='Endpoint answered without any completion choice',
                context=context,
            )

        if classified.kind == 'authentication_failure':
            self._logger.error('Authentication failed during parameter detection')
            raise AuthenticationError(provider_message=classified.message)
        if classified.kind == 'transient_network':
            raise TransportError(classified.message)
        return classified

    def _adjust(self, shape: ProbeShape, classified: ClassifiedError, attempts: list[ProbeAttempt]) -> ProbeShape:
        """Next shape to try after classified, or raise when nothing can fix it."""
        if classified.kind == 'unsupported_parameter':
            if classified.field_name == shape.token_field_style.value:
                self._logger.debug(
                    'Endpoint rejects %s; switching to %s',
                    shape.token_field_style.value,
                    shape.token_field_style.other.value,
                )
                return shape.model_copy(update={'token_field_style': shape.token_field_style.other})
            if classified.field_name == TEMPERATURE_FIELD:
                self._logger.debug('Custom temperature not supported, trying reasoning model default')
                return shape.model_copy(update={'temperature': REASONING_MODEL_TEMPERATURE})
            # The endpoint complains about the field we are *not* sending; nothing to change.
            return shape

        if classified.kind == 'unsupported_value' and classified.field_name == TEMPERATURE_FIELD:
            candidates = _temperature_candidates(shape.temperature, classified)
            tried = {a.shape.temperature for a in attempts if a.shape.token_field_style is shape.token_field_style}
            for candidate in candidates:
                if candidate not in tried:
                    self._logger.debug('Temperature %s rejected, trying %s', shape.temperature, candidate)
                    return shape.model_copy(update={'temperature': candidate})
            return shape

        if classified.kind == 'context_length_exceeded':
            raise ParameterDetectionFailedError(
                f'Endpoint reported a context-length error for a minimal probe: {classified.message}',
                attempts=attempts,
                classified=classified,
            )

        raise UnknownProviderError(classified.message, status_code=classified.status_code)

    def _log_success(self, params: DetectedParameters, rounds: int) -> None:
        style = 'Legacy (max_tokens)' if params.token_field_style is TokenFieldStyle.legacy else (
            'Modern (max_completion_tokens)'
        )
        self._logger.info(
            'Parameter detection complete after %d probe(s): token parameter %s, temperature %s',
            rounds,
            style,
            params.temperature,
        )
