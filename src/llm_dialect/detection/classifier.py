"""detection.classifier

Error Classifier: normalises heterogeneous failure bodies into `ClassifiedError`.

There is no machine-readable error code shared across OpenAI-compatible
providers, so classification is substring matching against tables of known
phrasings. The tables are module-level tuples and may be extended; anything
they miss ends up as `Unknown` carrying the provider's raw text, which callers
surface verbatim.
"""

from __future__ import annotations

import json
import logging
import re
from http import HTTPStatus
from typing import Annotated, Any, Literal

import httpx
import openai
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from llm_dialect.core.exceptions import (
    ProviderHTTPError,
    TransientNetworkError,
    TransportError,
)
from llm_dialect.core.types import MAX_TEMPERATURE, MIN_TEMPERATURE, TokenFieldStyle

logger = logging.getLogger(__name__)

TEMPERATURE_FIELD = 'temperature'
KNOWN_FIELDS: tuple[str, ...] = (
    TokenFieldStyle.modern.value,
    TokenFieldStyle.legacy.value,
    TEMPERATURE_FIELD,
)

# ---------------------------------------------------------------------------
# Phrase tables (lower-case)
# ---------------------------------------------------------------------------

AUTH_MARKERS: tuple[str, ...] = (
    'invalid_api_key',
    'incorrect api key',
    'invalid api key',
    'unauthorized',
    'authentication failed',
)
UNSUPPORTED_PARAMETER_MARKERS: tuple[str, ...] = (
    'unsupported_parameter',
    'unsupported parameter',
    'unrecognized request argument',
    'unknown parameter',
    'extra inputs are not permitted',
    'extra_forbidden',
    'not supported',
    'not allowed',
)
UNSUPPORTED_VALUE_MARKERS: tuple[str, ...] = (
    'unsupported value',
    'unsupported_value',
    'must be between',
    'must be',
    'does not support',
    'only the default',
)
CONTEXT_LENGTH_MARKERS: tuple[str, ...] = (
    'context length',
    'context_length_exceeded',
    'context window',
    'maximum prompt length',
    'too many tokens',
)
INVALID_REQUEST_TYPE = 'invalid_request_error'

_BETWEEN_PATTERN = re.compile(
    r'between\s+(-?\d+(?:\.\d+)?)\s*(?:and|to|-)\s*(-?\d+(?:\.\d+)?)',
    re.IGNORECASE,
)
_DEFAULT_VALUE_PATTERN = re.compile(r'default\s*\(\s*(-?\d+(?:\.\d+)?)\s*\)', re.IGNORECASE)
_MUST_BE_PATTERN = re.compile(r'must be\s+(?:equal to\s+|exactly\s+)?(-?\d+(?:\.\d+)?)\b', re.IGNORECASE)
_QUOTED_FIELD_PATTERN = re.compile(r"""['"`]([a-z_]+)['"`]""")


# ---------------------------------------------------------------------------
# ClassifiedError variants
# ---------------------------------------------------------------------------


class _ClassifiedBase(BaseModel):
    message: str = ''
    status_code: int | None = None
    context: str = ''

    model_config = ConfigDict(frozen=True)


class AuthenticationFailure(_ClassifiedBase):
    kind: Literal['authentication_failure'] = 'authentication_failure'


class UnsupportedParameter(_ClassifiedBase):
    kind: Literal['unsupported_parameter'] = 'unsupported_parameter'
    field_name: str


class UnsupportedValue(_ClassifiedBase):
    kind: Literal['unsupported_value'] = 'unsupported_value'
    field_name: str
    suggested_value: float | None = None
    allowed_range: tuple[float, float] | None = None


class ContextLengthExceeded(_ClassifiedBase):
    kind: Literal['context_length_exceeded'] = 'context_length_exceeded'


class TransientNetwork(_ClassifiedBase):
    kind: Literal['transient_network'] = 'transient_network'


class Unknown(_ClassifiedBase):
    kind: Literal['unknown'] = 'unknown'
    raw_message: str = ''


ClassifiedError = Annotated[
    AuthenticationFailure | UnsupportedParameter | UnsupportedValue | ContextLengthExceeded | TransientNetwork | Unknown,
    Field(discriminator='kind'),
]
classified_error_adapter: TypeAdapter[ClassifiedError] = TypeAdapter(ClassifiedError)

#: Classes the detector knows how to fix by changing the request shape.
RECOVERABLE_KINDS: frozenset[str] = frozenset({'unsupported_parameter', 'unsupported_value'})


def is_recoverable(classified: ClassifiedError) -> bool:
    return classified.kind in RECOVERABLE_KINDS


# ---------------------------------------------------------------------------
# Body parsing
# ---------------------------------------------------------------------------


class ErrorBody(BaseModel):
    """Result of the tagged-variant body parse."""

    shape: Literal['envelope', 'flat', 'text']
    message: str
    type: str | None = None
    code: str | None = None
    param: str | None = None

    model_config = ConfigDict(frozen=True)


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def parse_error_body(body: str | bytes | None) -> ErrorBody:
    """Try shape A ``{"error": {...}}``, then shape B ``{"message": ...}``, else raw text."""
    text = body.decode('utf-8', errors='replace') if isinstance(body, bytes) else (body or '')
    try:
        data = json.loads(text)
    except ValueError:
        return ErrorBody(shape='text', message=text.strip())

    if isinstance(data, list) and data and isinstance(data[0], dict):
        data = data[0]
    if not isinstance(data, dict):
        return ErrorBody(shape='text', message=text.strip())

    error = data.get('error')
    if isinstance(error, dict):
        return ErrorBody(
            shape='envelope',
            message=_as_text(error.get('message')) or _as_text(data.get('message')) or text.strip(),
            type=_as_text(error.get('type')),
            code=_as_text(error.get('code')),
            param=_as_text(error.get('param')),
        )
    if isinstance(error, str) and 'message' not in data:
        return ErrorBody(shape='flat', message=error, type=_as_text(data.get('type')))
    if 'message' in data or 'detail' in data:
        message = data.get('message', data.get('detail'))
        return ErrorBody(
            shape='flat',
            message=message if isinstance(message, str) else json.dumps(message),
            type=_as_text(data.get('type')),
            code=_as_text(data.get('code')),
            param=_as_text(data.get('param')),
        )
    return ErrorBody(shape='text', message=text.strip())


# ---------------------------------------------------------------------------
# Hints
# ---------------------------------------------------------------------------


def _in_temperature_range(value: float) -> bool:
    return MIN_TEMPERATURE <= value <= MAX_TEMPERATURE


def hint_temperature(message: str) -> tuple[float | None, tuple[float, float] | None]:
    """Extract (suggested value, allowed range) from a temperature error text.

    >>> hint_temperature('temperature must be between 0 and 1')
    (None, (0.0, 1.0))
    >>> hint_temperature("Only the default (1) value is supported.")
    (1.0, None)
    """
    allowed: tuple[float, float] | None = None
    if (m := _BETWEEN_PATTERN.search(message)) is not None:
        low, high = sorted((float(m.group(1)), float(m.group(2))))
        allowed = (low, high)

    suggested: float | None = None
    for pattern in (_DEFAULT_VALUE_PATTERN, _MUST_BE_PATTERN):
        if (m := pattern.search(message)) is not None and _in_temperature_range(float(m.group(1))):
            suggested = float(m.group(1))
            break
    return suggested, allowed


def _named_field(param: str | None, message: str) -> str | None:
    """Field the error is about: error.param if known, else the earliest field named in the text."""
    if param:
        lowered = param.lower()
        for field in KNOWN_FIELDS:
            if lowered == field or lowered.endswith(f'.{field}'):
                return field
    # Quoted names first: "Unsupported parameter: 'max_tokens' ... Use 'max_completion_tokens' instead."
    for m in _QUOTED_FIELD_PATTERN.finditer(message):
        if m.group(1) in KNOWN_FIELDS:
            return m.group(1)
    positions = [(message.find(field), field) for field in KNOWN_FIELDS if re.search(rf'\b{field}\b', message)]
    positions = [(pos, field) for pos, field in positions if pos >= 0]
    return min(positions)[1] if positions else None


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify_error(status_code: int | None, body: str | bytes | None, context: str = '') -> ClassifiedError:
    """Classify a failed HTTP response.

    Parameters
    ----------
    status_code
        HTTP status of the failed response (None if unknown).
    body
        Raw response body: JSON in one of several shapes, or plain text.
    context
        Human-readable label of what was being attempted, kept on the result.

    """
    parsed = parse_error_body(body)
    message = parsed.message
    lowered = ' '.join(filter(None, (message, parsed.type, parsed.code))).lower()
    common: dict[str, Any] = {'message': message, 'status_code': status_code, 'context': context}

    # 1. Credentials
    if status_code in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN) or _contains_any(lowered, AUTH_MARKERS):
        return AuthenticationFailure(**common)

    field = _named_field(parsed.param, message.lower())
    is_request_error = (
        (parsed.type or '').lower() == INVALID_REQUEST_TYPE
        or (parsed.code or '').lower() in ('unsupported_parameter', 'unsupported_value', 'invalid_request_error')
        or status_code in (HTTPStatus.BAD_REQUEST, HTTPStatus.UNPROCESSABLE_ENTITY)
    )
    names_temperature = TEMPERATURE_FIELD in lowered
    value_complaint = names_temperature and _contains_any(lowered, UNSUPPORTED_VALUE_MARKERS)
    value_complaint = value_complaint and 'unsupported parameter' not in lowered and 'unsupported_parameter' not in lowered

    # 2. A field the endpoint does not accept at all
    if (
        is_request_error
        and field is not None
        and not value_complaint
        and _contains_any(lowered, UNSUPPORTED_PARAMETER_MARKERS)
    ):
        return UnsupportedParameter(field_name=field, **common)

    # 3. Temperature value rejected
    if value_complaint:
        suggested, allowed = hint_temperature(message)
        return UnsupportedValue(
            field_name=TEMPERATURE_FIELD,
            suggested_value=suggested,
            allowed_range=allowed,
            **common,
        )

    # 4. Context window
    if _contains_any(lowered, CONTEXT_LENGTH_MARKERS):
        return ContextLengthExceeded(**common)

    # 5. Anything else
    logger.debug('Unclassified provider error (%s): %s', status_code, message)
    return Unknown(raw_message=message, **common)


NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransientNetworkError,
    TransportError,
    TimeoutError,
    ConnectionError,
    httpx.TransportError,
    openai.APIConnectionError,
)


def classify_exception(exc: BaseException, context: str = '') -> ClassifiedError:
    """Classify an exception raised by a transport."""
    if isinstance(exc, ProviderHTTPError):
        return classify_error(exc.status_code, exc.body, context)
    # Network layer
    if isinstance(exc, NETWORK_EXCEPTIONS):
        status = getattr(exc, 'status_code', None)
        return TransientNetwork(message=str(exc), status_code=status, context=context)
    if isinstance(exc, openai.APIStatusError):
        return classify_error(exc.status_code, exc.response.text, context)
    return Unknown(raw_message=str(exc), message=str(exc), context=context)
