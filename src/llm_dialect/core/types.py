"""core.types

Protocol constants, enums and frozen value objects shared by every layer:
endpoint facts, the detected request shape, the request itself and the
normalised completion.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Protocol constants
# ---------------------------------------------------------------------------

DEFAULT_TEMPERATURE: float = 0.2
REASONING_MODEL_TEMPERATURE: float = 1.0
MIN_TEMPERATURE: float = 0.0
MAX_TEMPERATURE: float = 2.0

PROBE_PROMPT: str = 'Hello!'
PROBE_TOKEN_LIMIT: int = 5

DEFAULT_MAX_OUTPUT_TOKENS: int = 5000
MIN_OUTPUT_TOKENS: int = 100
MAX_OUTPUT_TOKENS: int = 8000


def clamp_temperature(value: float, low: float = MIN_TEMPERATURE, high: float = MAX_TEMPERATURE) -> float:
    """Clamp value into [low, high], itself bounded by the global [0.0, 2.0] range.

    A range lying wholly outside [0.0, 2.0] is ignored.
    """
    low = max(low, MIN_TEMPERATURE)
    high = min(high, MAX_TEMPERATURE)
    if low > high:
        low, high = MIN_TEMPERATURE, MAX_TEMPERATURE
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(StrEnum):
    system = 'system'
    user = 'user'
    assistant = 'assistant'


class TokenFieldStyle(StrEnum):
    """Which JSON field carries the output-length limit.

    The values are the wire field names themselves.
    """

    legacy = 'max_tokens'
    modern = 'max_completion_tokens'

    @property
    def other(self) -> TokenFieldStyle:
        return TokenFieldStyle.modern if self is TokenFieldStyle.legacy else TokenFieldStyle.legacy


class AuthStyle(StrEnum):
    bearer = 'bearer'
    vendor_header = 'vendor_header'
    none = 'none'


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """Single chat message."""

    role: Role
    content: str

    # Immutable value-object
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Endpoint facts and detected request shape
# ---------------------------------------------------------------------------


class EndpointProfile(BaseModel):
    """Static, URL-derived facts about an endpoint's authentication."""

    base_url: str
    requires_auth: bool = True
    auth_style: AuthStyle = AuthStyle.bearer

    model_config = ConfigDict(frozen=True)

    @model_validator(mode='after')
    def _auth_style_matches_requirement(self) -> EndpointProfile:
        if self.requires_auth == (self.auth_style is AuthStyle.none):
            raise ValueError(
                f'auth_style={self.auth_style.value!r} is inconsistent with requires_auth={self.requires_auth}'
            )
        return self


class DetectedParameters(BaseModel):
    """Request shape an endpoint has been seen to accept."""

    token_field_style: TokenFieldStyle = TokenFieldStyle.modern
    temperature: float = Field(DEFAULT_TEMPERATURE, ge=MIN_TEMPERATURE, le=MAX_TEMPERATURE)
    last_verified_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(frozen=True)

    def same_shape(self, other: DetectedParameters | None) -> bool:
        """True when other describes the same request shape (timestamps ignored)."""
        return (
            other is not None
            and other.token_field_style is self.token_field_style
            and other.temperature == self.temperature
        )


# ---------------------------------------------------------------------------
# Requests and responses
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    """A chat-completion request in a concrete dialect."""

    model: str
    messages: tuple[Message, ...]
    temperature: float | None = Field(None, ge=MIN_TEMPERATURE, le=MAX_TEMPERATURE)
    max_output_tokens: int = Field(PROBE_TOKEN_LIMIT, ge=1)
    token_field_style: TokenFieldStyle = TokenFieldStyle.modern

    model_config = ConfigDict(frozen=True)

    def with_parameters(self, params: DetectedParameters) -> ChatRequest:
        """Return a copy shaped according to params."""
        return self.model_copy(
            update={'token_field_style': params.token_field_style, 'temperature': params.temperature},
        )

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON body; exactly one token field is present."""
        payload: dict[str, Any] = {
            'model': self.model,
            'messages': [{'role': m.role.value, 'content': m.content} for m in self.messages],
        }
        if self.temperature is not None:
            payload['temperature'] = self.temperature
        payload[self.token_field_style.value] = self.max_output_tokens
        return payload


class Usage(BaseModel):
    """Token usage as reported by the endpoint (every field optional)."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    model_config = ConfigDict(frozen=True)


class Completion(BaseModel):
    """Normalised chat-completion result.

    content is None when the endpoint answered 2xx without any choice.
    """

    content: str | None = None
    finish_reason: str | None = None
    model: str | None = None
    usage: Usage | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def has_choice(self) -> bool:
        return self.content is not None
