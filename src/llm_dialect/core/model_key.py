"""core.model_key

Validation of model identifiers and the `(endpoint, model)` key under which
detected parameters are cached and persisted.

Model identifiers are free-form provider strings (``gpt-4o``, ``llama3:8b``,
``deepseek/deepseek-chat``); only characters that break shells or headers are
rejected.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from llm_dialect.core.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

MAX_MODEL_NAME_LENGTH = 100
_INVALID_MODEL_CHARS = frozenset('"\'`$\\\n\r\t')


def model_name_error(model: str | None) -> str | None:
    """Return a human-readable problem with model, or None when it is valid."""
    if model is None or not model.strip():
        return 'Model name cannot be empty'
    if len(model) > MAX_MODEL_NAME_LENGTH:
        return f'Model name cannot exceed {MAX_MODEL_NAME_LENGTH} characters'
    if any(c in _INVALID_MODEL_CHARS for c in model):
        return 'Model name cannot contain quotes, backslashes, $ or whitespace control characters'
    if any(not c.isprintable() for c in model):
        return 'Model name cannot contain control characters'
    return None


def validate_model_name(model: str | None) -> str:
    """Return the stripped model name or raise ConfigurationError."""
    if (problem := model_name_error(model)) is not None:
        raise ConfigurationError(problem)
    return model.strip()  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class ModelKey(BaseModel):
    """Value-object identifying one model behind one endpoint.

    * `endpoint` … chat-completions URL as configured
    * `model` … provider model id
    """

    endpoint: str = Field(..., min_length=1, description='chat completions URL')
    model: str = Field(..., description='provider model id')

    model_config = {
        'frozen': True,  # hashable / usable as dict key
        'str_strip_whitespace': True,
    }

    @field_validator('endpoint', mode='before')
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip('/')

    @field_validator('model')
    @classmethod
    def _check_model(cls, v: str) -> str:
        if (problem := model_name_error(v)) is not None:
            raise ValueError(problem)
        return v

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f'{self.model} @ {self.endpoint}'
