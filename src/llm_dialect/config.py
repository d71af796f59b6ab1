"""config

Settings for one model configuration, read from the environment (and a
``.env`` file via python-dotenv).

| Variable | Default |
|---|---|
| ``LLM_DIALECT_URL`` | ``https://api.openai.com/v1/chat/completions`` |
| ``LLM_DIALECT_MODEL`` | ``o4-mini`` |
| ``LLM_DIALECT_API_KEY`` | unset (falls back to ``OPENAI_API_KEY``) |
| ``LLM_DIALECT_REQUIRES_AUTH`` | unset: decided from the URL |
| ``LLM_DIALECT_MAX_OUTPUT_TOKENS`` | ``5000`` |
| ``LLM_DIALECT_TIMEOUT`` | ``120`` seconds |
| ``LLM_DIALECT_STATE_FILE`` | ``~/.config/llm-dialect/parameters.json`` |
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from llm_dialect.core.exceptions import ConfigurationError
from llm_dialect.core.model_key import model_name_error
from llm_dialect.core.types import DEFAULT_MAX_OUTPUT_TOKENS, MAX_OUTPUT_TOKENS, MIN_OUTPUT_TOKENS

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_PREFIX = 'LLM_DIALECT_'
DEFAULT_URL = 'https://api.openai.com/v1/chat/completions'
DEFAULT_LOCAL_URL = 'http://localhost:11434/v1/chat/completions'
DEFAULT_MODEL = 'o4-mini'
DEFAULT_STATE_FILE = Path('~/.config/llm-dialect/parameters.json')

MIN_API_KEY_LENGTH = 10
MAX_API_KEY_LENGTH = 200

_TRUE = frozenset({'1', 'true', 'yes', 'on'})
_FALSE = frozenset({'0', 'false', 'no', 'off'})


def parse_bool(raw: str | None) -> bool | None:
    """Parse an env flag; None/blank means "not configured"."""
    if raw is None or not raw.strip():
        return None
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f'Expected a boolean value, got {raw!r}')


class Settings(BaseModel):
    """Validated configuration of one endpoint + model."""

    url: str = DEFAULT_URL
    model: str = DEFAULT_MODEL
    api_key: SecretStr | None = None
    requires_auth: bool | None = None
    max_output_tokens: int = Field(DEFAULT_MAX_OUTPUT_TOKENS, ge=MIN_OUTPUT_TOKENS, le=MAX_OUTPUT_TOKENS)
    timeout: float = Field(120.0, gt=0)
    state_file: Path = DEFAULT_STATE_FILE

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    @field_validator('model')
    @classmethod
    def _check_model(cls, v: str) -> str:
        if (problem := model_name_error(v)) is not None:
            raise ValueError(problem)
        return v

    @field_validator('api_key')
    @classmethod
    def _check_api_key(cls, v: SecretStr | None) -> SecretStr | None:
        if v is None or not v.get_secret_value().strip():
            return None
        key = v.get_secret_value().strip()
        if not MIN_API_KEY_LENGTH <= len(key) <= MAX_API_KEY_LENGTH:
            raise ValueError(f'API key must be between {MIN_API_KEY_LENGTH} and {MAX_API_KEY_LENGTH} characters')
        if any(not c.isprintable() for c in key):
            raise ValueError('API key cannot contain control characters')
        return SecretStr(key)

    @property
    def api_key_value(self) -> str | None:
        return self.api_key.get_secret_value() if self.api_key is not None else None

    @property
    def masked_api_key(self) -> str:
        key = self.api_key_value
        if not key:
            return '(none)'
        return f'{key[:4]}...{key[-4:]}' if len(key) > 8 else '********'  # noqa: PLR2004


def load_settings(
    environ: Mapping[str, str] | None = None,
    *,
    dotenv: bool = True,
    **overrides: object,
) -> Settings:
    """Build Settings from environ (default: os.environ after loading ``.env``).

    Keyword overrides that are not None win over the environment.

    Raises
    ------
    ConfigurationError
        Any value fails validation.

    """
    if environ is None:
        if dotenv:
            load_dotenv()
        environ = os.environ

    def _env(name: str) -> str | None:
        value = environ.get(ENV_PREFIX + name)
        return value if value is not None and value.strip() else None

    values: dict[str, object] = {
        'url': _env('URL'),
        'model': _env('MODEL'),
        'api_key': _env('API_KEY') or environ.get('OPENAI_API_KEY') or None,
        'requires_auth': parse_bool(_env('REQUIRES_AUTH')),
        'max_output_tokens': _env('MAX_OUTPUT_TOKENS'),
        'timeout': _env('TIMEOUT'),
        'state_file': _env('STATE_FILE'),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings(**{k: v for k, v in values.items() if v is not None})
    except ValidationError as exc:
        problems = '; '.join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
        raise ConfigurationError(f'Configuration is missing or invalid: {problems}') from exc
