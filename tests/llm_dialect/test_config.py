from __future__ import annotations

from pathlib import Path

import pytest

from llm_dialect.config import DEFAULT_URL, load_settings, parse_bool
from llm_dialect.core.exceptions import ConfigurationError


def test_defaults_from_empty_environment() -> None:
    settings = load_settings({})
    assert settings.url == DEFAULT_URL
    assert settings.api_key is None
    assert settings.requires_auth is None
    assert settings.max_output_tokens == 5000  # noqa: PLR2004
    assert settings.masked_api_key == '(none)'


def test_values_from_environment() -> None:
    settings = load_settings(
        {
            'LLM_DIALECT_URL': 'http://localhost:11434/v1/chat/completions',
            'LLM_DIALECT_MODEL': 'llama3:8b',
            'LLM_DIALECT_REQUIRES_AUTH': 'no',
            'LLM_DIALECT_MAX_OUTPUT_TOKENS': '2048',
            'LLM_DIALECT_TIMEOUT': '30',
            'LLM_DIALECT_STATE_FILE': '/tmp/params.json',  # noqa: S108
        },
    )
    assert settings.model == 'llama3:8b'
    assert settings.requires_auth is False
    assert settings.max_output_tokens == 2048  # noqa: PLR2004
    assert settings.timeout == 30.0  # noqa: PLR2004
    assert settings.state_file == Path('/tmp/params.json')  # noqa: S108


def test_openai_key_fallback_and_masking() -> None:
    settings = load_settings({'OPENAI_API_KEY': 'sk-abcdefghijklmnop'})
    assert settings.api_key_value == 'sk-abcdefghijklmnop'
    assert settings.masked_api_key == 'sk-a...mnop'
    assert 'abcdefghijklmnop' not in repr(settings)


def test_overrides_win_over_environment() -> None:
    settings = load_settings({'LLM_DIALECT_MODEL': 'gpt-4o'}, model='o4-mini', url=None)
    assert settings.model == 'o4-mini'
    assert settings.url == DEFAULT_URL


@pytest.mark.parametrize(
    'environ',
    [
        {'LLM_DIALECT_MODEL': 'bad"model'},
        {'LLM_DIALECT_API_KEY': 'short'},
        {'LLM_DIALECT_MAX_OUTPUT_TOKENS': '99'},
        {'LLM_DIALECT_MAX_OUTPUT_TOKENS': '8001'},
        {'LLM_DIALECT_TIMEOUT': '0'},
        {'LLM_DIALECT_REQUIRES_AUTH': 'maybe'},
    ],
)
def test_invalid_values(environ: dict[str, str]) -> None:
    with pytest.raises(ConfigurationError):
        load_settings(environ)


@pytest.mark.parametrize(('raw', 'expected'), [('true', True), ('ON', True), ('0', False), ('', None), (None, None)])
def test_parse_bool(raw: str | None, expected: bool | None) -> None:
    assert parse_bool(raw) is expected
