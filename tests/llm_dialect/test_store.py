from __future__ import annotations

import json
from pathlib import Path

import pytest

from llm_dialect.core.exceptions import ConfigurationError
from llm_dialect.core.model_key import ModelKey
from llm_dialect.core.types import DetectedParameters, TokenFieldStyle
from llm_dialect.store import InMemoryParameterStore, JsonFileParameterStore, ParameterStore

KEY = ModelKey(endpoint='https://api.example.com/v1/chat/completions', model='gpt-4o')


def test_stores_satisfy_protocol(tmp_path: Path) -> None:
    assert isinstance(InMemoryParameterStore(), ParameterStore)
    assert isinstance(JsonFileParameterStore(tmp_path / 'p.json'), ParameterStore)


def test_missing_file_loads_nothing(tmp_path: Path) -> None:
    assert JsonFileParameterStore(tmp_path / 'absent.json').load(KEY) is None


def test_save_and_reload(tmp_path: Path) -> None:
    path = tmp_path / 'nested' / 'params.json'
    params = DetectedParameters(token_field_style=TokenFieldStyle.legacy, temperature=1.0)

    JsonFileParameterStore(path).save(KEY, params)
    other = ModelKey(endpoint=KEY.endpoint, model='llama3')
    JsonFileParameterStore(path).save(other, DetectedParameters())

    loaded = JsonFileParameterStore(path).load(KEY)
    assert loaded == params
    data = json.loads(path.read_text(encoding='utf-8'))
    assert set(data[KEY.endpoint]) == {'gpt-4o', 'llama3'}
    assert data[KEY.endpoint]['gpt-4o']['token_field_style'] == 'max_tokens'
    assert not list(path.parent.glob('*.tmp'))


def test_corrupt_file_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / 'params.json'
    path.write_text('{"not": "the right shape"', encoding='utf-8')
    store = JsonFileParameterStore(path)

    assert store.load(KEY) is None
    store.save(KEY, DetectedParameters())
    assert store.load(KEY) is not None


def test_unwritable_location(tmp_path: Path) -> None:
    blocker = tmp_path / 'file'
    blocker.write_text('x', encoding='utf-8')

    with pytest.raises(ConfigurationError, match='Failed to save configuration'):
        JsonFileParameterStore(blocker / 'params.json').save(KEY, DetectedParameters())


def test_path_below_a_file_loads_nothing(tmp_path: Path) -> None:
    blocker = tmp_path / 'file'
    blocker.write_text('x', encoding='utf-8')

    assert JsonFileParameterStore(blocker / 'params.json').load(KEY) is None


def test_failed_replace_leaves_no_temp_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(self: Path, target: Path) -> Path:  # noqa: ARG001
        raise OSError('disk full')

    monkeypatch.setattr(Path, 'replace', _fail)
    store = JsonFileParameterStore(tmp_path / 'params.json')

    with pytest.raises(ConfigurationError, match='disk full'):
        store.save(KEY, DetectedParameters())

    assert list(tmp_path.iterdir()) == []
