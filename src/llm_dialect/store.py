"""store

Persistence collaborator for detected parameters.

The generation client writes through to a `ParameterStore` after every
successful detection or self-heal; it only reads from it once, to seed its
in-memory cache at construction time.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import TypeAdapter, ValidationError

from llm_dialect.core.exceptions import ConfigurationError
from llm_dialect.core.model_key import ModelKey
from llm_dialect.core.types import DetectedParameters

logger = logging.getLogger(__name__)

# {endpoint: {model: DetectedParameters}}
_StateAdapter = TypeAdapter(dict[str, dict[str, DetectedParameters]])


@runtime_checkable
class ParameterStore(Protocol):
    def load(self, key: ModelKey) -> DetectedParameters | None: ...

    def save(self, key: ModelKey, params: DetectedParameters) -> None: ...


class InMemoryParameterStore:
    """Store kept for the lifetime of the process."""

    def __init__(self) -> None:
        self._data: dict[ModelKey, DetectedParameters] = {}

    def load(self, key: ModelKey) -> DetectedParameters | None:
        return self._data.get(key)

    def save(self, key: ModelKey, params: DetectedParameters) -> None:
        self._data[key] = params


class JsonFileParameterStore:
    """Store backed by one JSON file, grouped by endpoint then model.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash never leaves a truncated file behind.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, dict[str, DetectedParameters]]:
        try:
            raw = self.path.read_bytes()
        except (FileNotFoundError, NotADirectoryError):
            return {}
        except OSError as exc:
            raise ConfigurationError(f'Cannot read parameter store {self.path}: {exc}') from exc
        if not raw.strip():
            return {}
        try:
            return _StateAdapter.validate_json(raw)
        except ValidationError as exc:
            logger.warning('Ignoring unreadable parameter store %s: %s', self.path, exc.errors()[0]['msg'])
            return {}

    def load(self, key: ModelKey) -> DetectedParameters | None:
        return self._read().get(key.endpoint, {}).get(key.model)

    def save(self, key: ModelKey, params: DetectedParameters) -> None:
        state = self._read()
        state.setdefault(key.endpoint, {})[key.model] = params
        payload = json.dumps(_StateAdapter.dump_python(state, mode='json'), indent=2, sort_keys=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f'.{self.path.name}.', suffix='.tmp')
        except OSError as exc:
            raise ConfigurationError(f'Failed to save configuration: {exc}') from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                handle.write(payload)
                handle.write('\n')
            tmp_path.replace(self.path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise ConfigurationError(f'Failed to save configuration: {exc}') from exc
        logger.debug('Persisted parameters for %s to %s', key, self.path)
