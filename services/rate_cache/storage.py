"""Key/value settings stores used to persist user-configurable cache options."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, Mapping, Protocol, runtime_checkable

from shared.config import BASE_DIR

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = BASE_DIR / ".cache" / "rate_cache_settings.json"


@runtime_checkable
class SettingsStore(Protocol):
    """Puerto para cualquier almacenamiento clave/valor de preferencias."""

    def get(self, keys: Iterable[str]) -> Dict[str, Any]: ...
    def set(self, record: Mapping[str, Any]) -> None: ...


class InMemorySettingsStore:
    """Process-local store, handy for tests and for running without a disk."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._lock = Lock()
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        with self._lock:
            return {key: self._data[key] for key in keys if key in self._data}

    def set(self, record: Mapping[str, Any]) -> None:
        with self._lock:
            self._data.update(record)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._data)


class JsonFileSettingsStore:
    """Persist settings to a JSON object on disk.

    Writes go to a temporary sibling file first and then replace the target,
    so a crash never leaves a half-written document behind.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
        self._lock = Lock()
        self._last_error: str | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def last_error(self) -> str | None:  # pragma: no cover - simple property
        return self._last_error

    def _read(self) -> Dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            self._last_error = f"Invalid settings file: {exc}"
            logger.warning("Ignoring corrupt settings file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            self._last_error = "Settings file does not contain an object"
            logger.warning("Ignoring settings file %s: not a JSON object", self._path)
            return {}
        return data

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        with self._lock:
            self._last_error = None
            data = self._read()
        return {key: data[key] for key in keys if key in data}

    def set(self, record: Mapping[str, Any]) -> None:
        with self._lock:
            data = self._read()
            data.update(record)
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp = self._path.with_suffix(self._path.suffix + ".tmp")
                tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
                tmp.replace(self._path)
            except OSError as exc:
                self._last_error = f"Could not save settings: {exc}"
                logger.error("Could not save settings to %s: %s", self._path, exc)
                raise
            self._last_error = None


__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "InMemorySettingsStore",
    "JsonFileSettingsStore",
    "SettingsStore",
]
