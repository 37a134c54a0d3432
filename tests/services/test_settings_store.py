from __future__ import annotations

import json
from pathlib import Path

import pytest

from services.rate_cache.storage import (
    InMemorySettingsStore,
    JsonFileSettingsStore,
    SettingsStore,
)


def test_stores_satisfy_protocol(tmp_path: Path) -> None:
    assert isinstance(InMemorySettingsStore(), SettingsStore)
    assert isinstance(JsonFileSettingsStore(tmp_path / "settings.json"), SettingsStore)


def test_in_memory_store_returns_requested_keys_only() -> None:
    store = InMemorySettingsStore({"a": 1})
    store.set({"b": 2})

    assert store.get(["a", "b", "c"]) == {"a": 1, "b": 2}
    assert store.get(["a"]) == {"a": 1}


def test_json_store_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"
    store = JsonFileSettingsStore(path)

    assert store.get(["coingecko_api_key"]) == {}

    store.set({"coingecko_api_key": "CG-demoKey1234567890"})
    store.set({"refresh_interval_ms": 600_000})

    assert json.loads(path.read_text(encoding="utf-8")) == {
        "coingecko_api_key": "CG-demoKey1234567890",
        "refresh_interval_ms": 600_000,
    }
    assert JsonFileSettingsStore(path).get(["refresh_interval_ms"]) == {
        "refresh_interval_ms": 600_000
    }
    assert not path.with_suffix(".json.tmp").exists()


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_json_store_ignores_unusable_files(tmp_path: Path, content: str) -> None:
    path = tmp_path / "settings.json"
    path.write_text(content, encoding="utf-8")
    store = JsonFileSettingsStore(path)

    assert store.get(["anything"]) == {}
    assert store.last_error is not None

    store.set({"anything": 1})
    assert store.get(["anything"]) == {"anything": 1}
    assert store.last_error is None


def test_json_store_propagates_write_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = JsonFileSettingsStore(blocker / "settings.json")

    with pytest.raises(OSError):
        store.set({"anything": 1})
