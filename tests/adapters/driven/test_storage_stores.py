"""Tests for the persistence adapters."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from src.adapters.driven.storage.stores import JsonFileStore, MemoryStore

__all__ = []


def test_memory_store_round_trip_is_isolated() -> None:
    """Values are copied in and out so callers cannot mutate stored state."""
    store = MemoryStore()
    value = [{"id": "a"}]

    assert store.save("endpoints", value) is True
    value[0]["id"] = "mutated"
    loaded = store.load("endpoints")
    loaded.append({"id": "b"})

    assert store.load("endpoints") == [{"id": "a"}]


def test_memory_store_missing_key_is_none() -> None:
    assert MemoryStore().load("schedules") is None


def test_json_store_missing_file_is_empty(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "state.json")

    assert store.load("endpoints") is None


def test_json_store_persists_across_instances(tmp_path: Path) -> None:
    """Saved keys land in one JSON document readable by a new store."""
    path = tmp_path / "nested" / "state.json"
    store = JsonFileStore(path)

    assert store.save("endpoints", [{"id": "a"}]) is True
    assert store.save("analytics_consent", "denied") is True

    assert json.loads(path.read_text()) == {
        "endpoints": [{"id": "a"}],
        "analytics_consent": "denied",
    }
    reopened = JsonFileStore(path)
    assert reopened.load("endpoints") == [{"id": "a"}]
    assert reopened.load("analytics_consent") == "denied"


def test_json_store_rejects_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{ invalid json }")

    with pytest.raises(ValueError, match="invalid JSON"):
        JsonFileStore(path).load("endpoints")


def test_json_store_rejects_non_object_document(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("[1, 2, 3]")

    with pytest.raises(ValueError, match="must contain a JSON object"):
        JsonFileStore(path).load("endpoints")


def test_json_store_unserializable_value_returns_false(tmp_path: Path) -> None:
    """A failed write reports False and leaves the previous document intact."""
    path = tmp_path / "state.json"
    store = JsonFileStore(path)
    store.save("endpoints", [{"id": "a"}])

    assert store.save("endpoints", [object()]) is False

    assert json.loads(path.read_text()) == {"endpoints": [{"id": "a"}]}
    assert store.load("endpoints") == [{"id": "a"}]
    assert list(tmp_path.glob("*.tmp")) == []


def test_json_store_os_error_returns_false(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "state.json")

    with patch("src.adapters.driven.storage.stores.os.replace", side_effect=OSError("disk full")):
        assert store.save("endpoints", []) is False
