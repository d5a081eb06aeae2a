"""Persistence adapters: in-memory and JSON file."""

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

__all__ = ["MemoryStore", "JsonFileStore"]

logger = logging.getLogger(__name__)


class MemoryStore:
    """Process-local store; state is lost on restart."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    def load(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def save(self, key: str, value: Any) -> bool:
        self._data[key] = copy.deepcopy(value)
        return True


class JsonFileStore:
    """All keys in one JSON document, rewritten atomically on every save.

    The document is read once, on first access. Writes go to a temporary
    file in the same directory and are moved into place with os.replace.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] | None = None

    def load(self, key: str) -> Any | None:
        return copy.deepcopy(self._document().get(key))

    def save(self, key: str, value: Any) -> bool:
        document = dict(self._document())
        document[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(document, f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write {key} to {self.path}: {e}")
            return False

        self._data = document
        return True

    def _document(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data

        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            data = {}
        except json.JSONDecodeError as e:
            raise ValueError(f"State file contains invalid JSON: {self.path}") from e

        if not isinstance(data, dict):
            raise ValueError(f"State file must contain a JSON object: {self.path}")

        logger.debug(f"Loaded state file {self.path} ({len(data)} keys)")
        self._data = data
        return data
