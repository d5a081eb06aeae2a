"""In-memory view of endpoints, schedules and templates backed by the persistence port."""

import logging
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.core.errors import PersistenceError
from src.core.models import Endpoint, Schedule, Template
from src.ports.collaborators import PersistencePort

__all__ = ["Registry", "ENDPOINTS_KEY", "SCHEDULES_KEY", "TEMPLATES_KEY"]

logger = logging.getLogger(__name__)

ENDPOINTS_KEY = "endpoints"
SCHEDULES_KEY = "schedules"
TEMPLATES_KEY = "templates"


class Registry:
    """Holds entities in memory and writes whole collections back on change.

    Each collection is stored under one key, so a failed write is retried
    implicitly by the next successful one. Keys whose last write failed are
    remembered and retried by retry_pending().
    """

    def __init__(self, store: PersistencePort) -> None:
        self._store = store
        self.endpoints: dict[str, Endpoint] = {}
        self.schedules: dict[str, Schedule] = {}
        self.templates: dict[str, Template] = {}
        self._dirty: set[str] = set()

    def load(self) -> None:
        """Replace in-memory state with what the store holds.

        Malformed records are logged and skipped. Every schedule starts
        with ``in_flight`` cleared.
        """
        self.endpoints = {e.id: e for e in self._load_models(ENDPOINTS_KEY, Endpoint)}
        self.schedules = {s.id: s for s in self._load_models(SCHEDULES_KEY, Schedule)}
        self.templates = {t.id: t for t in self._load_models(TEMPLATES_KEY, Template)}
        logger.info(
            f"Loaded {len(self.endpoints)} endpoints, {len(self.schedules)} schedules "
            f"and {len(self.templates)} templates"
        )

    def save(self, key: str) -> None:
        """Persist one collection.

        Raises:
            PersistenceError: If the store rejected the write.
        """
        value = [m.model_dump(mode="json") for m in self._collection(key).values()]
        try:
            ok = self._store.save(key, value)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Store raised while saving {key}: {e}", exc_info=True)
            ok = False

        if not ok:
            self._dirty.add(key)
            raise PersistenceError(key)
        self._dirty.discard(key)

    def save_in_background(self, *keys: str) -> bool:
        """Persist collections for bookkeeping writes; failures are only logged.

        Returns:
            True if every write succeeded.
        """
        all_ok = True
        for key in keys:
            try:
                self.save(key)
            except PersistenceError as e:
                logger.warning(f"{e}; will retry on next mutation")
                all_ok = False
        return all_ok

    def retry_pending(self) -> None:
        """Retry collections whose previous write failed."""
        if self._dirty:
            self.save_in_background(*sorted(self._dirty))

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._dirty)

    def _collection(self, key: str) -> dict[str, Any]:
        if key == ENDPOINTS_KEY:
            return self.endpoints
        if key == SCHEDULES_KEY:
            return self.schedules
        if key == TEMPLATES_KEY:
            return self.templates
        raise KeyError(key)

    def _load_models(self, key: str, model: type[BaseModel]) -> list[Any]:
        raw = self._store.load(key) or []
        if not isinstance(raw, list):
            logger.error(f"Stored {key} is not a list, ignoring it")
            return []

        items = []
        for record in raw:
            try:
                items.append(model.model_validate(record))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed {key} record: {e}")
        return items
