"""
Entity store interface and the in-process implementation.

Documents are plain dicts keyed by (kind, entity_id). All status transitions
go through ``update``: a compare-and-swap loop on a per-document version, so
concurrent writers never overwrite each other's changes.
"""

import copy
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.entities import ENTITY_KINDS
from ..utils.logging_config import get_logger, log_store_operation

Document = Dict[str, Any]
Mutator = Callable[[Document], Optional[Dict[str, Any]]]

DEFAULT_MAX_ATTEMPTS = 5


class StoreUnavailable(Exception):
    """The backing store cannot be reached."""


class ConcurrentUpdateError(Exception):
    """A compare-and-swap update lost the race too many times."""

    def __init__(self, kind: str, entity_id: str, attempts: int):
        super().__init__(f"Gave up updating {kind} '{entity_id}' after {attempts} conflicting attempts")
        self.kind = kind
        self.entity_id = entity_id


class EntityStore:
    """Abstract key/document store with merge writes and conditional updates."""

    def get(self, kind: str, entity_id: str) -> Optional[Document]:
        raise NotImplementedError

    def put(self, kind: str, entity_id: str, partial: Dict[str, Any]) -> Document:
        """Create the document or merge ``partial`` into it."""
        raise NotImplementedError

    def query(self, kind: str, **equals: Any) -> List[Document]:
        """Return documents whose fields equal every keyword given."""
        raise NotImplementedError

    def delete(self, kind: str, entity_id: str) -> bool:
        raise NotImplementedError

    def update(
        self, kind: str, entity_id: str, mutator: Mutator, max_attempts: int = DEFAULT_MAX_ATTEMPTS
    ) -> Optional[Tuple[Document, bool]]:
        """
        Apply ``mutator`` atomically.

        The mutator receives a copy of the current document and returns the
        fields to change, or ``None`` to leave it alone. It may be called more
        than once when another writer wins the race, so it must be pure.

        Returns:
            ``(document, changed)`` or ``None`` if the document does not exist.
        """
        for attempt in range(max_attempts):
            current = self._get_versioned(kind, entity_id)
            if current is None:
                return None
            document, version = current

            change = mutator(copy.deepcopy(document))
            if not change:
                return document, False

            updated = self._compare_and_set(kind, entity_id, version, change)
            if updated is not None:
                log_store_operation("update", kind, entity_id=entity_id, attempt=attempt + 1)
                return updated, True

            log_store_operation("update_conflict", kind, entity_id=entity_id, attempt=attempt + 1)

        raise ConcurrentUpdateError(kind, entity_id, max_attempts)

    # Backend primitives used by update()
    def _get_versioned(self, kind: str, entity_id: str) -> Optional[Tuple[Document, int]]:
        raise NotImplementedError

    def _compare_and_set(
        self, kind: str, entity_id: str, expected_version: int, change: Dict[str, Any]
    ) -> Optional[Document]:
        raise NotImplementedError

    def health_check(self) -> bool:
        return True

    def close(self):
        """Release backend resources."""


def _check_kind(kind: str):
    if kind not in ENTITY_KINDS:
        raise ValueError(f"Unknown entity kind: {kind}")


class MemoryEntityStore(EntityStore):
    """Process-local store for tests and local development."""

    def __init__(self):
        self._data: Dict[Tuple[str, str], Tuple[Document, int]] = {}
        self._lock = threading.RLock()
        self.logger = get_logger("store.memory")

    def get(self, kind, entity_id):
        _check_kind(kind)
        with self._lock:
            entry = self._data.get((kind, entity_id))
            return copy.deepcopy(entry[0]) if entry else None

    def put(self, kind, entity_id, partial):
        _check_kind(kind)
        with self._lock:
            document, version = self._data.get((kind, entity_id), ({}, 0))
            merged = {**document, **copy.deepcopy(partial)}
            self._data[(kind, entity_id)] = (merged, version + 1)
            log_store_operation("put", kind, entity_id=entity_id)
            return copy.deepcopy(merged)

    def query(self, kind, **equals):
        _check_kind(kind)
        with self._lock:
            return [
                copy.deepcopy(document)
                for (entry_kind, _), (document, _) in self._data.items()
                if entry_kind == kind and all(document.get(k) == v for k, v in equals.items())
            ]

    def delete(self, kind, entity_id):
        _check_kind(kind)
        with self._lock:
            removed = self._data.pop((kind, entity_id), None) is not None
        log_store_operation("delete", kind, entity_id=entity_id, removed=removed)
        return removed

    def _get_versioned(self, kind, entity_id):
        _check_kind(kind)
        with self._lock:
            entry = self._data.get((kind, entity_id))
            return (copy.deepcopy(entry[0]), entry[1]) if entry else None

    def _compare_and_set(self, kind, entity_id, expected_version, change):
        with self._lock:
            entry = self._data.get((kind, entity_id))
            if entry is None or entry[1] != expected_version:
                return None
            merged = {**entry[0], **copy.deepcopy(change)}
            self._data[(kind, entity_id)] = (merged, expected_version + 1)
            return copy.deepcopy(merged)

    def clear(self):
        with self._lock:
            self._data.clear()
