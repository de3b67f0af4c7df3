"""
In-memory storage backend.

Thread-safe dictionary store used for local development, seeded demos and
tests. Records are deep-copied on the way in and out so callers never hold
references into the store.
"""

import copy
import threading
import uuid
from typing import Any, Dict, List, Optional, Sequence

from assoc_registry.core.engine.storage import (
    COLLECTIONS,
    Condition,
    StorageAdapter,
    Where,
    check_collection,
)
from assoc_registry.core.utils.logging import get_logger

logger = get_logger(__name__)


def _matches(record: Dict[str, Any], condition: Condition) -> bool:
    if condition.op == "search":
        needle = str(condition.value).lower()
        return any(
            needle in str(record.get(name) or "").lower()
            for name in condition.field_names
        )

    value = record.get(condition.field)
    if condition.op == "eq":
        return value == condition.value
    if condition.op == "ne":
        return value != condition.value
    if condition.op == "contains":
        return isinstance(value, (list, tuple)) and condition.value in value
    if condition.op == "in":
        return value in condition.value
    raise ValueError(f"Unsupported operator: {condition.op}")


def _sort_key(field: str):
    def key(record: Dict[str, Any]):
        value = record.get(field)
        # None sorts last; strings compare case-insensitively
        if isinstance(value, str):
            value = value.lower()
        return (value is None, value if value is not None else 0)
    return key


class InMemoryStorage(StorageAdapter):
    """Dictionary-backed storage keyed by collection then record id."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in COLLECTIONS}
        self._lock = threading.RLock()

    def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        check_collection(collection)
        with self._lock:
            record = self._data[collection].get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def find_where(
        self,
        collection: str,
        where: Where,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        check_collection(collection)
        with self._lock:
            rows = [
                record for record in self._data[collection].values()
                if all(_matches(record, c) for c in where)
            ]
            # Stable multi-key sort: apply keys from last to first
            for field in reversed(list(order_by or [])):
                descending = field.startswith("-")
                rows.sort(key=_sort_key(field.lstrip("-")), reverse=descending)
            rows = rows[offset:]
            if limit is not None:
                rows = rows[:limit]
            return copy.deepcopy(rows)

    def count_where(self, collection: str, where: Where) -> int:
        check_collection(collection)
        with self._lock:
            return sum(
                1 for record in self._data[collection].values()
                if all(_matches(record, c) for c in where)
            )

    def insert(self, collection: str, record: Dict[str, Any]) -> None:
        check_collection(collection)
        record = copy.deepcopy(record)
        record_id = record.setdefault("id", uuid.uuid4().hex)
        with self._lock:
            if record_id in self._data[collection]:
                raise ValueError(f"Record '{record_id}' already exists in {collection}")
            self._data[collection][record_id] = record
        logger.debug(f"Inserted {collection}/{record_id}")

    def upsert(self, collection: str, record_id: str, fields: Dict[str, Any]) -> None:
        check_collection(collection)
        with self._lock:
            record = self._data[collection].setdefault(record_id, {"id": record_id})
            record.update(copy.deepcopy(fields))
            record["id"] = record_id

    def clear(self) -> None:
        with self._lock:
            for name in COLLECTIONS:
                self._data[name].clear()
