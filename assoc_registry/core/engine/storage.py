"""
Storage adapter contract for the registry collections.

The hierarchy engine only talks to storage through this interface:

    find_by_id(collection, id)          -> record or None
    find_where(collection, where)       -> list of records
    count_where(collection, where)      -> int
    insert(collection, record)
    upsert(collection, id, fields)      -> partial update, insert when missing

Predicates are plain data (`Where` = tuple of `Condition`) so that each
backend can translate them: the in-memory store evaluates them directly and
the BigQuery store turns them into parameterized SQL.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

ASSOCIATIONS = "associations"
CLUBS = "clubs"
REGISTRATIONS = "association_registrations"

COLLECTIONS = (ASSOCIATIONS, CLUBS, REGISTRATIONS)

FIELD_PATTERN = re.compile(r'^[a-z][a-z0-9_]{0,63}$')

OPERATORS = ("eq", "ne", "contains", "in", "search")


@dataclass(frozen=True)
class Condition:
    """
    A single predicate term.

    ops:
        eq        field == value
        ne        field != value (missing fields compare as None)
        contains  value is an element of the array field
        in        field value is one of `value` (a sequence)
        search    case-insensitive substring of `value` in any of the
                  comma-separated fields named by `field`
    """
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op}")
        for name in self.field_names:
            if not FIELD_PATTERN.match(name):
                raise ValueError(f"Invalid field name: {name}")

    @property
    def field_names(self) -> List[str]:
        if self.op == "search":
            return [f.strip() for f in self.field.split(",")]
        return [self.field]


Where = Tuple[Condition, ...]


def eq(field: str, value: Any) -> Condition:
    return Condition(field, "eq", value)


def ne(field: str, value: Any) -> Condition:
    return Condition(field, "ne", value)


def contains(field: str, value: Any) -> Condition:
    return Condition(field, "contains", value)


def in_(field: str, values: Sequence[Any]) -> Condition:
    return Condition(field, "in", tuple(values))


def search(fields: Sequence[str], text: str) -> Condition:
    return Condition(",".join(fields), "search", text)


def where(*conditions: Condition) -> Where:
    return tuple(conditions)


class StorageAdapter(ABC):
    """Record storage for the registry collections."""

    @abstractmethod
    def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the record, or None when it does not exist."""

    @abstractmethod
    def find_where(
        self,
        collection: str,
        where: Where,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """Return copies of all records matching every condition."""

    @abstractmethod
    def count_where(self, collection: str, where: Where) -> int:
        """Count records matching every condition."""

    @abstractmethod
    def insert(self, collection: str, record: Dict[str, Any]) -> None:
        """Insert a new record. The record must carry an `id` unless the collection is keyless."""

    @abstractmethod
    def upsert(self, collection: str, record_id: str, fields: Dict[str, Any]) -> None:
        """Set `fields` on the record, leaving other fields untouched. Inserts when missing."""

    def find_one_where(self, collection: str, where: Where) -> Optional[Dict[str, Any]]:
        rows = self.find_where(collection, where, limit=1)
        return rows[0] if rows else None


def check_collection(collection: str) -> str:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")
    return collection
