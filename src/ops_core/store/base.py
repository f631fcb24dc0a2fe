"""RawStore interface shared by every persistence backend.

The engine only needs a generic document store with equality/range queries,
bulk upsert, bulk insert and bulk delete. Filters use a small Mongo-like
dialect:

    {"date": {"$gte": "2024-10-01", "$lte": "2024-10-31"}, "locationId": "loc-1"}

Supported operators: ``$gte``, ``$gt``, ``$lte``, ``$lt``, ``$in``, ``$ne``,
``$exists``. Field names may be dotted paths into nested documents.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ops_core.exceptions import StoreUnavailableError
from ops_core.normalize import get_path

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Filter = Mapping[str, Any]

_MISSING = object()


@dataclass(frozen=True)
class UpsertOp:
    """One upsert: update the first document matching ``filter`` or insert one.

    Attributes:
        filter: Equality filter identifying the document (the natural key).
        update: Fields to set (``$set`` semantics).
    """

    filter: dict[str, Any]
    update: dict[str, Any]


@dataclass
class BulkResult:
    """Counts reported by a bulk operation."""

    inserted: int = 0
    matched: int = 0
    modified: int = 0
    upserted: int = 0
    deleted: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.modified + self.upserted


def _lookup(doc: Mapping[str, Any], field: str) -> Any:
    if "." in field:
        value = get_path(doc, field)
        return _MISSING if value is None else value
    return doc.get(field, _MISSING)


def _compare(value: Any, op: str, operand: Any, field: str) -> bool:
    if op == "$exists":
        return (value is not _MISSING) == bool(operand)
    if op == "$ne":
        return (None if value is _MISSING else value) != operand
    if op == "$in":
        return value is not _MISSING and value in operand
    if value is _MISSING or value is None:
        return False
    try:
        if op == "$gte":
            return value >= operand
        if op == "$gt":
            return value > operand
        if op == "$lte":
            return value <= operand
        if op == "$lt":
            return value < operand
    except TypeError as e:
        raise StoreUnavailableError(
            f"Cannot compare field {field!r} ({type(value).__name__}) "
            f"with {op} operand ({type(operand).__name__})"
        ) from e
    raise StoreUnavailableError(f"Unsupported filter operator {op!r} on field {field!r}")


def matches(doc: Mapping[str, Any], filter: Filter | None) -> bool:
    """Evaluate a filter against one document.

    Raises:
        StoreUnavailableError: If the filter cannot be evaluated (unknown
            operator or incomparable types).

    """
    if not filter:
        return True
    for field, condition in filter.items():
        value = _lookup(doc, field)
        if isinstance(condition, Mapping) and condition and all(
            str(k).startswith("$") for k in condition
        ):
            for op, operand in condition.items():
                if not _compare(value, op, operand, field):
                    return False
        else:
            if (None if value is _MISSING else value) != condition:
                return False
    return True


def equality_fields(filter: Filter) -> dict[str, Any]:
    """Plain (non-operator) top-level fields of a filter, used to seed upserts."""
    return {
        k: v
        for k, v in filter.items()
        if "." not in k and not (isinstance(v, Mapping) and any(str(x).startswith("$") for x in v))
    }


class RawStore(ABC):
    """Abstract document store consumed by the aggregation engine.

    Implementations must make each single bulk call atomic for its
    collection. ``replace_many`` is atomic when ``atomic_replace`` is True;
    otherwise the default delete-then-insert is used and callers must re-run
    the whole pass on failure.
    """

    atomic_replace: bool = False

    @abstractmethod
    def find(self, collection: str, filter: Filter | None = None) -> list[Document]:
        """Return copies of all documents matching ``filter``."""

    @abstractmethod
    def insert_many(self, collection: str, docs: Iterable[Document]) -> BulkResult:
        """Insert documents."""

    @abstractmethod
    def delete_many(self, collection: str, filter: Filter | None = None) -> int:
        """Delete matching documents and return how many were removed."""

    @abstractmethod
    def bulk_upsert(self, collection: str, ops: Iterable[UpsertOp]) -> BulkResult:
        """Apply upserts keyed by each op's filter."""

    def replace_many(
        self,
        collection: str,
        filter: Filter | None,
        docs: Iterable[Document],
    ) -> BulkResult:
        """Delete everything matching ``filter`` then insert ``docs``."""
        docs = list(docs)
        deleted = self.delete_many(collection, filter)
        result = self.insert_many(collection, docs)
        result.deleted = deleted
        return result

    def count(self, collection: str, filter: Filter | None = None) -> int:
        return len(self.find(collection, filter))

    def find_one(self, collection: str, filter: Filter | None = None) -> Document | None:
        found = self.find(collection, filter)
        return found[0] if found else None
