"""In-process RawStore backed by plain lists of dicts."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from typing import Any

from ops_core.store.base import (
    BulkResult,
    Document,
    Filter,
    RawStore,
    UpsertOp,
    equality_fields,
    matches,
)

logger = logging.getLogger(__name__)


class MemoryStore(RawStore):
    """Dictionary-of-lists document store.

    Every write builds the new collection contents first and swaps them in
    with a single assignment, so a failing filter never leaves a collection
    half-written.

    Example:
        >>> store = MemoryStore({"bork_raw_data": [{"date": "2024-10-24"}]})
        >>> store.count("bork_raw_data", {"date": "2024-10-24"})
        1

    """

    atomic_replace = True

    def __init__(self, collections: dict[str, list[Document]] | None = None) -> None:
        self._data: dict[str, list[Document]] = {
            name: [copy.deepcopy(d) for d in docs] for name, docs in (collections or {}).items()
        }

    def collection_names(self) -> list[str]:
        return sorted(self._data)

    def find(self, collection: str, filter: Filter | None = None) -> list[Document]:
        docs = self._data.get(collection, [])
        return [copy.deepcopy(d) for d in docs if matches(d, filter)]

    def insert_many(self, collection: str, docs: Iterable[Document]) -> BulkResult:
        new_docs = [copy.deepcopy(d) for d in docs]
        self._data[collection] = self._data.get(collection, []) + new_docs
        return BulkResult(inserted=len(new_docs))

    def delete_many(self, collection: str, filter: Filter | None = None) -> int:
        current = self._data.get(collection, [])
        kept = [d for d in current if not matches(d, filter)]
        self._data[collection] = kept
        return len(current) - len(kept)

    def replace_many(
        self,
        collection: str,
        filter: Filter | None,
        docs: Iterable[Document],
    ) -> BulkResult:
        current = self._data.get(collection, [])
        kept = [d for d in current if not matches(d, filter)]
        new_docs = [copy.deepcopy(d) for d in docs]
        self._data[collection] = kept + new_docs
        return BulkResult(inserted=len(new_docs), deleted=len(current) - len(kept))

    def bulk_upsert(self, collection: str, ops: Iterable[UpsertOp]) -> BulkResult:
        working = [copy.deepcopy(d) for d in self._data.get(collection, [])]
        result = apply_upserts(working, ops)
        self._data[collection] = working
        return result


class _KeyIndex:
    """First document per equality key, built lazily once per field set."""

    def __init__(self, docs: list[Document]) -> None:
        self.docs = docs
        self._indexes: dict[tuple[str, ...], dict[tuple[Any, ...], Document]] = {}

    @staticmethod
    def key_of(filter: Filter) -> tuple[tuple[str, ...], tuple[Any, ...]] | None:
        """(fields, values) for a plain top-level equality filter, else None."""
        if not filter or equality_fields(filter) != dict(filter):
            return None
        fields = tuple(sorted(filter))
        values = tuple(filter[f] for f in fields)
        try:
            hash(values)
        except TypeError:
            return None
        return fields, values

    def _index(self, fields: tuple[str, ...]) -> dict[tuple[Any, ...], Document]:
        index = self._indexes.get(fields)
        if index is None:
            index = {}
            for doc in self.docs:
                try:
                    index.setdefault(tuple(doc.get(f) for f in fields), doc)
                except TypeError:
                    # unhashable values never equal a hashable filter value
                    continue
            self._indexes[fields] = index
        return index

    def find(self, filter: Filter) -> Document | None:
        key = self.key_of(filter)
        if key is None:
            return next((d for d in self.docs if matches(d, filter)), None)
        fields, values = key
        return self._index(fields).get(values)

    def added(self, doc: Document) -> None:
        for fields, index in self._indexes.items():
            try:
                index.setdefault(tuple(doc.get(f) for f in fields), doc)
            except TypeError:
                continue

    def updated(self, changed_fields: Iterable[str]) -> None:
        changed = set(changed_fields)
        if any(changed.intersection(fields) for fields in self._indexes):
            self._indexes.clear()


def apply_upserts(docs: list[Document], ops: Iterable[UpsertOp]) -> BulkResult:
    """Apply upserts in place to a list of documents (shared with FileStore).

    Plain equality filters are answered from an index built once per call.
    """
    result = BulkResult()
    index = _KeyIndex(docs)
    for op in ops:
        target = index.find(op.filter)
        if target is None:
            new_doc = equality_fields(op.filter)
            new_doc.update(copy.deepcopy(op.update))
            docs.append(new_doc)
            index.added(new_doc)
            result.upserted += 1
            continue
        result.matched += 1
        changed = [k for k, v in op.update.items() if target.get(k) != v]
        if changed:
            target.update(copy.deepcopy(op.update))
            index.updated(changed)
            result.modified += 1
    return result
