"""File-backed RawStore: one JSON file per collection.

Collections are routed to a layer directory (raw/, aggregated/, control/)
by ``CollectionNames.layer_of``. Every write goes to a staging file in the
same directory and is swapped in with ``os.replace``, so a collection file
always holds either the old or the new content.

Datetimes are stored as ``{"$date": "<iso>"}`` and come back as aware
datetimes.

Examples:
    >>> from ops_core.store import FileStore
    >>> store = FileStore.from_root("data")
    >>> store.find("bork_raw_data", {"date": "2024-10-24"})
    []

"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path
from typing import Any

from ops_core.config import CollectionNames, DataPaths
from ops_core.exceptions import StoreUnavailableError
from ops_core.store.base import BulkResult, Document, Filter, RawStore, UpsertOp, matches
from ops_core.store.memory import apply_upserts
from ops_core.utils import coerce_datetime

logger = logging.getLogger(__name__)


def _encode(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return {"$date": obj.isoformat()}
    if isinstance(obj, date):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _decode(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and "$date" in obj:
        return coerce_datetime(obj["$date"])
    return obj


class FileStore(RawStore):
    """JSON document store rooted at a DataPaths layout."""

    atomic_replace = True

    def __init__(
        self,
        paths: DataPaths,
        collections: CollectionNames | None = None,
    ) -> None:
        self.paths = paths
        self.collections = collections or CollectionNames()

    @classmethod
    def from_root(
        cls, data_root: str | Path, collections: CollectionNames | None = None
    ) -> FileStore:
        return cls(DataPaths.from_root(data_root), collections)

    def path_for(self, collection: str) -> Path:
        layer = self.collections.layer_of(collection)
        return getattr(self.paths, layer) / f"{collection}.json"

    def _load(self, collection: str) -> list[Document]:
        path = self.path_for(collection)
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f, object_hook=_decode)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Cannot read collection {collection!r} from {path}: {e}") from e
        if not isinstance(data, list):
            raise StoreUnavailableError(f"Collection file {path} does not hold a document list")
        return data

    def _save(self, collection: str, docs: list[Document]) -> None:
        path = self.path_for(collection)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(docs, default=_encode, ensure_ascii=False, indent=1)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{collection}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise StoreUnavailableError(f"Cannot write collection {collection!r} to {path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.debug("Wrote %d documents to %s", len(docs), path)

    def find(self, collection: str, filter: Filter | None = None) -> list[Document]:
        return [d for d in self._load(collection) if matches(d, filter)]

    def insert_many(self, collection: str, docs: Iterable[Document]) -> BulkResult:
        new_docs = [copy.deepcopy(d) for d in docs]
        if not new_docs:
            return BulkResult()
        self._save(collection, self._load(collection) + new_docs)
        return BulkResult(inserted=len(new_docs))

    def delete_many(self, collection: str, filter: Filter | None = None) -> int:
        current = self._load(collection)
        kept = [d for d in current if not matches(d, filter)]
        deleted = len(current) - len(kept)
        if deleted:
            self._save(collection, kept)
        return deleted

    def replace_many(
        self,
        collection: str,
        filter: Filter | None,
        docs: Iterable[Document],
    ) -> BulkResult:
        current = self._load(collection)
        kept = [d for d in current if not matches(d, filter)]
        new_docs = [copy.deepcopy(d) for d in docs]
        self._save(collection, kept + new_docs)
        return BulkResult(inserted=len(new_docs), deleted=len(current) - len(kept))

    def bulk_upsert(self, collection: str, ops: Iterable[UpsertOp]) -> BulkResult:
        docs = self._load(collection)
        result = apply_upserts(docs, ops)
        if result.upserted or result.modified:
            self._save(collection, docs)
        return result
