"""Document store adapters used by the aggregation engine."""

from ops_core.store.base import BulkResult, RawStore, UpsertOp, matches
from ops_core.store.file import FileStore
from ops_core.store.memory import MemoryStore

__all__ = [
    "BulkResult",
    "FileStore",
    "MemoryStore",
    "RawStore",
    "UpsertOp",
    "matches",
]
