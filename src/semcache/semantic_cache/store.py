"""
Semantic Cache Store

In-memory entry storage with a global index and a per-owner index.

Concurrency model:
- Index mutations (insert/remove/clear) take a short re-entrant lock;
  no lock is ever held across I/O or similarity math.
- Iteration works on a snapshot of the index taken under the lock, so a
  reader sees the index either before or after a concurrent mutation.
  Entries removed after the snapshot are skipped.
- Access bookkeeping on an entry uses that entry's own lock
  (CacheEntry.touch), so different entries update in parallel.
"""

import logging
import threading
from collections.abc import Iterator

from ..errors import CacheOperationError, DimensionMismatchError, NotFoundError
from .models import CacheEntry

logger = logging.getLogger(__name__)


class CacheStore:
    """
    Concurrency-safe entry storage.

    Both indices are insertion-ordered dicts used as ordered sets, which
    keeps insert and remove O(1).
    """

    def __init__(self, embedding_dimension: int) -> None:
        """
        Initialize the store.

        Args:
            embedding_dimension: Required length of every stored embedding
        """
        self.embedding_dimension = embedding_dimension
        self._entries: dict[str, CacheEntry] = {}
        self._global_index: dict[str, None] = {}
        self._owner_index: dict[str, dict[str, None]] = {}
        self._lock = threading.RLock()

    def insert(self, entry: CacheEntry) -> None:
        """
        Add an entry to the primary map and both indices.

        Raises:
            DimensionMismatchError: If the embedding has the wrong length
            CacheOperationError: If an entry with the same id is already stored
        """
        if entry.dimension != self.embedding_dimension:
            raise DimensionMismatchError(
                expected=self.embedding_dimension,
                actual=entry.dimension,
                details={"entry_id": entry.id},
            )

        with self._lock:
            if entry.id in self._entries:
                raise CacheOperationError(
                    f"Cache entry already exists: {entry.id}",
                    details={"entry_id": entry.id, "operation": "insert"},
                )
            self._entries[entry.id] = entry
            self._global_index[entry.id] = None
            if entry.owner_id is not None:
                self._owner_index.setdefault(entry.owner_id, {})[entry.id] = None

    def get_by_id(self, entry_id: str) -> CacheEntry | None:
        return self._entries.get(entry_id)

    def require(self, entry_id: str) -> CacheEntry:
        """
        Get an entry that must exist.

        Raises:
            NotFoundError: If no entry has this id
        """
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError("CacheEntry", entry_id)
        return entry

    def remove(self, entry_id: str) -> bool:
        """Remove an entry from the map and all indices; missing ids are a no-op."""
        with self._lock:
            entry = self._entries.pop(entry_id, None)
            if entry is None:
                return False

            self._global_index.pop(entry_id, None)
            if entry.owner_id is not None:
                owned = self._owner_index.get(entry.owner_id)
                if owned is not None:
                    owned.pop(entry_id, None)
                    if not owned:
                        del self._owner_index[entry.owner_id]
            return True

    def entries_for(self, owner_id: str | None = None, limit: int | None = None) -> Iterator[CacheEntry]:
        """
        Iterate entries in insertion order.

        Args:
            owner_id: Restrict to one owner's entries (None = all entries)
            limit: Stop after this many entries

        Yields:
            Live entries from a snapshot of the relevant index
        """
        with self._lock:
            if owner_id is None:
                ids = list(self._global_index)
            else:
                ids = list(self._owner_index.get(owner_id, ()))

        yielded = 0
        for entry_id in ids:
            if limit is not None and yielded >= limit:
                return
            entry = self._entries.get(entry_id)
            if entry is None:
                continue
            yielded += 1
            yield entry

    def snapshot(self, owner_id: str | None = None, limit: int | None = None) -> list[CacheEntry]:
        return list(self.entries_for(owner_id, limit))

    def count_for(self, owner_id: str) -> int:
        with self._lock:
            return len(self._owner_index.get(owner_id, ()))

    def owners(self) -> list[str]:
        with self._lock:
            return list(self._owner_index)

    def clear(self) -> int:
        """Remove everything; returns the number of entries dropped."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self._global_index.clear()
            self._owner_index.clear()

        logger.info(f"Cache store cleared ({removed} entries)")
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries
