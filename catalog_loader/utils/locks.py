"""
Keyed Locks
Process-wide mutual exclusion scoped to a string key (upload token, SKU).
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """
    Registry of per-key locks.

    Holders of different keys never contend. Entries are dropped once no
    thread holds or waits on them, so the registry stays sized by the
    number of keys in flight.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, List] = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


# Shared registries so separate engine instances in one process serialize together
upload_locks = KeyedLock()
catalog_locks = KeyedLock()
