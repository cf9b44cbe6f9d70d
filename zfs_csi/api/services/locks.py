"""
Per-key mutual exclusion for lifecycle operations.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """A table of locks keyed by string, e.g. volume ID.

    Entries are reference counted and dropped once no caller holds or waits
    on them, so the table does not grow with the number of volumes ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
