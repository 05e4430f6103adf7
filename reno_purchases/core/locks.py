import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLock:
    """One lock per key (project id, invoice id, ...), created on first use."""

    def __init__(self):
        self._lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._lock:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield
