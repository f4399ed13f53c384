# stack_engine/executor/locks.py

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class DeploymentLocks:
    """
    One re-entrant lock per stack scope.

    A thread holding the lock for a scope (for example a deploy command) may
    call engine operations for the same scope; other threads wait.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield
