# stack_engine/executor/cancellation.py

import threading
from typing import Optional


class CancellationToken:
    """Cooperative cancellation, checked by the engine between steps."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Deployment was cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
