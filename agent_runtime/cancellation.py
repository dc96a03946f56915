from __future__ import annotations

import threading
from typing import Optional

from .errors import ExecutionCanceled


class CancellationToken:
    """Cooperative cancellation flag checked between units of work.

    Safe to trigger from any thread. Work already in flight, such as a
    single LLM request, is allowed to finish.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Execution canceled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_canceled(self) -> bool:
        return self._event.is_set()

    def raise_if_canceled(self) -> None:
        if self._event.is_set():
            raise ExecutionCanceled(self.reason or "Execution canceled")
