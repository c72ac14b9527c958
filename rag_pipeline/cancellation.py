"""Cooperative cancellation for pipeline runs."""
import threading
from typing import Optional

from .errors import RunCancelled


class CancellationToken:
    """
    Flag threaded through every stage of a run.

    Safe to cancel from another thread or task; stages check it between
    units of external I/O.
    """

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            RunCancelled: cancellation was requested
        """
        if self._event.is_set():
            raise RunCancelled(self.run_id)
