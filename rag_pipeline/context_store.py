"""In-memory registry of run contexts with age-based eviction."""
import asyncio
import logging
import threading
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

from .models import RunContext, utcnow

logger = logging.getLogger(__name__)


class RunContextStore:
    """
    Maps run id -> RunContext.

    Every operation touches a single key under a short lock; there is no
    cross-key coordination.
    """

    def __init__(self):
        self._contexts: Dict[str, RunContext] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._contexts)

    def create(self, run_id: Optional[str] = None) -> RunContext:
        """
        Create and register a fresh context.

        Args:
            run_id: Explicit run id (a uuid4 is generated if omitted)

        Returns:
            New RunContext
        """
        context = RunContext(run_id=run_id or str(uuid.uuid4()))
        with self._lock:
            self._contexts[context.run_id] = context
        logger.info(f"Created run context {context.run_id}")
        return context

    def get(self, run_id: str) -> Optional[RunContext]:
        """Get a context by run id, or None."""
        with self._lock:
            return self._contexts.get(run_id)

    def update(self, context: RunContext) -> None:
        """Store the context snapshot and bump its updated timestamp."""
        context.touch()
        with self._lock:
            self._contexts[context.run_id] = context

    def add_message(
        self,
        context: RunContext,
        sender: str,
        recipient: str,
        content: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append a message to a context and store it."""
        context.add_message(sender, recipient, content, data)
        self.update(context)
        logger.debug(f"Added message from {sender} to {recipient} in run {context.run_id}")

    def remove(self, run_id: str) -> bool:
        """Remove a specific context."""
        with self._lock:
            removed = self._contexts.pop(run_id, None) is not None
        if removed:
            logger.info(f"Removed run context {run_id}")
        return removed

    def all(self) -> List[RunContext]:
        """All contexts (monitoring/debugging)."""
        with self._lock:
            return list(self._contexts.values())

    def cleanup(self, max_age: Union[float, timedelta]) -> int:
        """
        Evict contexts not updated within ``max_age``.

        Args:
            max_age: Maximum age as timedelta or seconds

        Returns:
            Number of evicted contexts
        """
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)

        cutoff = utcnow() - max_age
        with self._lock:
            stale = [run_id for run_id, ctx in self._contexts.items() if ctx.updated_at < cutoff]
            for run_id in stale:
                del self._contexts[run_id]

        if stale:
            logger.info(f"Cleaned up {len(stale)} run contexts older than {max_age}")

        return len(stale)


class ContextSweeper:
    """Background task that periodically evicts old run contexts."""

    def __init__(
        self,
        store: RunContextStore,
        max_age: float = 86400.0,
        interval: float = 3600.0,
        retry_delay: float = 300.0,
    ):
        """
        Initialize sweeper.

        Args:
            store: Context store to sweep
            max_age: Context max age in seconds
            interval: Seconds between sweeps
            retry_delay: Seconds to wait after a failed sweep
        """
        self.store = store
        self.max_age = max_age
        self.interval = interval
        self.retry_delay = retry_delay
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="context-sweeper")
        logger.debug(f"Context sweeper started (interval={self.interval}s, max_age={self.max_age}s)")

    async def stop(self) -> None:
        """Stop the sweeper and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                self.store.cleanup(self.max_age)
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error during context cleanup: {e}", exc_info=True)
                await asyncio.sleep(self.retry_delay)
