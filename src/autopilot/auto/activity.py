"""Activity log — bounded, append-only audit trail of rule firings."""

from __future__ import annotations

from collections import deque

from autopilot.db.models import ActivityEvent
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.auto.activity")


class ActivityLog:
    """Ring buffer of ``ActivityEvent`` records, optionally mirrored to storage.

    Args:
        capacity: Maximum number of events kept; the oldest are evicted first.
        backend: Persistence collaborator exposing ``log_activity``,
            ``get_activity``, ``clear_activity`` and ``prune_activity``
            (``autopilot.db.queries`` satisfies it). None keeps the log in memory.
    """

    def __init__(self, capacity: int = 100, backend=None) -> None:
        self._events: deque[ActivityEvent] = deque(maxlen=max(capacity, 1))
        self.backend = backend

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    def __len__(self) -> int:
        return len(self._events)

    async def load(self) -> None:
        """Restore the newest ``capacity`` events from the backend."""
        if not self.backend:
            return
        stored = await self.backend.get_activity(limit=self.capacity)
        self._events.clear()
        self._events.extend(reversed(stored))
        logger.info(f"Loaded {len(self._events)} activity events")

    async def append(self, event: ActivityEvent) -> None:
        """Record a firing; storage errors are logged and never propagate."""
        self._events.append(event)
        if not self.backend:
            return
        try:
            await self.backend.log_activity(event)
            await self.backend.prune_activity(self.capacity)
        except Exception as e:
            logger.error(f"Failed to persist activity event {event.id}: {e}")

    def recent(
        self, limit: int | None = None, session_name: str | None = None
    ) -> list[ActivityEvent]:
        """Return events newest first, optionally for one session only."""
        events = [
            e
            for e in reversed(self._events)
            if session_name is None or e.session_name == session_name
        ]
        return events if limit is None else events[:limit]

    async def clear(self) -> None:
        self._events.clear()
        if self.backend:
            await self.backend.clear_activity()
        logger.info("Activity log cleared")

    async def resize(self, capacity: int) -> None:
        """Change the capacity, evicting the oldest events if it shrinks."""
        capacity = max(capacity, 1)
        if capacity == self.capacity:
            return
        self._events = deque(self._events, maxlen=capacity)
        if self.backend:
            await self.backend.prune_activity(capacity)
