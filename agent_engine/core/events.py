"""In-memory event stream the engine publishes lifecycle notifications on."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List

from .models import utcnow

LOGGER = logging.getLogger(__name__)

AGENT_DEPLOYED = "agent:deployed"
AGENT_STOPPED = "agent:stopped"
EXECUTION_START = "agent:execution:start"
EXECUTION_COMPLETE = "agent:execution:complete"
EXECUTION_ERROR = "agent:execution:error"
WORKFLOW_COMPLETE = "workflow:complete"
WORKFLOW_ERROR = "workflow:error"
CONTEXT_UPDATE = "context:update"


@dataclass(slots=True)
class EngineEvent:
    """Typed notification drained by the host."""

    name: str
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)


class EventBus:
    """Fan-out of engine events to bounded subscriber queues."""

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: List[asyncio.Queue[EngineEvent]] = []

    def publish(self, name: str, **payload: Any) -> EngineEvent:
        """Deliver an event to every subscriber without suspending the caller."""
        event = EngineEvent(name=name, payload=payload)
        for queue in list(self._subscribers):
            if queue.full():
                dropped = queue.get_nowait()
                LOGGER.warning("Event queue full, dropping %s", dropped.name)
            queue.put_nowait(event)
        return event

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue[EngineEvent]]:
        """Context manager yielding a queue receiving every event published meanwhile."""
        queue: asyncio.Queue[EngineEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.append(queue)
        try:
            yield queue
        finally:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
