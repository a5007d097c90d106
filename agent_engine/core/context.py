"""Shared key/value context visible to every agent and the scheduler."""
from __future__ import annotations

from typing import Any, Dict, Optional

from .events import CONTEXT_UPDATE, EventBus

CURRENT_FEATURE = "current_feature"


class SharedContext:
    """Process-wide context owned by the orchestrator.

    Keys are scoped by convention only (for example ``current_feature``).
    """

    def __init__(self, events: Optional[EventBus] = None) -> None:
        self._values: Dict[str, Any] = {}
        self._events = events

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        if self._events is not None:
            self._events.publish(CONTEXT_UPDATE, key=key, value=value)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def delete(self, key: str) -> None:
        if self._values.pop(key, None) is not None and self._events is not None:
            self._events.publish(CONTEXT_UPDATE, key=key, value=None)

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values
