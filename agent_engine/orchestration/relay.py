"""Directed agent-to-agent messaging built on the dispatcher."""
from __future__ import annotations

import logging
from typing import Any

from agent_engine.core.models import AgentMessage
from agent_engine.orchestration.dispatcher import ExecutionDispatcher

LOGGER = logging.getLogger(__name__)


class MessagingRelay:
    """Deliver a task to the recipient and optionally run a callback task on the sender."""

    def __init__(self, dispatcher: ExecutionDispatcher) -> None:
        self._dispatcher = dispatcher

    async def send_message(self, message: AgentMessage) -> Any:
        """Return the recipient's result; the callback's own result is discarded."""
        LOGGER.debug("Agent message: %s -> %s (%s)", message.sender, message.recipient, message.task)
        try:
            result = await self._dispatcher.execute(message.recipient, message.task, message.data)
            if message.callback:
                await self._dispatcher.execute(message.sender, message.callback, result)
        except Exception as exc:
            LOGGER.error("Agent message failed: %s -> %s: %s", message.sender, message.recipient, exc)
            raise
        return result
