"""Prompt notification fan-out to the UI layer.

Every prompt is emitted twice: on a session-scoped channel so a UI bound to
one session can filter cheaply, and on the global channel so a generic
subscriber still observes all prompts.
"""

import asyncio
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "permission-prompt"


def channel_for(session_id: str) -> str:
    """Session-scoped channel name for prompt notifications."""
    return f"{GLOBAL_CHANNEL}:{session_id}"


class PromptNotifier(Protocol):
    """Anything that can deliver a prompt payload to the UI layer."""

    async def emit(self, channel: str, payload: dict[str, Any]) -> None: ...


class PromptBroadcaster:
    """In-process notifier backed by per-subscriber asyncio queues.

    Attributes:
        maxsize: Capacity of each subscriber queue
    """

    def __init__(self, maxsize: int = 256) -> None:
        self.maxsize = maxsize
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def subscribe(self, channel: str = GLOBAL_CHANNEL) -> asyncio.Queue:
        """Register a new queue on a channel.

        Args:
            channel: Channel name, GLOBAL_CHANNEL or channel_for(session_id)

        Returns:
            Queue receiving every payload emitted on the channel
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.setdefault(channel, []).append(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(channel, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(channel, None)

    async def emit(self, channel: str, payload: dict[str, Any]) -> None:
        for queue in list(self._subscribers.get(channel, ())):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning(f"[PromptBroadcaster] Queue full on {channel}, dropping prompt")
