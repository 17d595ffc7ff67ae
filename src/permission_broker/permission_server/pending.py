"""Pending-request table: prompt id -> single-use completion slot."""

import asyncio
import logging

from ..models.permissions import PromptEvent

logger = logging.getLogger(__name__)


class PromptAbandoned(Exception):
    """The slot was dropped without a decision (endpoint shutting down)."""


class PendingRequestTable:
    """Tracks every permission prompt currently awaiting a decision.

    Each entry maps a broker-generated prompt id to a future that is settled at
    most once. Whoever removes an entry with take() owns the right to settle it,
    which is what makes "resolved" and "timed out" mutually exclusive.

    None of the methods await, so each call is an atomic critical section on
    the event loop.
    """

    def __init__(self) -> None:
        self._slots: dict[str, tuple[PromptEvent, asyncio.Future]] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, prompt_id: object) -> bool:
        return prompt_id in self._slots

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self, event: PromptEvent) -> asyncio.Future:
        """Insert a fresh slot for a prompt.

        Args:
            event: Prompt being registered

        Returns:
            Future that will receive the PermissionDecision

        Raises:
            PromptAbandoned: If the table was already closed
            KeyError: If the prompt id is already pending
        """
        if self._closed:
            raise PromptAbandoned(event.prompt_id)
        if event.prompt_id in self._slots:
            raise KeyError(event.prompt_id)
        slot: asyncio.Future = asyncio.get_running_loop().create_future()
        self._slots[event.prompt_id] = (event, slot)
        return slot

    def take(self, prompt_id: str) -> asyncio.Future | None:
        """Remove a slot and hand it to the caller, or None if not pending."""
        entry = self._slots.pop(prompt_id, None)
        return entry[1] if entry else None

    def events(self) -> list[PromptEvent]:
        """Snapshot of the prompts still waiting for a decision."""
        return [event for event, _ in self._slots.values()]

    def close(self) -> int:
        """Refuse new slots and abandon every pending one.

        Returns:
            Number of prompts that were abandoned
        """
        self._closed = True
        slots = list(self._slots.items())
        self._slots.clear()
        for prompt_id, (_, slot) in slots:
            if not slot.done():
                slot.set_exception(PromptAbandoned(prompt_id))
        if slots:
            logger.info(f"[PendingRequestTable] Abandoned {len(slots)} pending prompt(s)")
        return len(slots)
