"""Process-wide registry of session permission endpoints."""

import asyncio
import logging
from pathlib import Path

from ..config import Settings
from ..errors import SessionNotFound
from ..models.permissions import PermissionDecision, PromptEvent
from ..notifier import PromptNotifier
from .endpoint import SessionEndpoint

logger = logging.getLogger(__name__)


class BrokerRegistry:
    """Maps session ids to their live SessionEndpoint.

    Construct one per process and pass it to whatever needs it. The lock only
    guards dictionary manipulation; starting and stopping endpoints happens
    outside it so unrelated sessions never wait on each other.

    Example:
        async with BrokerRegistry(notifier=broadcaster) as registry:
            port = await registry.start("pending-1")
            await registry.rekey("pending-1", "real-42")
            await registry.resolve("real-42", prompt_id, PermissionDecision.allow())
    """

    def __init__(
        self,
        settings: Settings | None = None,
        notifier: PromptNotifier | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.notifier = notifier
        self._endpoints: dict[str, SessionEndpoint] = {}
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "BrokerRegistry":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop_all()

    async def start(self, session_id: str) -> int:
        """Start a permission endpoint for a session.

        A session id that is already live has its previous endpoint stopped.

        Returns:
            Port the new endpoint listens on

        Raises:
            BindError: If no loopback port could be bound
        """
        endpoint = SessionEndpoint(session_id, self.settings, self.notifier)
        port = await endpoint.start()

        async with self._lock:
            previous = self._endpoints.pop(session_id, None)
            self._endpoints[session_id] = endpoint

        if previous is not None:
            logger.warning(f"[BrokerRegistry] Replacing live permission server for session '{session_id}'")
            await previous.stop()

        return port

    async def stop(self, session_id: str) -> None:
        """Stop a session's endpoint. Unknown sessions are ignored."""
        async with self._lock:
            endpoint = self._endpoints.pop(session_id, None)

        if endpoint is None:
            logger.debug(f"[BrokerRegistry] No permission server for session '{session_id}', nothing to stop")
            return

        await endpoint.stop()
        logger.info(f"[BrokerRegistry] Permission server for session '{session_id}' stopped and cleaned up")

    async def rekey(self, old_id: str, new_id: str) -> None:
        """Move an endpoint from a placeholder id to its final session id.

        The listener, port and pending prompts are untouched. Unknown old ids
        are ignored; an endpoint already registered under new_id is stopped.
        """
        async with self._lock:
            endpoint = self._endpoints.pop(old_id, None)
            if endpoint is None:
                logger.debug(f"[BrokerRegistry] No permission server for session '{old_id}', nothing to rekey")
                return
            endpoint.session_id = new_id
            displaced = self._endpoints.pop(new_id, None)
            self._endpoints[new_id] = endpoint

        logger.info(f"[BrokerRegistry] Re-keyed permission server from '{old_id}' to '{new_id}'")
        if displaced is not None:
            logger.warning(f"[BrokerRegistry] Re-key displaced live permission server for session '{new_id}'")
            await displaced.stop()

    async def resolve(self, session_id: str, prompt_id: str, decision: PermissionDecision) -> None:
        """Deliver the UI's decision for a pending prompt.

        Raises:
            SessionNotFound: If no endpoint is registered under session_id
            PromptNotFound: If the prompt is not pending in that session
            DeliveryFailure: If the waiting request already went away
        """
        endpoint = await self._get(session_id)
        endpoint.resolve(prompt_id, decision)

    async def port(self, session_id: str) -> int:
        """Port of a session's endpoint.

        Raises:
            SessionNotFound: If no endpoint is registered under session_id
        """
        endpoint = await self._get(session_id)
        return endpoint.port

    async def pending(self, session_id: str) -> list[PromptEvent]:
        """Prompts of a session still awaiting a decision.

        Raises:
            SessionNotFound: If no endpoint is registered under session_id
        """
        endpoint = await self._get(session_id)
        return endpoint.pending()

    async def set_artifacts(self, session_id: str, paths: list[Path]) -> None:
        """Record launch artifacts so stopping the session removes them.

        Raises:
            SessionNotFound: If no endpoint is registered under session_id
        """
        endpoint = await self._get(session_id)
        endpoint.artifacts = list(paths)

    async def sessions(self) -> list[str]:
        async with self._lock:
            return list(self._endpoints)

    async def stop_all(self) -> None:
        """Stop every registered endpoint."""
        async with self._lock:
            endpoints = list(self._endpoints.values())
            self._endpoints.clear()

        if endpoints:
            await asyncio.gather(*(endpoint.stop() for endpoint in endpoints))
            logger.info(f"[BrokerRegistry] Stopped {len(endpoints)} permission server(s)")

    async def _get(self, session_id: str) -> SessionEndpoint:
        async with self._lock:
            endpoint = self._endpoints.get(session_id)
        if endpoint is None:
            raise SessionNotFound(session_id)
        return endpoint
