"""Per-session HTTP endpoint for permission prompts.

Each session gets its own aiohttp application bound to an ephemeral loopback
port. The bridge process POSTs one request per permission prompt and the
connection stays open until the UI resolves the prompt, the prompt times out,
or the endpoint is stopped.
"""

import asyncio
import dataclasses
import logging
import time
import uuid
from pathlib import Path

from aiohttp import web

from ..config import Settings
from ..errors import BindError, DeliveryFailure, PromptNotFound
from ..models.permissions import PermissionDecision, PermissionRequest, PromptEvent
from ..notifier import GLOBAL_CHANNEL, PromptNotifier, channel_for
from .artifacts import cleanup_artifacts
from .pending import PendingRequestTable, PromptAbandoned

logger = logging.getLogger(__name__)

PERMISSION_PATH = "/permission-prompt"


class SessionEndpoint:
    """HTTP listener plus pending-request table for one session.

    Attributes:
        session_id: Current session id; rewritten in place by a rekey and read
            at emission time, so in-flight requests pick up the new value
        settings: Broker settings
        notifier: Receiver of prompt notifications, if any
        port: Bound port, set by start()
        artifacts: Launch artifacts removed when the endpoint stops
    """

    def __init__(
        self,
        session_id: str,
        settings: Settings,
        notifier: PromptNotifier | None = None,
    ) -> None:
        self.session_id = session_id
        self.settings = settings
        self.notifier = notifier
        self.port: int | None = None
        self.artifacts: list[Path] = []

        self._pending = PendingRequestTable()
        self._notify_tasks: set[asyncio.Task] = set()
        self._shutdown = asyncio.Event()
        self._runner: web.AppRunner | None = None

        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._setup_routes()

    @property
    def stopped(self) -> bool:
        return self._shutdown.is_set()

    def pending(self) -> list[PromptEvent]:
        """Prompts still waiting for a decision, tagged with the current session id."""
        return [dataclasses.replace(e, session_id=self.session_id) for e in self._pending.events()]

    # ── Routes ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_post(PERMISSION_PATH, self._handle_permission_prompt)
        r.add_route("*", "/{tail:.*}", self._handle_not_found)

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        start = time.monotonic()
        try:
            response = await handler(request)
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(
                f"[SessionEndpoint] HTTP {request.method} {request.path} failed duration_ms={elapsed_ms:.1f}"
            )
            raise
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug(
            f"[SessionEndpoint] HTTP {request.method} {request.path} "
            f"status={response.status} duration_ms={elapsed_ms:.1f}"
        )
        return response

    # ── Lifecycle ──

    async def start(self) -> int:
        """Bind to an ephemeral loopback port and start serving.

        Returns:
            The bound port

        Raises:
            BindError: If no port could be bound
        """
        runner = web.AppRunner(
            self._app,
            access_log=None,
            shutdown_timeout=self.settings.shutdown_timeout_seconds,
        )
        await runner.setup()
        site = web.TCPSite(runner, self.settings.host, 0)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            raise BindError(self.session_id, str(e)) from e

        port = self._resolve_port(site, runner)
        if port is None:
            await runner.cleanup()
            raise BindError(self.session_id, "no listening socket was reported")

        self._runner = runner
        self.port = port
        logger.info(
            f"[SessionEndpoint] Permission server for session '{self.session_id}' "
            f"listening on {self.settings.host}:{port}"
        )
        return port

    async def stop(self) -> None:
        """Stop accepting requests, deny every pending prompt and remove artifacts."""
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        abandoned = self._pending.close()
        for task in list(self._notify_tasks):
            task.cancel()

        if self._runner:
            try:
                await self._runner.cleanup()
            except Exception as e:
                logger.warning(f"[SessionEndpoint] Error shutting down listener on port {self.port}: {e}")
            self._runner = None

        cleanup_artifacts(self.artifacts)
        self.artifacts = []

        logger.info(
            f"[SessionEndpoint] Permission server for session '{self.session_id}' stopped "
            f"({abandoned} pending prompt(s) denied)"
        )

    @staticmethod
    def _resolve_port(site: web.TCPSite, runner: web.AppRunner) -> int | None:
        sockets = getattr(getattr(site, "_server", None), "sockets", None) or ()
        if sockets:
            return sockets[0].getsockname()[1]
        addresses = getattr(runner, "addresses", None) or ()
        if addresses:
            first = addresses[0]
            if isinstance(first, tuple) and len(first) >= 2:
                return int(first[1])
        return None

    # ── Resolution ──

    def resolve(self, prompt_id: str, decision: PermissionDecision) -> None:
        """Deliver a decision to the request waiting on a prompt.

        Raises:
            PromptNotFound: If the prompt is not pending
            DeliveryFailure: If the taken slot was already settled. Waiters
                remove their own entry before abandoning a slot, so this is a
                guard against a broken table invariant rather than a normal outcome
        """
        slot = self._pending.take(prompt_id)
        if slot is None:
            raise PromptNotFound(self.session_id, prompt_id)
        if slot.done():
            raise DeliveryFailure(prompt_id)
        slot.set_result(decision)
        logger.info(
            f"[SessionEndpoint] Prompt {prompt_id} in session '{self.session_id}' resolved: {decision.behavior}"
        )

    # ── Handlers ──

    async def _handle_not_found(self, request: web.Request) -> web.Response:
        return web.json_response({"error": "Not found"}, status=404)

    async def _handle_permission_prompt(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
            permission_request = PermissionRequest.model_validate(body)
        except ValueError as e:
            logger.warning(f"[SessionEndpoint] Invalid permission request: {e}")
            decision = PermissionDecision.deny(f"Invalid permission request: {e}")
            return web.json_response(decision.to_wire(), status=400)

        if self._shutdown.is_set():
            return web.json_response(PermissionDecision.abandoned().to_wire())

        prompt_id = str(uuid.uuid4())
        event = PromptEvent(
            prompt_id=prompt_id,
            session_id=self.session_id,
            tool_name=permission_request.tool_name,
            input=permission_request.input,
        )
        try:
            slot = self._pending.open(event)
        except PromptAbandoned:
            return web.json_response(PermissionDecision.abandoned().to_wire())

        logger.info(
            f"[SessionEndpoint] Permission request for {event.tool_name} "
            f"(prompt={prompt_id}, tool_use_id={permission_request.tool_use_id})"
        )

        # Emission runs beside the wait so a slow notifier cannot stretch the timeout
        notify_task = asyncio.create_task(self._notify(event))
        self._notify_tasks.add(notify_task)
        notify_task.add_done_callback(self._notify_tasks.discard)
        try:
            decision = await self._await_decision(prompt_id, slot)
        finally:
            if not notify_task.done():
                notify_task.cancel()
        return web.json_response(decision.to_wire())

    async def _notify(self, event: PromptEvent) -> None:
        if self.notifier is None:
            logger.debug(f"[SessionEndpoint] No notifier attached, prompt {event.prompt_id} not announced")
            return

        # Re-read the session id: a rekey may have landed since the request arrived
        payload = dataclasses.replace(event, session_id=self.session_id).to_dict()
        for channel in (channel_for(payload["session_id"]), GLOBAL_CHANNEL):
            try:
                await self.notifier.emit(channel, payload)
            except Exception as e:
                logger.warning(f"[SessionEndpoint] Failed to emit prompt on {channel}: {e}")

    async def _await_decision(self, prompt_id: str, slot: asyncio.Future) -> PermissionDecision:
        try:
            return await asyncio.wait_for(
                asyncio.shield(slot),
                timeout=self.settings.prompt_timeout_seconds,
            )
        except asyncio.TimeoutError:
            if self._pending.take(prompt_id) is None and slot.done():
                # A resolver claimed the slot before the timeout could
                if slot.exception() is None:
                    return slot.result()
                return PermissionDecision.abandoned()
            logger.info(f"[SessionEndpoint] Prompt {prompt_id} timed out, denying")
            return PermissionDecision.timed_out()
        except PromptAbandoned:
            logger.info(f"[SessionEndpoint] Prompt {prompt_id} abandoned by shutdown, denying")
            return PermissionDecision.abandoned()
        except asyncio.CancelledError:
            abandoned = self._pending.take(prompt_id)
            if abandoned is not None:
                abandoned.cancel()
            raise
