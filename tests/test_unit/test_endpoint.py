"""Tests for the per-session HTTP endpoint.

Every test runs a real aiohttp listener on an ephemeral loopback port.
"""

import asyncio
import time

import pytest
import pytest_asyncio

from permission_broker.errors import BindError, DeliveryFailure, PromptNotFound
from permission_broker.models.permissions import (
    ABANDONED_MESSAGE,
    TIMEOUT_MESSAGE,
    PermissionDecision,
    PromptEvent,
)
from permission_broker.notifier import GLOBAL_CHANNEL, channel_for
from permission_broker.permission_server.endpoint import SessionEndpoint

from ..conftest import next_prompt, post_prompt


@pytest_asyncio.fixture
async def endpoint(settings, broadcaster):
    ep = SessionEndpoint("s1", settings, broadcaster)
    await ep.start()
    yield ep
    await ep.stop()


class FailingNotifier:
    """Notifier whose transport is down."""

    def __init__(self):
        self.calls = 0

    async def emit(self, channel, payload):
        self.calls += 1
        raise ConnectionError("UI went away")


class SlowNotifier:
    """Notifier that takes 'delay' seconds per emit."""

    def __init__(self, delay: float):
        self.delay = delay
        self.entered = asyncio.Event()

    async def emit(self, channel, payload):
        self.entered.set()
        await asyncio.sleep(self.delay)


class TestStart:
    """Test binding."""

    @pytest.mark.asyncio
    async def test_binds_ephemeral_loopback_port(self, endpoint):
        assert endpoint.port and endpoint.port > 0

    @pytest.mark.asyncio
    async def test_unbindable_host_raises_bind_error(self, settings):
        """An address not assigned to this machine cannot be bound."""
        ep = SessionEndpoint("s1", settings.model_copy(update={"host": "203.0.113.1"}))
        with pytest.raises(BindError) as exc_info:
            await ep.start()
        assert exc_info.value.session_id == "s1"


class TestRouting:
    """Only POST /permission-prompt is served."""

    @pytest.mark.asyncio
    async def test_unknown_path_404(self, endpoint, http):
        async with http.post(f"http://127.0.0.1:{endpoint.port}/other", json={}) as response:
            assert response.status == 404

    @pytest.mark.asyncio
    async def test_wrong_method_404(self, endpoint, http):
        async with http.get(f"http://127.0.0.1:{endpoint.port}/permission-prompt") as response:
            assert response.status == 404

    @pytest.mark.asyncio
    async def test_malformed_json_is_denied(self, endpoint, http):
        async with http.post(
            f"http://127.0.0.1:{endpoint.port}/permission-prompt",
            data=b"{not json",
            headers={"Content-Type": "application/json"},
        ) as response:
            assert response.status == 400
            body = await response.json()
        assert body["behavior"] == "deny"
        assert len(endpoint.pending()) == 0

    @pytest.mark.asyncio
    async def test_missing_tool_name_is_denied(self, endpoint, http):
        async with http.post(
            f"http://127.0.0.1:{endpoint.port}/permission-prompt",
            json={"tool_use_id": "toolu_1", "input": {}},
        ) as response:
            assert response.status == 400
            assert (await response.json())["behavior"] == "deny"


class TestApprovalRequest:
    """Test the suspend/notify/resolve cycle."""

    @pytest.mark.asyncio
    async def test_notification_on_both_channels(self, endpoint, broadcaster, http):
        scoped = broadcaster.subscribe(channel_for("s1"))
        generic = broadcaster.subscribe(GLOBAL_CHANNEL)

        task = asyncio.create_task(post_prompt(http, endpoint.port, "Write", {"file_path": "a.txt"}))
        event = await next_prompt(scoped)
        assert await next_prompt(generic) == event

        assert event["session_id"] == "s1"
        assert event["tool_name"] == "Write"
        assert event["input"] == {"file_path": "a.txt"}
        # The broker mints its own correlation key
        assert event["prompt_id"] != "toolu_01"

        endpoint.resolve(event["prompt_id"], PermissionDecision.allow())
        assert await task == (200, {"behavior": "allow"})

    @pytest.mark.asyncio
    async def test_resolution_is_returned_verbatim(self, endpoint, broadcaster, http):
        queue = broadcaster.subscribe()
        task = asyncio.create_task(post_prompt(http, endpoint.port, "Bash", {"command": "rm -rf /"}))
        event = await next_prompt(queue)

        endpoint.resolve(event["prompt_id"], PermissionDecision.allow({"command": "rm -rf ./build"}))

        status, body = await task
        assert status == 200
        assert body == {"behavior": "allow", "updatedInput": {"command": "rm -rf ./build"}}

    @pytest.mark.asyncio
    async def test_entry_removed_after_resolution(self, endpoint, broadcaster, http):
        queue = broadcaster.subscribe()
        task = asyncio.create_task(post_prompt(http, endpoint.port))
        event = await next_prompt(queue)

        assert [p.prompt_id for p in endpoint.pending()] == [event["prompt_id"]]
        endpoint.resolve(event["prompt_id"], PermissionDecision.deny("No"))
        await task

        assert endpoint.pending() == []
        with pytest.raises(PromptNotFound):
            endpoint.resolve(event["prompt_id"], PermissionDecision.allow())

    @pytest.mark.asyncio
    async def test_prompt_ids_are_unique(self, endpoint, broadcaster, http):
        queue = broadcaster.subscribe()
        tasks = [asyncio.create_task(post_prompt(http, endpoint.port, tool_use_id="same")) for _ in range(5)]
        events = [await next_prompt(queue) for _ in range(5)]

        assert len({e["prompt_id"] for e in events}) == 5
        for event in events:
            endpoint.resolve(event["prompt_id"], PermissionDecision.allow())
        await asyncio.gather(*tasks)

    @pytest.mark.asyncio
    async def test_notification_failure_is_swallowed(self, short_timeout_settings, http):
        """A broken notifier degrades to the prompt timing out."""
        notifier = FailingNotifier()
        ep = SessionEndpoint("s1", short_timeout_settings, notifier)
        await ep.start()
        try:
            status, body = await post_prompt(http, ep.port)
        finally:
            await ep.stop()

        assert notifier.calls == 2
        assert status == 200
        assert body == {"behavior": "deny", "message": TIMEOUT_MESSAGE}


class TestTimeout:
    """Test the hard per-prompt wall clock."""

    @pytest.mark.asyncio
    async def test_unanswered_prompt_is_denied(self, short_timeout_settings, broadcaster, http):
        ep = SessionEndpoint("s1", short_timeout_settings, broadcaster)
        await ep.start()
        queue = broadcaster.subscribe()
        try:
            status, body = await post_prompt(http, ep.port)
            event = await next_prompt(queue)

            assert status == 200
            assert body == {"behavior": "deny", "message": TIMEOUT_MESSAGE}
            assert ep.pending() == []
            with pytest.raises(PromptNotFound):
                ep.resolve(event["prompt_id"], PermissionDecision.allow())
        finally:
            await ep.stop()

    @pytest.mark.asyncio
    async def test_slow_notifier_does_not_stretch_timeout(self, short_timeout_settings, http):
        """The wall clock starts when the prompt is registered, not after emission."""
        ep = SessionEndpoint("s1", short_timeout_settings, SlowNotifier(delay=1.0))
        await ep.start()
        try:
            started = time.monotonic()
            status, body = await post_prompt(http, ep.port)
            elapsed = time.monotonic() - started
        finally:
            await ep.stop()

        assert status == 200
        assert body == {"behavior": "deny", "message": TIMEOUT_MESSAGE}
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_resolve_racing_timeout_has_one_winner(self, settings):
        """Resolving right at the deadline either delivers or times out, never both."""
        timeout = 0.005
        ep = SessionEndpoint("s1", settings.model_copy(update={"prompt_timeout_seconds": timeout}))
        loop = asyncio.get_running_loop()
        delivered: dict[str, bool] = {}

        def resolve_at_deadline(prompt_id: str) -> None:
            try:
                ep.resolve(prompt_id, PermissionDecision.allow({"winner": "resolver"}))
                delivered[prompt_id] = True
            except PromptNotFound:
                delivered[prompt_id] = False

        for i in range(100):
            prompt_id = f"p{i}"
            slot = ep._pending.open(PromptEvent(prompt_id, "s1", "Bash", {}))
            loop.call_later(timeout, resolve_at_deadline, prompt_id)

            decision = await ep._await_decision(prompt_id, slot)
            while prompt_id not in delivered:
                await asyncio.sleep(0.001)

            if delivered[prompt_id]:
                assert decision.updated_input == {"winner": "resolver"}
            else:
                assert decision == PermissionDecision.timed_out()
            assert prompt_id not in ep._pending

        await ep.stop()


class TestStop:
    """Test shutdown behavior."""

    @pytest.mark.asyncio
    async def test_stop_denies_pending_prompt(self, endpoint, broadcaster, http):
        queue = broadcaster.subscribe()
        task = asyncio.create_task(post_prompt(http, endpoint.port))
        await next_prompt(queue)

        await endpoint.stop()

        status, body = await asyncio.wait_for(task, timeout=5)
        assert status == 200
        assert body == {"behavior": "deny", "message": ABANDONED_MESSAGE}

    @pytest.mark.asyncio
    async def test_stop_during_slow_emission_denies(self, settings, http):
        """Stop answers a request whose notification is still being emitted."""
        notifier = SlowNotifier(delay=60.0)
        ep = SessionEndpoint("s1", settings, notifier)
        await ep.start()

        task = asyncio.create_task(post_prompt(http, ep.port))
        await asyncio.wait_for(notifier.entered.wait(), timeout=5)

        started = time.monotonic()
        await ep.stop()
        assert time.monotonic() - started < 1.5

        status, body = await asyncio.wait_for(task, timeout=5)
        assert status == 200
        assert body == {"behavior": "deny", "message": ABANDONED_MESSAGE}

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, endpoint):
        await endpoint.stop()
        await endpoint.stop()
        assert endpoint.stopped

    @pytest.mark.asyncio
    async def test_stop_removes_artifacts(self, endpoint, tmp_path):
        artifact = tmp_path / "mcp.json"
        artifact.write_text("{}")
        endpoint.artifacts = [artifact, tmp_path / "already-gone.json"]

        await endpoint.stop()

        assert not artifact.exists()
        assert endpoint.artifacts == []


class TestResolve:
    @pytest.mark.asyncio
    async def test_unknown_prompt(self, endpoint):
        with pytest.raises(PromptNotFound):
            endpoint.resolve("nope", PermissionDecision.allow())

    @pytest.mark.asyncio
    async def test_dropped_receiver_is_delivery_failure(self, endpoint):
        """A slot that is already settled cannot take a second decision."""
        slot = endpoint._pending.open(PromptEvent("p1", "s1", "Bash", {}))
        slot.cancel()

        with pytest.raises(DeliveryFailure):
            endpoint.resolve("p1", PermissionDecision.allow())
