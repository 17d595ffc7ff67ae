"""Shared pytest fixtures.

Provides:
- settings: Broker settings with a short prompt timeout and a temp artifact dir
- broadcaster: In-process notifier the tests subscribe to as the "UI"
- registry: Live BrokerRegistry, every endpoint stopped after the test
- http: aiohttp client session acting as the bridge process

All endpoints are real aiohttp servers on ephemeral loopback ports.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncGenerator

import aiohttp
import pytest
import pytest_asyncio

from permission_broker.config import Settings
from permission_broker.notifier import PromptBroadcaster
from permission_broker.permission_server.registry import BrokerRegistry

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

async def post_prompt(
    http: aiohttp.ClientSession,
    port: int,
    tool_name: str = "Bash",
    tool_input: Any = None,
    tool_use_id: str = "toolu_01",
) -> tuple[int, dict]:
    """POST one permission request the way the bridge does.

    Returns:
        (HTTP status, decoded JSON body)
    """
    payload = {
        "tool_use_id": tool_use_id,
        "tool_name": tool_name,
        "input": tool_input if tool_input is not None else {"command": "ls"},
    }
    async with http.post(f"http://127.0.0.1:{port}/permission-prompt", json=payload) as response:
        return response.status, await response.json()


async def next_prompt(queue: asyncio.Queue, timeout: float = 5.0) -> dict:
    """Wait for the next prompt notification on a subscriber queue."""
    return await asyncio.wait_for(queue.get(), timeout=timeout)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with a 30s prompt timeout, long enough to tell 'prompt' from 'timed out'."""
    return Settings(
        prompt_timeout_seconds=30.0,
        shutdown_timeout_seconds=2.0,
        artifact_dir=str(tmp_path / "artifacts"),
    )


@pytest.fixture
def short_timeout_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"prompt_timeout_seconds": 0.3})


@pytest.fixture
def broadcaster() -> PromptBroadcaster:
    return PromptBroadcaster()


@pytest_asyncio.fixture
async def registry(settings: Settings, broadcaster: PromptBroadcaster) -> AsyncGenerator[BrokerRegistry, None]:
    async with BrokerRegistry(settings=settings, notifier=broadcaster) as reg:
        yield reg


@pytest_asyncio.fixture
async def http() -> AsyncGenerator[aiohttp.ClientSession, None]:
    async with aiohttp.ClientSession() as session:
        yield session
