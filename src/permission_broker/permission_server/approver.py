#!/usr/bin/env python3
"""Stdio MCP bridge that forwards permission prompts to a session endpoint.

This module is spawned by the MCP host using the launch config written for a
session. It talks JSON-RPC over stdio and reaches the broker over HTTP on the
loopback interface.

Usage:
    python approver.py [--port PORT] [--host HOST] [--timeout SECONDS]

The port defaults to $PERMISSION_SERVER_PORT. The server exposes a single tool
'permission_prompt' that:
1. Receives tool_use_id, tool_name and input from the host
2. POSTs them to http://HOST:PORT/permission-prompt
3. Waits for the UI's decision (the broker denies on its own timeout)
4. Returns {"behavior": "allow", ...} or {"behavior": "deny", ...} as text

Any local failure becomes a deny decision, never a transport error.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

import aiohttp

# stdout carries JSON-RPC, so logs go to stderr
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

TOOL_NAME = "permission_prompt"
PORT_ENV = "PERMISSION_SERVER_PORT"
SESSION_ENV = "PERMISSION_SESSION_ID"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_REQUEST_TIMEOUT = 330.0  # outlives the broker's own 300s prompt timeout
UNAVAILABLE_MESSAGE = "Permission server unavailable"

TOOL_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "tool_use_id": {
            "type": "string",
            "description": "Unique identifier for this tool invocation",
        },
        "tool_name": {
            "type": "string",
            "description": "The name of the tool requesting permission",
        },
        "input": {
            "description": "The input parameters for the tool",
        },
    },
    "required": ["tool_use_id", "tool_name", "input"],
}


def deny(message: str) -> dict[str, Any]:
    return {"behavior": "deny", "message": message}


def _is_decision(value: Any) -> bool:
    return isinstance(value, dict) and value.get("behavior") in ("allow", "deny")


async def request_permission_via_http(
    port: int,
    tool_use_id: str,
    tool_name: str,
    tool_input: Any,
    host: str = DEFAULT_HOST,
    timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
) -> dict[str, Any]:
    """Ask the session endpoint for a decision.

    Args:
        port: Port of the session endpoint
        tool_use_id: Host's invocation id, passed through as metadata
        tool_name: Name of tool requesting permission
        tool_input: Tool input parameters
        host: Endpoint host (loopback)
        timeout_seconds: Total time to wait for the decision

    Returns:
        Decision dict; a deny with UNAVAILABLE_MESSAGE on any failure
    """
    url = f"http://{host}:{port}/permission-prompt"
    payload = {
        "tool_use_id": tool_use_id,
        "tool_name": tool_name,
        "input": tool_input,
    }

    logger.info(f"[Approver] Sending permission request for {tool_name} to port {port}")
    try:
        timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, json=payload) as response:
                decision = await response.json(content_type=None)
    except aiohttp.ClientError as e:
        logger.error(f"[Approver] Permission server error: {e}")
        return deny(UNAVAILABLE_MESSAGE)
    except asyncio.TimeoutError:
        logger.error(f"[Approver] Timeout ({timeout_seconds}s) waiting for permission response")
        return deny(UNAVAILABLE_MESSAGE)
    except ValueError as e:
        logger.error(f"[Approver] Invalid JSON from permission server: {e}")
        return deny(UNAVAILABLE_MESSAGE)

    if not _is_decision(decision):
        logger.error(f"[Approver] Unexpected response shape: {decision!r}")
        return deny(UNAVAILABLE_MESSAGE)

    logger.info(f"[Approver] Received response: behavior={decision['behavior']}")
    return decision


async def handle_tool_call(
    name: str,
    arguments: dict[str, Any] | None,
    port: int,
    host: str = DEFAULT_HOST,
    timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
) -> dict[str, Any]:
    """Turn a tools/call into a decision dict."""
    if name != TOOL_NAME:
        logger.warning(f"[Approver] Unknown tool requested: {name}")
        return deny(f"Unknown tool: {name}")

    arguments = arguments or {}
    return await request_permission_via_http(
        port,
        arguments.get("tool_use_id") or "",
        arguments.get("tool_name") or "unknown",
        arguments.get("input") or {},
        host=host,
        timeout_seconds=timeout_seconds,
    )


async def run_approver_server(
    port: int,
    host: str = DEFAULT_HOST,
    timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
) -> None:
    """Run the MCP permission bridge over stdio.

    Args:
        port: Port of the session endpoint
        host: Endpoint host
        timeout_seconds: Total time to wait for each decision
    """
    from mcp.server import Server
    from mcp.server.stdio import stdio_server
    import mcp.types as types

    server = Server("permission-broker-approver")
    logger.info(f"[Approver] Starting MCP server for {host}:{port}, session={os.environ.get(SESSION_ENV, '')!r}")

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=TOOL_NAME,
                description=(
                    "Handle permission requests from the agent. "
                    "Returns whether the user allowed or denied the action."
                ),
                inputSchema=TOOL_INPUT_SCHEMA,
            )
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        result = await handle_tool_call(name, arguments, port, host=host, timeout_seconds=timeout_seconds)
        return [types.TextContent(type="text", text=json.dumps(result))]

    async with stdio_server() as (read_stream, write_stream):
        logger.info("[Approver] Running stdio server...")
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="MCP permission bridge for a permission broker session",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ[PORT_ENV]) if os.environ.get(PORT_ENV, "").isdigit() else None,
        help=f"Session endpoint port (default: ${PORT_ENV})",
    )
    parser.add_argument(
        "--host",
        default=DEFAULT_HOST,
        help="Session endpoint host",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_REQUEST_TIMEOUT,
        help="Timeout in seconds for waiting for a permission decision",
    )
    return parser.parse_args(argv)


def main() -> None:
    """Main entry point."""
    args = parse_args()

    if args.port is None:
        logger.error(f"[Approver] {PORT_ENV} not set and --port not given")
        sys.exit(1)

    try:
        asyncio.run(run_approver_server(
            port=args.port,
            host=args.host,
            timeout_seconds=args.timeout,
        ))
    except KeyboardInterrupt:
        logger.info("[Approver] Interrupted")
    except Exception as e:
        logger.error(f"[Approver] Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
