"""Permission server package: per-session HTTP endpoints for permission prompts.

This package provides the broker side of the --permission-prompt-tool flow:

- SessionEndpoint: aiohttp listener on an ephemeral loopback port that
  suspends each permission request until the UI resolves it or it times out.

- BrokerRegistry: process-wide map of session id to endpoint with start, stop,
  rekey and resolve operations.

- PermissionLifecycle: starts an endpoint, then writes the MCP config that
  launches the stdio bridge (approver.py) against its port.
"""

from .endpoint import SessionEndpoint
from .lifecycle import LaunchInfo, PermissionLifecycle
from .registry import BrokerRegistry

__all__ = ["BrokerRegistry", "LaunchInfo", "PermissionLifecycle", "SessionEndpoint"]
