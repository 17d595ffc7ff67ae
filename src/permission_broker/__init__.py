"""Permission Broker - approval prompts for sandboxed agent tool calls.

An agent's tool bridge asks a human-facing application for approval over a
per-session loopback HTTP endpoint; the application's UI answers
asynchronously through the broker registry.

Example:
    >>> from permission_broker import BrokerRegistry, PermissionDecision
    >>> registry = BrokerRegistry()
"""

from .config import Settings
from .errors import (
    BindError,
    BrokerError,
    DeliveryFailure,
    LaunchArtifactError,
    PromptNotFound,
    RuntimeNotFound,
    SessionNotFound,
)
from .models.permissions import PermissionDecision, PermissionRequest, PromptEvent
from .notifier import GLOBAL_CHANNEL, PromptBroadcaster, channel_for
from .permission_server import BrokerRegistry, LaunchInfo, PermissionLifecycle

__version__ = "0.1.0"
__license__ = "MIT"

__all__ = [
    "__version__",
    "BindError",
    "BrokerError",
    "BrokerRegistry",
    "DeliveryFailure",
    "GLOBAL_CHANNEL",
    "LaunchArtifactError",
    "LaunchInfo",
    "PermissionDecision",
    "PermissionLifecycle",
    "PermissionRequest",
    "PromptBroadcaster",
    "PromptEvent",
    "PromptNotFound",
    "RuntimeNotFound",
    "SessionNotFound",
    "Settings",
    "channel_for",
]
