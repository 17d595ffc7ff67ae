"""Data models for the permission broker."""

from .permissions import (
    ABANDONED_MESSAGE,
    TIMEOUT_MESSAGE,
    PermissionDecision,
    PermissionRequest,
    PromptEvent,
)

__all__ = [
    "ABANDONED_MESSAGE",
    "TIMEOUT_MESSAGE",
    "PermissionDecision",
    "PermissionRequest",
    "PromptEvent",
]
