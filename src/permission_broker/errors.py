"""Exceptions raised by the permission broker."""


class BrokerError(Exception):
    """Base class for permission broker errors."""


class BindError(BrokerError):
    """No loopback port could be bound for a session endpoint."""

    def __init__(self, session_id: str, reason: str) -> None:
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Failed to bind permission server for session '{session_id}': {reason}")


class SessionNotFound(BrokerError):
    """No endpoint is registered under the session id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"No permission server for session '{session_id}'")


class PromptNotFound(BrokerError):
    """The prompt is not pending (already settled, timed out or unknown)."""

    def __init__(self, session_id: str, prompt_id: str) -> None:
        self.session_id = session_id
        self.prompt_id = prompt_id
        super().__init__(f"No pending prompt '{prompt_id}' in session '{session_id}'")


class DeliveryFailure(BrokerError):
    """The waiting request went away before the decision could be handed over."""

    def __init__(self, prompt_id: str) -> None:
        self.prompt_id = prompt_id
        super().__init__(f"Receiver for prompt '{prompt_id}' already dropped")


class RuntimeNotFound(BrokerError):
    """The command used to launch the bridge process is not available."""

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"Bridge runtime '{command}' was not found on PATH")


class LaunchArtifactError(BrokerError):
    """A launch artifact for the bridge process could not be written."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write launch artifact {path}: {reason}")
