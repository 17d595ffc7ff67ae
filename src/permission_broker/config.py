"""Configuration settings for the permission broker."""

import tempfile
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PERMISSION_TOOL = "permission_prompt"


class Settings(BaseSettings):
    """Broker settings with environment variable support.

    All settings can be overridden via environment variables with
    PERMISSION_BROKER_ prefix.

    Examples:
        >>> settings = Settings()
        >>> settings.prompt_timeout_seconds
        300.0
    """

    model_config = SettingsConfigDict(env_prefix="PERMISSION_BROKER_")

    # Listener
    host: str = "127.0.0.1"

    # Timeouts
    prompt_timeout_seconds: float = 300.0
    shutdown_timeout_seconds: float = 5.0

    # Bridge launch
    bridge_command: str = ""  # Defaults to the running interpreter
    mcp_server_name: str = "permission-broker"
    artifact_dir: str = ""  # Defaults to the system temp dir

    def get_artifact_dir(self) -> Path:
        """Get expanded directory for launch artifacts.

        Returns:
            Absolute path to the artifact directory
        """
        if self.artifact_dir:
            return Path(self.artifact_dir).expanduser()
        return Path(tempfile.gettempdir())

    def permission_tool_name(self) -> str:
        """Fully qualified tool name to pass as --permission-prompt-tool."""
        return f"mcp__{self.mcp_server_name}__{PERMISSION_TOOL}"
