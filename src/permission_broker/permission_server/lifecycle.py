"""Session lifecycle: endpoint first, launch artifacts second, teardown last."""

import logging
from dataclasses import dataclass
from pathlib import Path

from ..config import Settings
from ..errors import BrokerError
from .artifacts import cleanup_artifacts, find_runtime, write_launch_config
from .registry import BrokerRegistry

logger = logging.getLogger(__name__)


@dataclass
class LaunchInfo:
    """What the caller needs to launch the bridge for a session.

    Attributes:
        session_id: Session the endpoint was started for
        port: Port the endpoint listens on
        config_path: MCP config naming the bridge command
        tool_name: Value for --permission-prompt-tool
    """

    session_id: str
    port: int
    config_path: Path
    tool_name: str


class PermissionLifecycle:
    """Sequences endpoint startup, artifact generation and teardown.

    Attributes:
        registry: Registry that owns the endpoints
        settings: Broker settings
    """

    def __init__(self, registry: BrokerRegistry, settings: Settings | None = None) -> None:
        self.registry = registry
        self.settings = settings or registry.settings

    async def begin(self, session_id: str) -> LaunchInfo:
        """Start the session's endpoint and write the bridge launch config.

        Raises:
            BindError: If the endpoint could not bind
            RuntimeNotFound: If the bridge runtime is missing
            LaunchArtifactError: If the config could not be written
            SessionNotFound: If the session was stopped or rekeyed mid-setup
        """
        port = await self.registry.start(session_id)

        config_path: Path | None = None
        try:
            runtime = find_runtime(self.settings)
            config_path = write_launch_config(port, session_id, runtime, self.settings)
            await self.registry.set_artifacts(session_id, [config_path])
        except BrokerError:
            logger.error(f"[Lifecycle] Launch setup failed for session '{session_id}', stopping endpoint")
            if config_path is not None:
                cleanup_artifacts([config_path])
            await self.registry.stop(session_id)
            raise

        logger.info(f"[Lifecycle] Session '{session_id}' ready on port {port} (config: {config_path})")
        return LaunchInfo(
            session_id=session_id,
            port=port,
            config_path=config_path,
            tool_name=self.settings.permission_tool_name(),
        )

    async def rekey(self, old_id: str, new_id: str) -> None:
        await self.registry.rekey(old_id, new_id)

    async def end(self, session_id: str) -> None:
        """Stop the session's endpoint; its artifacts go with it."""
        await self.registry.stop(session_id)
