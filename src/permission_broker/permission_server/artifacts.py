"""Launch artifacts for the bridge process.

The bridge is launched by an MCP host from a small JSON config naming the
command, its arguments, and the environment carrying the endpoint port and
session id. These helpers write and remove that config.
"""

import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Iterable

from ..config import Settings
from ..errors import LaunchArtifactError, RuntimeNotFound

logger = logging.getLogger(__name__)

PORT_ENV = "PERMISSION_SERVER_PORT"
SESSION_ENV = "PERMISSION_SESSION_ID"

APPROVER_SCRIPT = Path(__file__).parent / "approver.py"


def find_runtime(settings: Settings) -> str:
    """Locate the interpreter that will run the bridge script.

    Args:
        settings: Broker settings; bridge_command overrides the default

    Returns:
        Absolute path of the runtime executable

    Raises:
        RuntimeNotFound: If the configured command is not on PATH
    """
    if not settings.bridge_command:
        return sys.executable

    resolved = shutil.which(settings.bridge_command)
    if resolved is None:
        raise RuntimeNotFound(settings.bridge_command)
    return resolved


def build_launch_config(port: int, session_id: str, runtime: str, settings: Settings) -> dict:
    """Build the MCP server config that launches the bridge for one session."""
    return {
        "mcpServers": {
            settings.mcp_server_name: {
                "command": runtime,
                "args": [str(APPROVER_SCRIPT)],
                "env": {
                    PORT_ENV: str(port),
                    SESSION_ENV: session_id,
                },
            }
        }
    }


def write_launch_config(port: int, session_id: str, runtime: str, settings: Settings) -> Path:
    """Write the launch config for a session's bridge process.

    Args:
        port: Port the session endpoint is listening on
        session_id: Session the bridge belongs to
        runtime: Executable that runs the bridge script
        settings: Broker settings

    Returns:
        Path to the written config file

    Raises:
        LaunchArtifactError: If the file cannot be written
    """
    config = build_launch_config(port, session_id, runtime, settings)
    config_path = settings.get_artifact_dir() / f"permission-broker-mcp-{session_id}.json"

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(json.dumps(config, indent=2))
    except OSError as e:
        raise LaunchArtifactError(str(config_path), str(e)) from e

    logger.info(f"[Artifacts] MCP config written to {config_path}")
    return config_path


def cleanup_artifacts(paths: Iterable[Path]) -> None:
    """Best-effort removal of launch artifacts."""
    for path in paths:
        try:
            Path(path).unlink(missing_ok=True)
            logger.debug(f"[Artifacts] Removed {path}")
        except OSError as e:
            logger.warning(f"[Artifacts] Error removing {path}: {e}")
