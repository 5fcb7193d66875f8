"""
Host application reload integration.

After an install commits, the host application has to drop the old plugin
code and load the new one. PluginHost abstracts the three host operations
involved (disable, load manifest, enable) and reload_plugin() sequences
them.

CommandPluginHost is the implementation used from the command line: it
reads the installed manifest itself and asks the host to disable/enable the
plugin by running configured commands.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

from vtbeta_helper.errors import ReloadFailedError
from vtbeta_helper.logging import get_logger
from vtbeta_helper.updates.version import MANIFEST_FILE

if TYPE_CHECKING:
    from vtbeta_helper.config import HostConfig

logger = get_logger(__name__)


class PluginHost(ABC):
    """
    Operations the host application exposes for plugin lifecycle.
    """

    @abstractmethod
    async def is_enabled(self, plugin_id: str) -> bool:
        """Whether the plugin is currently loaded and enabled."""

    @abstractmethod
    async def disable_plugin(self, plugin_id: str) -> None:
        """Unload the plugin."""

    @abstractmethod
    async def load_manifest(self, plugin_dir: Path) -> dict[str, Any]:
        """Register the manifest found in plugin_dir and return it."""

    @abstractmethod
    async def enable_plugin(self, plugin_id: str) -> None:
        """Load and enable the plugin, persisting the enabled state."""


async def reload_plugin(host: PluginHost, plugin_id: str, plugin_dir: Path) -> None:
    """
    Make the host run the freshly installed plugin.

    Args:
        host: Host application adapter.
        plugin_id: Plugin identifier.
        plugin_dir: Install directory of the plugin.

    Raises:
        ReloadFailedError: If any host step fails.
    """
    try:
        if await host.is_enabled(plugin_id):
            await host.disable_plugin(plugin_id)
        await host.load_manifest(plugin_dir)
        await host.enable_plugin(plugin_id)
    except ReloadFailedError:
        raise
    except Exception as e:
        raise ReloadFailedError(
            f"Failed to reload the plugin: {e}",
            details={"plugin_id": plugin_id, "plugin_dir": str(plugin_dir)},
        ) from e

    logger.info("Plugin reloaded", extra={"plugin_id": plugin_id})


class CommandPluginHost(PluginHost):
    """
    PluginHost that drives the host application through external commands.

    Commands are argv lists; "{plugin_id}" and "{plugin_dir}" placeholders
    are substituted. An empty command is skipped.
    """

    def __init__(
        self,
        plugin_dir: Path | str,
        disable_command: list[str] | None = None,
        enable_command: list[str] | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._plugin_dir = Path(plugin_dir)
        self._disable_command = list(disable_command or [])
        self._enable_command = list(enable_command or [])
        self._timeout = timeout
        self._enabled: bool | None = None

    @classmethod
    def from_config(cls, config: HostConfig, plugin_dir: Path) -> CommandPluginHost:
        """Create a CommandPluginHost from configuration."""
        return cls(
            plugin_dir,
            disable_command=config.disable_command,
            enable_command=config.enable_command,
            timeout=config.command_timeout_seconds,
        )

    async def _run(self, command: list[str], plugin_id: str) -> None:
        """
        Run a host command.

        Raises:
            ReloadFailedError: If the command is missing, times out or exits
                with a non-zero status.
        """
        if not command:
            return

        argv = [
            part.format(plugin_id=plugin_id, plugin_dir=str(self._plugin_dir))
            for part in command
        ]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except FileNotFoundError as e:
            raise ReloadFailedError(
                f"Host command not found: {argv[0]}",
                details={"command": argv},
            ) from e
        except TimeoutError as e:
            raise ReloadFailedError(
                f"Host command timed out after {self._timeout}s",
                details={"command": argv},
            ) from e

        if proc.returncode:
            raise ReloadFailedError(
                f"Host command exited with status {proc.returncode}",
                details={
                    "command": argv,
                    "stderr": stderr.decode(errors="replace") if stderr else "",
                },
            )

    async def is_enabled(self, plugin_id: str) -> bool:
        if self._enabled is None:
            return (self._plugin_dir / MANIFEST_FILE).exists()
        return self._enabled

    async def disable_plugin(self, plugin_id: str) -> None:
        await self._run(self._disable_command, plugin_id)
        self._enabled = False

    async def load_manifest(self, plugin_dir: Path) -> dict[str, Any]:
        manifest_path = plugin_dir / MANIFEST_FILE
        try:
            with open(manifest_path) as f:
                manifest = json.load(f)
        except (OSError, ValueError) as e:
            raise ReloadFailedError(
                f"Failed to load plugin manifest: {e}",
                details={"path": str(manifest_path)},
            ) from e
        if not isinstance(manifest, dict):
            raise ReloadFailedError(
                "Plugin manifest is not a JSON object",
                details={"path": str(manifest_path)},
            )
        return manifest

    async def enable_plugin(self, plugin_id: str) -> None:
        await self._run(self._enable_command, plugin_id)
        self._enabled = True
