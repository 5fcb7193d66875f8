"""
Atomic install pipeline.

AtomicInstaller.install() makes a downloaded build the live plugin without
ever leaving the install directory half-written:

1. staging: extract the archive into a fresh hidden directory next to the
   target and carry the user's settings file over
2. backing_up: rename the current install to a timestamped backup
3. swapping: rename the staging directory onto the target
4. committed: delete the backup

If the swap fails the backup is renamed back (rolling_back) before the
error is raised. Staging is always removed at the end, whatever happened.

State transitions:
- pending -> staging
- staging -> backing_up | failed
- backing_up -> swapping | rolling_back | failed
- swapping -> committed | rolling_back | failed
- rolling_back -> failed

Only one install may target a given directory at a time. This is not
locked here; callers serialize upgrade requests per target.
"""

from __future__ import annotations

import asyncio
import io
import shutil
import time
import uuid
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from vtbeta_helper.errors import (
    InstallFailedError,
    MalformedArtifactError,
    UpgradeError,
)
from vtbeta_helper.logging import get_logger
from vtbeta_helper.updates.operations import (
    copy_file,
    ensure_directory,
    rename_directory,
    resolve_entry_path,
    safe_remove_directory,
)

if TYPE_CHECKING:
    from vtbeta_helper.config import InstallConfig
    from vtbeta_helper.updates.download import Artifact

logger = get_logger(__name__)


class InstallState(str, Enum):
    """States of a single install attempt."""

    PENDING = "pending"
    STAGING = "staging"
    BACKING_UP = "backing_up"
    SWAPPING = "swapping"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[InstallState, set[InstallState]] = {
    InstallState.PENDING: {InstallState.STAGING},
    InstallState.STAGING: {InstallState.BACKING_UP, InstallState.FAILED},
    InstallState.BACKING_UP: {
        InstallState.SWAPPING,
        InstallState.ROLLING_BACK,
        InstallState.FAILED,
    },
    InstallState.SWAPPING: {
        InstallState.COMMITTED,
        InstallState.ROLLING_BACK,
        InstallState.FAILED,
    },
    InstallState.ROLLING_BACK: {InstallState.FAILED},
    InstallState.COMMITTED: set(),
    InstallState.FAILED: set(),
}


@dataclass
class InstallTransaction:
    """
    Ephemeral state of one install attempt.

    Attributes:
        staging_path: Directory the new build is assembled in.
        target_path: Live install directory.
        backup_path: Where the previous install is parked during the swap.
        has_existing_install: Whether target_path existed when backing up.
        state: Current pipeline state.
    """

    staging_path: Path
    target_path: Path
    backup_path: Path
    has_existing_install: bool = False
    state: InstallState = InstallState.PENDING

    def transition_to(self, new_state: InstallState) -> None:
        """
        Move to a new state.

        Raises:
            UpgradeError: If the transition is not valid.
        """
        if new_state not in _VALID_TRANSITIONS[self.state]:
            raise UpgradeError(
                "internal",
                f"Invalid install transition from {self.state.value} to {new_state.value}",
                details={
                    "current_state": self.state.value,
                    "target_state": new_state.value,
                },
            )
        logger.debug(
            f"Install state: {self.state.value} -> {new_state.value}",
            extra={"old_state": self.state.value, "new_state": new_state.value},
        )
        self.state = new_state


def open_archive(payload: bytes) -> zipfile.ZipFile:
    """
    Open a ZIP payload and make sure it has something to install.

    Raises:
        MalformedArtifactError: If the payload is not a ZIP archive or
            contains no file entries.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(payload))
    except zipfile.BadZipFile as e:
        raise MalformedArtifactError(
            "The downloaded file is not a valid archive.",
            details={"error": str(e)},
        ) from e

    if not any(not info.is_dir() for info in archive.infolist()):
        archive.close()
        raise MalformedArtifactError(
            "The downloaded file is empty or corrupted.",
            details={"entries": len(archive.infolist())},
        )
    return archive


class AtomicInstaller:
    """
    Installs builds into <plugins_dir>/<plugin_id> with rollback.

    Example:
        >>> installer = AtomicInstaller("/vault/.obsidian/plugins")
        >>> await installer.install(artifact)
        PosixPath('/vault/.obsidian/plugins/vertical-tabs')
    """

    def __init__(
        self,
        plugins_dir: Path | str,
        plugin_id: str = "vertical-tabs",
        settings_file: str = "data.json",
    ) -> None:
        """
        Initialize the AtomicInstaller.

        Args:
            plugins_dir: Host plugin folder.
            plugin_id: Folder name of the managed plugin.
            settings_file: File carried from the old install into the new one.
        """
        self._plugins_dir = Path(plugins_dir).expanduser()
        self._plugin_id = plugin_id
        self._settings_file = settings_file

    @classmethod
    def from_config(cls, config: InstallConfig) -> AtomicInstaller:
        """Create an AtomicInstaller from configuration."""
        return cls(
            plugins_dir=config.plugins_dir,
            plugin_id=config.plugin_id,
            settings_file=config.settings_file,
        )

    @property
    def plugins_dir(self) -> Path:
        """Get the host plugin folder."""
        return self._plugins_dir

    @property
    def plugin_id(self) -> str:
        """Get the managed plugin identifier."""
        return self._plugin_id

    @property
    def target_path(self) -> Path:
        """Get the live install directory."""
        return self._plugins_dir / self._plugin_id

    def new_transaction(self) -> InstallTransaction:
        """Create the paths for a new install attempt."""
        staging_name = f".{self._plugin_id}.staging.{uuid.uuid4().hex[:10]}"
        backup_name = f"{self._plugin_id}.backup.{int(time.time() * 1000)}"
        return InstallTransaction(
            staging_path=self._plugins_dir / staging_name,
            target_path=self.target_path,
            backup_path=self._plugins_dir / backup_name,
        )

    async def install(self, artifact: Artifact) -> Path:
        """
        Install a verified artifact.

        Args:
            artifact: Downloaded build whose digest was already verified.

        Returns:
            The live install directory.

        Raises:
            MalformedArtifactError: If the archive is empty, unreadable or
                has entries outside the install directory. Nothing outside
                the staging directory has been touched.
            InstallFailedError: If staging, backup or swap failed. The
                previous install is restored when one existed.
        """
        # Validate before any filesystem mutation
        archive = open_archive(artifact.payload)
        txn = self.new_transaction()
        loop = asyncio.get_event_loop()

        logger.info(
            f"Installing build {artifact.tag}",
            extra={"tag": artifact.tag, "target": str(txn.target_path)},
        )

        try:
            with archive:
                await loop.run_in_executor(None, self._stage, txn, archive)
            await loop.run_in_executor(None, self._back_up, txn)
            await loop.run_in_executor(None, self._swap_into_place, txn)
        finally:
            await loop.run_in_executor(None, safe_remove_directory, txn.staging_path)

        logger.info(
            f"Installed build {artifact.tag}",
            extra={"tag": artifact.tag, "target": str(txn.target_path)},
        )
        return txn.target_path

    # -------------------------------------------------------------------------
    # Pipeline steps (run in the default executor)
    # -------------------------------------------------------------------------

    def _stage(self, txn: InstallTransaction, archive: zipfile.ZipFile) -> None:
        txn.transition_to(InstallState.STAGING)
        try:
            ensure_directory(self._plugins_dir)
            txn.staging_path.mkdir()

            for info in archive.infolist():
                if info.is_dir():
                    continue
                destination = resolve_entry_path(txn.staging_path, info.filename)
                destination.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as src, open(destination, "wb") as dst:
                    shutil.copyfileobj(src, dst)

            settings = txn.target_path / self._settings_file
            if settings.is_file():
                copy_file(settings, txn.staging_path / self._settings_file)
                logger.debug(
                    "Preserved plugin settings", extra={"path": str(settings)}
                )
        except MalformedArtifactError:
            txn.transition_to(InstallState.FAILED)
            raise
        except zipfile.BadZipFile as e:
            txn.transition_to(InstallState.FAILED)
            raise MalformedArtifactError(
                f"The downloaded archive is corrupted: {e}",
                details={"error": str(e)},
            ) from e
        except (OSError, UpgradeError) as e:
            txn.transition_to(InstallState.FAILED)
            raise InstallFailedError(
                f"Failed to stage the new build: {e}",
                details={"staging_path": str(txn.staging_path)},
            ) from e

    def _back_up(self, txn: InstallTransaction) -> None:
        txn.transition_to(InstallState.BACKING_UP)
        txn.has_existing_install = txn.target_path.exists()
        if not txn.has_existing_install:
            return

        try:
            rename_directory(txn.target_path, txn.backup_path)
        except OSError as e:
            # A failed rename leaves the current install where it was
            txn.has_existing_install = False
            txn.transition_to(InstallState.FAILED)
            raise InstallFailedError(
                f"Failed to back up the current install: {e}",
                details={"target": str(txn.target_path)},
            ) from e

    def _swap(self, staging_path: Path, target_path: Path) -> None:
        rename_directory(staging_path, target_path)

    def _swap_into_place(self, txn: InstallTransaction) -> None:
        txn.transition_to(InstallState.SWAPPING)
        try:
            self._swap(txn.staging_path, txn.target_path)
        except Exception as e:
            if txn.has_existing_install:
                self._roll_back(txn, e)
            txn.transition_to(InstallState.FAILED)
            raise InstallFailedError(
                f"Installation failed: {e}",
                details={
                    "target": str(txn.target_path),
                    "restored": txn.has_existing_install,
                },
            ) from e

        txn.transition_to(InstallState.COMMITTED)
        if txn.has_existing_install:
            safe_remove_directory(txn.backup_path)

    def _roll_back(self, txn: InstallTransaction, cause: Exception) -> None:
        txn.transition_to(InstallState.ROLLING_BACK)
        logger.warning(
            f"Swap failed, restoring previous install: {cause}",
            extra={"backup": str(txn.backup_path), "target": str(txn.target_path)},
        )
        try:
            if txn.target_path.exists():
                shutil.rmtree(txn.target_path)
            rename_directory(txn.backup_path, txn.target_path)
        except OSError as e:
            txn.transition_to(InstallState.FAILED)
            logger.error(
                f"Rollback failed, previous install left at {txn.backup_path}: {e}",
                extra={"backup": str(txn.backup_path)},
            )
            raise InstallFailedError(
                f"Installation failed and the previous version could not be restored: {e}",
                details={
                    "target": str(txn.target_path),
                    "backup_path": str(txn.backup_path),
                },
            ) from cause
