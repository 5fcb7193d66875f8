"""
Tests for the atomic install pipeline.

Tests cover:
- Install state transitions
- Archive validation before any filesystem mutation
- Settings preservation
- Backup, swap and rollback behavior
- Staging cleanup on every path
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import make_zip, snapshot_tree

from vtbeta_helper.config import InstallConfig
from vtbeta_helper.errors import (
    InstallFailedError,
    MalformedArtifactError,
    UpgradeError,
)
from vtbeta_helper.updates.download import Artifact
from vtbeta_helper.updates.install import (
    AtomicInstaller,
    InstallState,
    InstallTransaction,
    open_archive,
)

NEW_BUILD = {
    "manifest.json": '{"id": "vertical-tabs", "version": "0.18.0"}',
    "main.js": "console.log('0.18.0');",
    "styles/main.css": "body {}",
}


def _artifact(files: dict[str, bytes | str] | None = None, **kwargs: object) -> Artifact:
    payload = make_zip(NEW_BUILD if files is None else files, **kwargs)
    return Artifact(
        tag="0.18.0", sha256=hashlib.sha256(payload).hexdigest(), payload=payload
    )


def _leftovers(plugins_dir: Path) -> list[str]:
    """Names of staging or backup directories left in the plugin folder."""
    return [
        p.name
        for p in plugins_dir.iterdir()
        if ".staging." in p.name or ".backup." in p.name
    ]


# =============================================================================
# State Machine
# =============================================================================


class TestInstallTransaction:
    """Tests for InstallTransaction transitions."""

    def _txn(self, tmp_path: Path) -> InstallTransaction:
        return InstallTransaction(
            staging_path=tmp_path / "s",
            target_path=tmp_path / "t",
            backup_path=tmp_path / "b",
        )

    def test_happy_path(self, tmp_path: Path) -> None:
        """Test the committed path is accepted."""
        txn = self._txn(tmp_path)
        for state in (
            InstallState.STAGING,
            InstallState.BACKING_UP,
            InstallState.SWAPPING,
            InstallState.COMMITTED,
        ):
            txn.transition_to(state)

        assert txn.state is InstallState.COMMITTED

    def test_rollback_path(self, tmp_path: Path) -> None:
        """Test swapping can roll back then fail."""
        txn = self._txn(tmp_path)
        for state in (
            InstallState.STAGING,
            InstallState.BACKING_UP,
            InstallState.SWAPPING,
            InstallState.ROLLING_BACK,
            InstallState.FAILED,
        ):
            txn.transition_to(state)

        assert txn.state is InstallState.FAILED

    def test_invalid_transition(self, tmp_path: Path) -> None:
        """Test skipping states is rejected."""
        txn = self._txn(tmp_path)

        with pytest.raises(UpgradeError) as exc_info:
            txn.transition_to(InstallState.SWAPPING)

        assert exc_info.value.error_code == "internal"

    def test_terminal_states(self, tmp_path: Path) -> None:
        """Test nothing follows a committed install."""
        txn = self._txn(tmp_path)
        txn.state = InstallState.COMMITTED

        with pytest.raises(UpgradeError):
            txn.transition_to(InstallState.ROLLING_BACK)


# =============================================================================
# Archive Validation
# =============================================================================


class TestOpenArchive:
    """Tests for open_archive."""

    def test_not_a_zip(self) -> None:
        """Test random bytes are rejected."""
        with pytest.raises(MalformedArtifactError):
            open_archive(b"definitely not a zip")

    def test_empty_zip(self) -> None:
        """Test an archive without entries is rejected."""
        with pytest.raises(MalformedArtifactError):
            open_archive(make_zip({}))

    def test_directories_only(self) -> None:
        """Test an archive holding only directories is rejected."""
        with pytest.raises(MalformedArtifactError):
            open_archive(make_zip({}, directories=["styles"]))


# =============================================================================
# AtomicInstaller
# =============================================================================


class TestAtomicInstaller:
    """Tests for AtomicInstaller.install."""

    def test_from_config(self, plugins_dir: Path) -> None:
        """Test construction from InstallConfig."""
        installer = AtomicInstaller.from_config(
            InstallConfig(plugins_dir=str(plugins_dir), plugin_id="other")
        )

        assert installer.target_path == plugins_dir / "other"

    def test_transaction_paths(self, plugins_dir: Path) -> None:
        """Test staging and backup live next to the target."""
        txn = AtomicInstaller(plugins_dir).new_transaction()

        assert txn.staging_path.parent == plugins_dir
        assert txn.staging_path.name.startswith(".vertical-tabs.staging.")
        assert txn.backup_path.name.startswith("vertical-tabs.backup.")
        assert txn.backup_path.name.rsplit(".", 1)[1].isdigit()
        assert txn.state is InstallState.PENDING

    @pytest.mark.asyncio
    async def test_fresh_install(self, plugins_dir: Path) -> None:
        """Test installing when nothing is installed yet."""
        installer = AtomicInstaller(plugins_dir)

        result = await installer.install(_artifact())

        assert result == plugins_dir / "vertical-tabs"
        assert snapshot_tree(result) == {
            name: content.encode() for name, content in NEW_BUILD.items()
        }
        assert _leftovers(plugins_dir) == []

    @pytest.mark.asyncio
    async def test_upgrade_replaces_and_keeps_settings(
        self, plugins_dir: Path, installed_plugin: Path
    ) -> None:
        """Test the old install is replaced and data.json carried over."""
        settings = (installed_plugin / "data.json").read_bytes()
        (installed_plugin / "obsolete.js").write_text("old")

        await AtomicInstaller(plugins_dir).install(_artifact())

        assert (installed_plugin / "main.js").read_text() == NEW_BUILD["main.js"]
        assert (installed_plugin / "data.json").read_bytes() == settings
        assert not (installed_plugin / "obsolete.js").exists()
        assert _leftovers(plugins_dir) == []

    @pytest.mark.asyncio
    async def test_archive_settings_overridden_by_existing(
        self, plugins_dir: Path, installed_plugin: Path
    ) -> None:
        """Test the user's settings win over a data.json shipped in the build."""
        settings = (installed_plugin / "data.json").read_bytes()
        files = {**NEW_BUILD, "data.json": "{}"}

        await AtomicInstaller(plugins_dir).install(_artifact(files))

        assert (installed_plugin / "data.json").read_bytes() == settings

    @pytest.mark.asyncio
    async def test_empty_archive_has_no_side_effects(
        self, plugins_dir: Path, installed_plugin: Path
    ) -> None:
        """Test an empty archive is rejected before touching the filesystem."""
        before = snapshot_tree(plugins_dir)
        entries_before = sorted(p.name for p in plugins_dir.iterdir())

        with pytest.raises(MalformedArtifactError):
            await AtomicInstaller(plugins_dir).install(_artifact({}))

        assert snapshot_tree(plugins_dir) == before
        assert sorted(p.name for p in plugins_dir.iterdir()) == entries_before

    @pytest.mark.asyncio
    async def test_escaping_entry_rejected(
        self, plugins_dir: Path, installed_plugin: Path
    ) -> None:
        """Test a zip-slip entry aborts during staging."""
        before = snapshot_tree(installed_plugin)

        with pytest.raises(MalformedArtifactError):
            await AtomicInstaller(plugins_dir).install(
                _artifact({"main.js": "x", "../evil.js": "x"})
            )

        assert snapshot_tree(installed_plugin) == before
        assert not (plugins_dir / "evil.js").exists()
        assert _leftovers(plugins_dir) == []

    @pytest.mark.asyncio
    async def test_swap_failure_restores_previous_install(
        self, plugins_dir: Path, installed_plugin: Path
    ) -> None:
        """Test a failed swap puts the old install back byte for byte."""
        before = snapshot_tree(installed_plugin)

        with patch.object(
            AtomicInstaller, "_swap", side_effect=PermissionError("denied")
        ):
            with pytest.raises(InstallFailedError) as exc_info:
                await AtomicInstaller(plugins_dir).install(_artifact())

        assert snapshot_tree(installed_plugin) == before
        assert _leftovers(plugins_dir) == []
        assert exc_info.value.details["restored"] is True
        assert isinstance(exc_info.value.__cause__, PermissionError)

    @pytest.mark.asyncio
    async def test_swap_failure_without_existing_install(
        self, plugins_dir: Path
    ) -> None:
        """Test a failed first install still raises and cleans staging."""
        with patch.object(
            AtomicInstaller, "_swap", side_effect=PermissionError("denied")
        ):
            with pytest.raises(InstallFailedError) as exc_info:
                await AtomicInstaller(plugins_dir).install(_artifact())

        assert exc_info.value.details["restored"] is False
        assert not (plugins_dir / "vertical-tabs").exists()
        assert _leftovers(plugins_dir) == []

    @pytest.mark.asyncio
    async def test_rollback_failure_keeps_backup(
        self, plugins_dir: Path, installed_plugin: Path
    ) -> None:
        """Test a failed restore reports and keeps the backup."""
        before = snapshot_tree(installed_plugin)
        calls: list[tuple[Path, Path]] = []

        def flaky_rename(source: Path, destination: Path) -> None:
            calls.append((source, destination))
            if len(calls) > 1:
                raise OSError("device busy")
            os.rename(source, destination)

        with (
            patch.object(AtomicInstaller, "_swap", side_effect=OSError("denied")),
            patch(
                "vtbeta_helper.updates.install.rename_directory",
                side_effect=flaky_rename,
            ),
        ):
            with pytest.raises(InstallFailedError) as exc_info:
                await AtomicInstaller(plugins_dir).install(_artifact())

        backup_path = Path(exc_info.value.details["backup_path"])
        assert backup_path.exists()
        assert snapshot_tree(backup_path) == before
        assert not any(".staging." in name for name in _leftovers(plugins_dir))

    @pytest.mark.asyncio
    async def test_backup_failure_leaves_install(
        self, plugins_dir: Path, installed_plugin: Path
    ) -> None:
        """Test a failed backup rename aborts with the install untouched."""
        before = snapshot_tree(installed_plugin)

        with patch(
            "vtbeta_helper.updates.install.rename_directory",
            side_effect=OSError("read-only"),
        ):
            with pytest.raises(InstallFailedError):
                await AtomicInstaller(plugins_dir).install(_artifact())

        assert snapshot_tree(installed_plugin) == before
        assert _leftovers(plugins_dir) == []
