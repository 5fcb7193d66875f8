"""
Filesystem operations used by the install pipeline.

This module implements the small set of directory operations an install is
built from:
- Safe directory creation and removal
- Directory rename (a single filesystem entry move, never a deep copy)
- Zip-slip safe path resolution for archive entries

Renames stay inside the host plugin folder, so os.rename() is atomic at
the directory-entry level on POSIX filesystems.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path, PurePosixPath

from vtbeta_helper.errors import MalformedArtifactError, UpgradeError
from vtbeta_helper.logging import get_logger

logger = get_logger(__name__)


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        UpgradeError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise UpgradeError(
            "filesystem_error",
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def safe_remove_directory(path: Path) -> bool:
    """
    Remove a directory tree, logging instead of raising on failure.

    Cleanup never masks the outcome of the operation it follows.

    Args:
        path: Path to the directory to remove.

    Returns:
        True if the directory is gone, False if removal failed.
    """
    if not path.exists():
        return True

    try:
        shutil.rmtree(path)
        logger.debug("Removed directory", extra={"path": str(path)})
        return True
    except OSError as e:
        logger.warning(
            f"Failed to remove directory {path}: {e}",
            extra={"path": str(path)},
        )
        return False


def rename_directory(source: Path, destination: Path) -> None:
    """
    Move a directory to a new path with a single rename.

    Args:
        source: Existing directory.
        destination: New path; must not exist.

    Raises:
        OSError: If the rename fails.
    """
    os.rename(source, destination)
    logger.debug(
        "Renamed directory",
        extra={"source": str(source), "destination": str(destination)},
    )


def copy_file(source: Path, destination: Path) -> None:
    """Copy a file, creating the destination's parent directory."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, destination)


def resolve_entry_path(root: Path, entry_name: str) -> Path:
    """
    Resolve an archive entry name to a path under root.

    Args:
        root: Extraction root.
        entry_name: Entry name as stored in the archive (always "/"-separated).

    Returns:
        The destination path.

    Raises:
        MalformedArtifactError: If the entry is absolute or escapes root.
    """
    relative = PurePosixPath(entry_name)
    if relative.is_absolute() or ".." in relative.parts or not relative.parts:
        raise MalformedArtifactError(
            f"Archive entry escapes the install directory: {entry_name}",
            details={"entry": entry_name},
        )
    return root.joinpath(*relative.parts)
