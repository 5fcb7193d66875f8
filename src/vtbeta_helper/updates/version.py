"""
Version handling for the Vertical Tabs beta helper.

This module implements:
- Semantic versioning validation and comparison
- Normalization of beta build tags ("0.18.0-beta-3" -> "0.18.0")
- Reading the installed plugin version from its manifest.json
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from vtbeta_helper.errors import UpgradeError
from vtbeta_helper.logging import get_logger

logger = get_logger(__name__)

# Semantic versioning regex pattern
# Accepts: 1.0.0, 1.2.3, 2.0.0-beta.1, 0.18.0-beta-3, 1.0.0-alpha+build.123
SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"\.(?P<minor>0|[1-9]\d*)"
    r"\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<buildmetadata>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

# Beta iteration suffix appended to release versions by the build service
BETA_SUFFIX_PATTERN = re.compile(r"-beta-\d+$")

MANIFEST_FILE = "manifest.json"


class InvalidVersionError(UpgradeError):
    """Error raised when a version string is not a semantic version."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidVersionError."""
        super().__init__(error_code="invalid_version", message=message, details=details)


def parse_semantic_version(version: str) -> dict[str, Any]:
    """
    Parse and validate a semantic version string.

    Args:
        version: Version string (e.g., "1.0.0", "0.18.0-beta-3").

    Returns:
        Dictionary with major, minor, patch, prerelease and buildmetadata.

    Raises:
        InvalidVersionError: If version string is invalid.
    """
    if not version:
        raise InvalidVersionError(
            "Version string cannot be empty",
            details={"version": version},
        )

    match = SEMVER_PATTERN.match(version)
    if not match:
        raise InvalidVersionError(
            f"Invalid semantic version: {version}",
            details={
                "version": version,
                "format": "MAJOR.MINOR.PATCH[-PRERELEASE][+BUILDMETADATA]",
            },
        )

    return {
        "major": int(match.group("major")),
        "minor": int(match.group("minor")),
        "patch": int(match.group("patch")),
        "prerelease": match.group("prerelease"),
        "buildmetadata": match.group("buildmetadata"),
    }


def _compare_prerelease(pre1: str, pre2: str) -> int:
    """Compare dot-separated pre-release identifiers per semver precedence."""
    parts1 = pre1.split(".")
    parts2 = pre2.split(".")
    for a, b in zip(parts1, parts2, strict=False):
        if a == b:
            continue
        a_num, b_num = a.isdigit(), b.isdigit()
        if a_num and b_num:
            return -1 if int(a) < int(b) else 1
        if a_num != b_num:
            # Numeric identifiers sort before alphanumeric ones
            return -1 if a_num else 1
        return -1 if a < b else 1
    if len(parts1) == len(parts2):
        return 0
    return -1 if len(parts1) < len(parts2) else 1


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two semantic versions.

    Build metadata is ignored.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        InvalidVersionError: If either version is invalid.
    """
    p1 = parse_semantic_version(v1)
    p2 = parse_semantic_version(v2)

    for key in ("major", "minor", "patch"):
        if p1[key] < p2[key]:
            return -1
        elif p1[key] > p2[key]:
            return 1

    # A version without prerelease ranks above the same version with one
    pre1 = p1["prerelease"]
    pre2 = p2["prerelease"]

    if pre1 is None and pre2 is not None:
        return 1
    if pre1 is not None and pre2 is None:
        return -1
    if pre1 is not None and pre2 is not None:
        return _compare_prerelease(pre1, pre2)

    return 0


def normalize_version(version: str) -> str:
    """
    Strip a trailing beta iteration suffix from a version tag.

    Beta builds of a release compare equal to the release itself, so that
    "0.17.4-beta-3" selects the same migrations as "0.17.4".

    Raises:
        InvalidVersionError: If the normalized version is invalid.
    """
    normalized = BETA_SUFFIX_PATTERN.sub("", version.strip())
    parse_semantic_version(normalized)
    return normalized


def is_upgrade(from_version: str, to_version: str) -> bool:
    """Whether moving from one normalized version to another goes forward."""
    return compare_versions(from_version, to_version) < 0


def get_installed_version(plugin_dir: Path) -> str | None:
    """
    Read the version of the plugin installed in a directory.

    Args:
        plugin_dir: Install directory of the plugin.

    Returns:
        The "version" field of manifest.json, or None when there is no
        readable manifest.
    """
    manifest_path = plugin_dir / MANIFEST_FILE
    if not manifest_path.exists():
        return None

    try:
        with open(manifest_path) as f:
            manifest = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(
            f"Could not read plugin manifest: {e}",
            extra={"path": str(manifest_path)},
        )
        return None

    version = manifest.get("version") if isinstance(manifest, dict) else None
    return version if isinstance(version, str) and version else None
