"""
Build download, verification and install for the managed plugin.

This package implements:
- Version parsing, comparison and beta tag normalization
- Build download with retry
- SHA-256 integrity verification
- Atomic directory swap with rollback
- Host plugin reload

The orchestrator that sequences these with data migrations lives in
vtbeta_helper.updates.orchestrator.
"""

from vtbeta_helper.updates.download import Artifact, download_build
from vtbeta_helper.updates.host import CommandPluginHost, PluginHost, reload_plugin
from vtbeta_helper.updates.install import (
    AtomicInstaller,
    InstallState,
    InstallTransaction,
)
from vtbeta_helper.updates.operations import ensure_directory, safe_remove_directory
from vtbeta_helper.updates.verify import compute_sha256, verify_digest
from vtbeta_helper.updates.version import (
    compare_versions,
    get_installed_version,
    normalize_version,
    parse_semantic_version,
)

__all__ = [
    # Version handling
    "compare_versions",
    "get_installed_version",
    "normalize_version",
    "parse_semantic_version",
    # Download and verification
    "Artifact",
    "download_build",
    "compute_sha256",
    "verify_digest",
    # Install
    "AtomicInstaller",
    "InstallState",
    "InstallTransaction",
    "ensure_directory",
    "safe_remove_directory",
    # Host
    "PluginHost",
    "CommandPluginHost",
    "reload_plugin",
]
