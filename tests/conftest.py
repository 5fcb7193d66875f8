"""
Pytest configuration for the vtbeta-helper tests.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


def make_zip(files: dict[str, bytes | str], directories: list[str] | None = None) -> bytes:
    """Build an in-memory ZIP archive from a name -> content mapping."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name in directories or []:
            archive.writestr(zipfile.ZipInfo(name.rstrip("/") + "/"), b"")
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def write_manifest(plugin_dir: Path, version: str) -> None:
    """Write a minimal plugin manifest."""
    plugin_dir.mkdir(parents=True, exist_ok=True)
    (plugin_dir / "manifest.json").write_text(
        json.dumps({"id": "vertical-tabs", "version": version})
    )


def snapshot_tree(root: Path) -> dict[str, bytes]:
    """Map every file below root (relative path) to its bytes."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def plugins_dir(tmp_path: Path) -> Path:
    """Empty host plugin folder."""
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def installed_plugin(plugins_dir: Path) -> Path:
    """A plugin install at version 0.17.4 with user settings."""
    target = plugins_dir / "vertical-tabs"
    write_manifest(target, "0.17.4")
    (target / "main.js").write_text("console.log('0.17.4');")
    (target / "data.json").write_text(json.dumps({"theme": "dark"}))
    return target


@pytest.fixture(autouse=True)
def _reset_package_logger() -> None:
    """Drop handlers installed by setup_logging() between tests."""
    yield
    logger = logging.getLogger("vtbeta_helper")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
