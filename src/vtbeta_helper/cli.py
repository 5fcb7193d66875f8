"""
Command-line entry point.

Subcommands:
    upgrade TAG          Download and install a build
    builds               List published builds
    check                Run one update check
    watch                Run the update checker until interrupted
    validate-token TOKEN Check an access token
    migrations FROM TO   Show the migrations a version transition would run

Results are printed to stdout as JSON. Errors print "error_code: message" to
stderr and exit with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

import yaml
from pydantic import ValidationError

from vtbeta_helper import __version__
from vtbeta_helper.api.client import ApiService
from vtbeta_helper.config import AppConfig, load_config
from vtbeta_helper.errors import UpgradeError
from vtbeta_helper.logging import get_logger, setup_logging
from vtbeta_helper.migrations import (
    MigrationContext,
    MigrationRegistry,
    register_builtin_migrations,
)
from vtbeta_helper.services.auth import normalize_token, validate_token
from vtbeta_helper.services.builds import list_builds
from vtbeta_helper.services.checker import UpdateChecker
from vtbeta_helper.storage.local import LocalStorage
from vtbeta_helper.storage.metadata import MetadataStore
from vtbeta_helper.updates.host import CommandPluginHost
from vtbeta_helper.updates.install import AtomicInstaller
from vtbeta_helper.updates.orchestrator import Upgrader

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="vtbeta-helper",
        description="Install and update Vertical Tabs beta builds",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--plugins-dir", type=str, help="Host plugin folder")
    parser.add_argument("--token", type=str, help="Access token")

    subparsers = parser.add_subparsers(dest="command", required=True)

    upgrade = subparsers.add_parser("upgrade", help="Download and install a build")
    upgrade.add_argument("tag", help="Build tag to install")
    upgrade.add_argument(
        "--manual",
        action="store_true",
        help="Fail immediately if the build is still being prepared",
    )
    upgrade.add_argument(
        "--from-version",
        help="Installed version (read from manifest.json by default)",
    )
    upgrade.add_argument(
        "--to-version",
        help="Version being installed (defaults to the tag)",
    )

    builds = subparsers.add_parser("builds", help="List published builds")
    builds.add_argument("--limit", type=int, default=10, help="Page size")
    builds.add_argument("--offset", type=int, default=0, help="Index of the first build")

    subparsers.add_parser("check", help="Run one update check")
    subparsers.add_parser("watch", help="Check for updates periodically")

    validate = subparsers.add_parser("validate-token", help="Check an access token")
    validate.add_argument("token_value", metavar="TOKEN", help="Token to validate")

    migrations = subparsers.add_parser(
        "migrations", help="Show the migrations a version transition runs"
    )
    migrations.add_argument("from_version", metavar="FROM")
    migrations.add_argument("to_version", metavar="TO")

    return parser


def _cli_overrides(parsed: argparse.Namespace) -> dict[str, Any]:
    """Turn global options into a nested configuration override dict."""
    result: dict[str, Any] = {}

    if parsed.log_level:
        result.setdefault("logging", {})["level"] = parsed.log_level
    if parsed.debug:
        result.setdefault("logging", {})["level"] = "debug"
    if parsed.plugins_dir:
        result.setdefault("install", {})["plugins_dir"] = parsed.plugins_dir
    if parsed.token:
        result.setdefault("api", {})["token"] = parsed.token

    return result


def build_api(config: AppConfig) -> ApiService:
    """Create the API client with a normalized token."""
    return ApiService.from_config(config.api, token=normalize_token(config.api.token))


def build_upgrader(config: AppConfig, api: ApiService | None = None) -> Upgrader:
    """
    Wire an Upgrader from configuration.

    Built-in migrations are registered on a fresh registry.
    """
    registry = MigrationRegistry()
    register_builtin_migrations(registry)

    installer = AtomicInstaller.from_config(config.install)
    context = MigrationContext(
        metadata_store=MetadataStore(config.storage.metadata_db_path),
        local_storage=LocalStorage(config.storage.local_storage_path),
    )
    host = CommandPluginHost.from_config(config.host, installer.target_path)

    return Upgrader(
        api if api is not None else build_api(config),
        installer,
        registry,
        context,
        host=host,
        download_max_retries=config.retry.download.max_retries,
        download_initial_delay=config.retry.download.initial_delay_seconds,
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# Command Handlers
# =============================================================================


async def _cmd_upgrade(config: AppConfig, parsed: argparse.Namespace) -> int:
    upgrader = build_upgrader(config)
    from_version = parsed.from_version or upgrader.installed_version()
    to_version = parsed.to_version or parsed.tag
    result = await upgrader.upgrade(from_version, to_version, parsed.tag, parsed.manual)
    _print_json(result.to_dict())
    return 0


async def _cmd_builds(config: AppConfig, parsed: argparse.Namespace) -> int:
    page = await list_builds(
        build_api(config), parsed.limit, parsed.offset, config.retry.listing
    )
    _print_json(page.model_dump())
    return 0


async def _cmd_check(config: AppConfig, parsed: argparse.Namespace) -> int:
    api = build_api(config)
    checker = UpdateChecker(
        build_upgrader(config, api), api, config.updates, config.retry.listing
    )
    result = await checker.check_once()
    _print_json(
        {
            "status": result.status.value,
            "installed_version": result.installed_version,
            "latest_tag": result.latest_tag,
            "error": result.error,
        }
    )
    return 1 if result.error else 0


async def _cmd_watch(config: AppConfig, parsed: argparse.Namespace) -> int:
    api = build_api(config)
    checker = UpdateChecker(
        build_upgrader(config, api), api, config.updates, config.retry.listing
    )
    await checker.run_forever()
    return 0


async def _cmd_validate_token(config: AppConfig, parsed: argparse.Namespace) -> int:
    result = await validate_token(parsed.token_value, config.api, config.retry.auth)
    _print_json({"is_valid": result.is_valid, "error_message": result.error_message})
    return 0 if result.is_valid else 1


async def _cmd_migrations(config: AppConfig, parsed: argparse.Namespace) -> int:
    registry = MigrationRegistry()
    register_builtin_migrations(registry)
    records = registry.resolve(parsed.from_version, parsed.to_version)
    _print_json(
        [
            {
                "name": record.label,
                "from_version": record.qualifier.from_version,
                "to_version": record.qualifier.to_version,
            }
            for record in records
        ]
    )
    return 0


_COMMANDS = {
    "upgrade": _cmd_upgrade,
    "builds": _cmd_builds,
    "check": _cmd_check,
    "watch": _cmd_watch,
    "validate-token": _cmd_validate_token,
    "migrations": _cmd_migrations,
}


def main(argv: list[str] | None = None) -> int:
    """
    Run the command line interface.

    Args:
        argv: Arguments without the program name. If None, uses sys.argv.

    Returns:
        Process exit status.
    """
    parsed = build_parser().parse_args(argv)

    try:
        config = load_config(parsed.config, overrides=_cli_overrides(parsed))
    except (FileNotFoundError, ValidationError, ValueError, yaml.YAMLError) as e:
        print(f"config_error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)
    logger.debug(
        "Configuration loaded",
        extra={"command": parsed.command, "plugins_dir": config.install.plugins_dir},
    )

    try:
        return asyncio.run(_COMMANDS[parsed.command](config, parsed))
    except UpgradeError as e:
        print(f"{e.error_code}: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
