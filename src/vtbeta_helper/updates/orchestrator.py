"""
Upgrade orchestration.

Upgrader.upgrade() runs one version transition end to end:

1. resolve the migrations for the transition (once)
2. run their pre-install tasks
3. download the build (with retry)
4. verify the payload digest
5. install atomically
6. run the post-install tasks of the same resolved list
7. ask the host to reload the plugin

Each step short-circuits the rest. A pre-install failure leaves the current
install untouched; a post-install failure happens after the commit and does
not undo it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from vtbeta_helper.errors import UpgradeError
from vtbeta_helper.logging import get_logger
from vtbeta_helper.migrations.registry import (
    MigrationContext,
    MigrationPhase,
    MigrationRecord,
    MigrationRegistry,
    run_migration_phase,
)
from vtbeta_helper.updates.download import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    download_build,
)
from vtbeta_helper.updates.host import PluginHost, reload_plugin
from vtbeta_helper.updates.install import AtomicInstaller
from vtbeta_helper.updates.verify import verify_digest
from vtbeta_helper.updates.version import get_installed_version

if TYPE_CHECKING:
    from vtbeta_helper.api.client import ApiService

logger = get_logger(__name__)


@dataclass
class UpgradeResult:
    """
    Outcome of a successful upgrade.

    Attributes:
        tag: Installed build tag.
        from_version: Version installed before, if any.
        to_version: Version the migrations were resolved for.
        install_path: Live install directory.
        migrations: Labels of the migrations that ran.
    """

    tag: str
    from_version: str | None
    to_version: str
    install_path: Path
    migrations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "tag": self.tag,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "install_path": str(self.install_path),
            "migrations": list(self.migrations),
        }


class Upgrader:
    """
    Drives download, verification, install and migrations for one plugin.

    Callers must not run two upgrades for the same install target at once.

    Example:
        >>> upgrader = Upgrader(api, installer, registry, context, host=host)
        >>> result = await upgrader.upgrade("0.17.4", "0.18.0", "0.18.0-beta-1")
        >>> result.migrations
        ['group-titles-to-metadata']
    """

    def __init__(
        self,
        api: ApiService,
        installer: AtomicInstaller,
        registry: MigrationRegistry,
        context: MigrationContext,
        host: PluginHost | None = None,
        *,
        download_max_retries: int = DEFAULT_MAX_RETRIES,
        download_initial_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """
        Initialize the Upgrader.

        Args:
            api: Build service client.
            installer: Install pipeline for the target plugin.
            registry: Registered migrations.
            context: Resources passed to migration tasks.
            host: Host adapter used to reload the plugin. No reload is
                requested when None.
            download_max_retries: Retries for the build download.
            download_initial_delay: Base backoff delay for the download.
        """
        self._api = api
        self._installer = installer
        self._registry = registry
        self._context = context
        self._host = host
        self._download_max_retries = download_max_retries
        self._download_initial_delay = download_initial_delay

    @property
    def installer(self) -> AtomicInstaller:
        """Get the install pipeline."""
        return self._installer

    def installed_version(self) -> str | None:
        """Version of the currently installed plugin, if any."""
        return get_installed_version(self._installer.target_path)

    async def upgrade(
        self,
        from_version: str | None,
        to_version: str,
        tag: str,
        manual: bool = False,
    ) -> UpgradeResult:
        """
        Install a build and run the migrations for the version transition.

        Args:
            from_version: Currently installed version. None skips migrations.
            to_version: Version being installed.
            tag: Build tag to download.
            manual: Fail fast if the build is not ready yet.

        Returns:
            UpgradeResult describing the install.

        Raises:
            UpgradeError: A classified subclass for the step that failed, or
                error_code "internal" for anything unexpected.
        """
        logger.info(
            f"Starting upgrade to {tag}",
            extra={
                "tag": tag,
                "from_version": from_version,
                "to_version": to_version,
                "manual": manual,
            },
        )

        try:
            return await self._run(from_version, to_version, tag, manual)
        except UpgradeError as e:
            logger.error(
                f"Upgrade to {tag} failed: {e.message}",
                extra={"tag": tag, "error_code": e.error_code},
            )
            raise
        except Exception as e:
            logger.exception(f"Unexpected error during upgrade to {tag}")
            raise UpgradeError(
                "internal",
                f"Unexpected error during upgrade: {e}",
                details={"tag": tag, "error_type": type(e).__name__},
            ) from e

    async def upgrade_to(self, tag: str, manual: bool = False) -> UpgradeResult:
        """
        Upgrade from whatever is installed to the given build tag.

        Migrations are skipped when nothing is installed yet.
        """
        return await self.upgrade(self.installed_version(), tag, tag, manual)

    async def _run(
        self,
        from_version: str | None,
        to_version: str,
        tag: str,
        manual: bool,
    ) -> UpgradeResult:
        records: list[MigrationRecord] = []
        if from_version is not None:
            records = self._registry.resolve(from_version, to_version)

        await run_migration_phase(records, MigrationPhase.PRE_INSTALL, self._context)

        artifact = await download_build(
            self._api,
            tag,
            manual,
            max_retries=self._download_max_retries,
            initial_delay=self._download_initial_delay,
        )
        verify_digest(artifact.payload, artifact.sha256)
        install_path = await self._installer.install(artifact)

        migrations = await run_migration_phase(
            records, MigrationPhase.POST_INSTALL, self._context
        )

        if self._host is not None:
            await reload_plugin(self._host, self._installer.plugin_id, install_path)

        logger.info(
            f"Upgrade to {tag} complete",
            extra={"tag": tag, "migrations": migrations},
        )
        return UpgradeResult(
            tag=tag,
            from_version=from_version,
            to_version=to_version,
            install_path=install_path,
            migrations=migrations,
        )
