"""
Background update checker.

Every check_interval_hours the checker looks up the newest published build
and compares its tag with the installed plugin version. When they differ it
either installs the build (auto_update) or logs that an update is available.
Errors are logged and counted; they never stop the loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from vtbeta_helper.logging import get_logger
from vtbeta_helper.services.builds import get_latest_build

if TYPE_CHECKING:
    from vtbeta_helper.api.client import ApiService
    from vtbeta_helper.config import RetrySettings, UpdatesConfig
    from vtbeta_helper.updates.orchestrator import Upgrader

logger = get_logger(__name__)

SECONDS_PER_HOUR = 3600


class CheckStatus(str, Enum):
    """Outcome of one update check."""

    NO_TOKEN = "no_token"
    NOT_INSTALLED = "not_installed"
    NO_BUILDS = "no_builds"
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    UPGRADED = "upgraded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CheckResult:
    """Result of one update check.

    Attributes:
        status: What the check found or did.
        installed_version: Installed plugin version, if any.
        latest_tag: Tag of the newest published build, if known.
        error: Error message when status is FAILED.
    """

    status: CheckStatus
    installed_version: str | None = None
    latest_tag: str | None = None
    error: str | None = None


class UpdateChecker:
    """
    Periodically checks for and optionally installs new builds.

    Example:
        >>> checker = UpdateChecker(upgrader, api, config.updates)
        >>> await checker.start()
        >>> ...
        >>> await checker.stop()
    """

    def __init__(
        self,
        upgrader: Upgrader,
        api: ApiService,
        config: UpdatesConfig,
        listing_retry: RetrySettings | None = None,
    ) -> None:
        """
        Initialize the UpdateChecker.

        Args:
            upgrader: Upgrader used for automatic installs.
            api: Build service client.
            config: Update checker settings.
            listing_retry: Retry budget for the build lookup.
        """
        self._upgrader = upgrader
        self._api = api
        self._config = config
        self._listing_retry = listing_retry
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._upgrade_in_flight = False
        self.last_checked_at: datetime | None = None
        self.error_count = 0

    @property
    def is_running(self) -> bool:
        """Check if the background loop is running."""
        return self._task is not None and not self._task.done()

    @property
    def interval_seconds(self) -> float:
        """Delay between two checks."""
        return self._config.check_interval_hours * SECONDS_PER_HOUR

    async def check_once(self) -> CheckResult:
        """
        Run a single update check.

        Returns:
            CheckResult describing the outcome. Failures are reported with
            status FAILED rather than raised.
        """
        if self._upgrade_in_flight:
            logger.debug("Upgrade in progress, skipping update check")
            return CheckResult(status=CheckStatus.SKIPPED)

        if not self._api.token:
            return CheckResult(status=CheckStatus.NO_TOKEN)

        self.last_checked_at = datetime.now(UTC)
        installed = self._upgrader.installed_version()

        try:
            latest = await get_latest_build(self._api, self._listing_retry)
        except Exception as e:
            self.error_count += 1
            logger.error(
                f"Failed to check for updates: {e}",
                extra={"installed_version": installed},
            )
            return CheckResult(
                status=CheckStatus.FAILED, installed_version=installed, error=str(e)
            )

        if latest is None:
            return CheckResult(status=CheckStatus.NO_BUILDS, installed_version=installed)
        if installed is None:
            return CheckResult(
                status=CheckStatus.NOT_INSTALLED, latest_tag=latest.tag
            )
        if latest.tag == installed:
            return CheckResult(
                status=CheckStatus.UP_TO_DATE,
                installed_version=installed,
                latest_tag=latest.tag,
            )

        if not self._config.auto_update:
            if self._config.show_update_notification:
                logger.info(
                    f"Vertical Tabs {latest.tag} is now available",
                    extra={"installed_version": installed, "latest_tag": latest.tag},
                )
            return CheckResult(
                status=CheckStatus.UPDATE_AVAILABLE,
                installed_version=installed,
                latest_tag=latest.tag,
            )

        self._upgrade_in_flight = True
        try:
            await self._upgrader.upgrade_to(latest.tag)
        except Exception as e:
            self.error_count += 1
            logger.error(
                f"Failed to upgrade to {latest.tag}: {e}",
                extra={"installed_version": installed, "latest_tag": latest.tag},
            )
            return CheckResult(
                status=CheckStatus.FAILED,
                installed_version=installed,
                latest_tag=latest.tag,
                error=str(e),
            )
        finally:
            self._upgrade_in_flight = False

        return CheckResult(
            status=CheckStatus.UPGRADED,
            installed_version=installed,
            latest_tag=latest.tag,
        )

    async def start(self) -> None:
        """Start the background loop. No-op if already running."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._check_loop())
        logger.info(
            "Update checker started",
            extra={
                "interval_seconds": self.interval_seconds,
                "auto_update": self._config.auto_update,
            },
        )

    async def stop(self) -> None:
        """Stop the background loop, waiting for a running check to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=10.0)
        except TimeoutError:
            logger.warning("Update checker did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Update checker stopped")

    async def run_forever(self) -> None:
        """Run the check loop in the current task until stop() is called."""
        self._stop_event.clear()
        await self._check_loop()

    async def _check_loop(self) -> None:
        while not self._stop_event.is_set():
            result = await self.check_once()
            logger.debug(
                f"Update check finished: {result.status.value}",
                extra={"status": result.status.value, "latest_tag": result.latest_tag},
            )

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.interval_seconds
                )
                break
            except TimeoutError:
                pass
