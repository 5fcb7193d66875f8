"""
Tests for the background update checker.

Tests cover:
- Status reported for each check outcome
- Automatic installs and notifications
- Skipping checks while an upgrade is in flight
- Background loop start/stop
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vtbeta_helper.api.models import BuildData, BuildPage
from vtbeta_helper.config import UpdatesConfig
from vtbeta_helper.errors import ApiError, DownloadFailedError, PermanentRemoteError
from vtbeta_helper.services.checker import CheckStatus, UpdateChecker


def _api(*tags: str, token: str = "TOKEN") -> MagicMock:
    api = MagicMock()
    api.token = token
    api.list_builds = AsyncMock(
        return_value=BuildPage(
            data=[BuildData(id=i, tag=tag) for i, tag in enumerate(tags)],
            total=len(tags),
            limit=1,
        )
    )
    return api


def _upgrader(installed: str | None = "0.17.4") -> MagicMock:
    upgrader = MagicMock()
    upgrader.installed_version = MagicMock(return_value=installed)
    upgrader.upgrade_to = AsyncMock()
    return upgrader


def _checker(
    upgrader: MagicMock, api: MagicMock, **config: object
) -> UpdateChecker:
    return UpdateChecker(upgrader, api, UpdatesConfig(**config))


class TestCheckOnce:
    """Tests for UpdateChecker.check_once."""

    @pytest.mark.asyncio
    async def test_no_token(self) -> None:
        """Test nothing is requested without a token."""
        api = _api("0.18.0", token="")

        result = await _checker(_upgrader(), api).check_once()

        assert result.status is CheckStatus.NO_TOKEN
        api.list_builds.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_builds(self) -> None:
        """Test an empty listing."""
        result = await _checker(_upgrader(), _api()).check_once()
        assert result.status is CheckStatus.NO_BUILDS

    @pytest.mark.asyncio
    async def test_not_installed(self) -> None:
        """Test nothing is installed when the plugin is missing."""
        upgrader = _upgrader(installed=None)

        result = await _checker(upgrader, _api("0.18.0")).check_once()

        assert result.status is CheckStatus.NOT_INSTALLED
        assert result.latest_tag == "0.18.0"
        upgrader.upgrade_to.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_up_to_date(self) -> None:
        """Test an installed latest build."""
        upgrader = _upgrader(installed="0.18.0")

        result = await _checker(upgrader, _api("0.18.0")).check_once()

        assert result.status is CheckStatus.UP_TO_DATE
        upgrader.upgrade_to.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auto_update(self) -> None:
        """Test a newer build is installed automatically."""
        upgrader = _upgrader()
        checker = _checker(upgrader, _api("0.18.0-beta-1"))

        result = await checker.check_once()

        assert result.status is CheckStatus.UPGRADED
        assert result.installed_version == "0.17.4"
        upgrader.upgrade_to.assert_awaited_once_with("0.18.0-beta-1")
        assert checker.last_checked_at is not None

    @pytest.mark.asyncio
    async def test_notification_only(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test auto_update off only reports the update."""
        upgrader = _upgrader()

        with caplog.at_level("INFO", logger="vtbeta_helper"):
            result = await _checker(
                upgrader, _api("0.18.0"), auto_update=False
            ).check_once()

        assert result.status is CheckStatus.UPDATE_AVAILABLE
        assert "0.18.0 is now available" in caplog.text
        upgrader.upgrade_to.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lookup_failure_counted(self) -> None:
        """Test listing failures are reported, not raised."""
        api = _api()
        api.list_builds = AsyncMock(side_effect=PermanentRemoteError(ApiError.UNAUTHORIZED))
        checker = _checker(_upgrader(), api)

        result = await checker.check_once()

        assert result.status is CheckStatus.FAILED
        assert "Unauthorized" in (result.error or "")
        assert checker.error_count == 1

    @pytest.mark.asyncio
    async def test_upgrade_failure_counted(self) -> None:
        """Test upgrade failures are reported and the flag is cleared."""
        upgrader = _upgrader()
        upgrader.upgrade_to = AsyncMock(side_effect=DownloadFailedError("offline"))
        checker = _checker(upgrader, _api("0.18.0"))

        first = await checker.check_once()
        second = await checker.check_once()

        assert first.status is CheckStatus.FAILED
        assert second.status is CheckStatus.FAILED
        assert checker.error_count == 2

    @pytest.mark.asyncio
    async def test_skipped_while_upgrading(self) -> None:
        """Test a check started during an upgrade does nothing."""
        upgrader = _upgrader()
        checker = _checker(upgrader, _api("0.18.0"))
        nested: list[CheckStatus] = []

        async def upgrade_to(tag: str) -> None:
            nested.append((await checker.check_once()).status)

        upgrader.upgrade_to = AsyncMock(side_effect=upgrade_to)

        result = await checker.check_once()

        assert result.status is CheckStatus.UPGRADED
        assert nested == [CheckStatus.SKIPPED]


class TestCheckLoop:
    """Tests for the background loop."""

    def test_interval(self) -> None:
        """Test the interval is configured in hours."""
        checker = _checker(_upgrader(), _api(), check_interval_hours=0.5)
        assert checker.interval_seconds == 1800

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        """Test the loop checks immediately and stops on request."""
        api = _api("0.18.0")
        checker = _checker(_upgrader(installed="0.18.0"), api)

        await checker.start()
        await checker.start()
        assert checker.is_running

        for _ in range(100):
            if api.list_builds.await_count:
                break
            await asyncio.sleep(0.01)

        await checker.stop()

        assert not checker.is_running
        assert api.list_builds.await_count == 1

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self) -> None:
        """Test stop() without start() is a no-op."""
        await _checker(_upgrader(), _api()).stop()

    @pytest.mark.asyncio
    async def test_repeats_after_interval(self) -> None:
        """Test the loop checks again once the interval elapses."""
        api = _api("0.18.0")
        checker = _checker(_upgrader(installed="0.18.0"), api)

        with patch.object(
            UpdateChecker, "interval_seconds", property(lambda self: 0.01)
        ):
            await checker.start()
            for _ in range(200):
                if api.list_builds.await_count >= 3:
                    break
                await asyncio.sleep(0.01)
            await checker.stop()

        assert api.list_builds.await_count >= 3
