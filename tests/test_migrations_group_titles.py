"""
Tests for the group title migrations.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from vtbeta_helper.errors import StorageError
from vtbeta_helper.migrations.group_titles import (
    DEFAULT_GROUP_TITLE,
    delete_metadata_database,
    migrate_titles_to_metadata,
    migrate_titles_to_view_state,
    register_builtin_migrations,
    remove_view_state_titles,
)
from vtbeta_helper.migrations.registry import MigrationContext, MigrationRegistry
from vtbeta_helper.storage.local import LocalStorage
from vtbeta_helper.storage.metadata import GroupMetadata, MetadataStore

SCOPED_KEY = "vertical-tabs-abc-device1:view-state"


def _context(tmp_path: Path, items: dict[str, str] | None = None) -> MigrationContext:
    local_path = tmp_path / "local.json"
    if items is not None:
        local_path.write_text(json.dumps(items))
    return MigrationContext(
        metadata_store=MetadataStore(tmp_path / "metadata.db"),
        local_storage=LocalStorage(local_path),
    )


class TestUpgradeMigration:
    """Tests for the 0.17.4 -> 0.18.0 tasks."""

    @pytest.mark.asyncio
    async def test_titles_copied_to_metadata(self, tmp_path: Path) -> None:
        """Test custom titles from every view-state key reach the store."""
        context = _context(
            tmp_path,
            {
                "view-state": json.dumps([["g1", "Work"], ["g2", DEFAULT_GROUP_TITLE]]),
                SCOPED_KEY: json.dumps([["g3", "Research"], ["g4", ""]]),
            },
        )

        await migrate_titles_to_metadata(context)

        assert await context.metadata_store.get_all() == [
            GroupMetadata(id="g1", title="Work"),
            GroupMetadata(id="g3", title="Research"),
        ]

    @pytest.mark.asyncio
    async def test_nothing_to_migrate(self, tmp_path: Path) -> None:
        """Test no database is created when there are no titles."""
        context = _context(tmp_path, {"view-state": "[]"})

        await migrate_titles_to_metadata(context)

        assert not context.metadata_store.db_path.exists()

    @pytest.mark.asyncio
    async def test_corrupt_view_state(self, tmp_path: Path) -> None:
        """Test unparseable view state fails the migration."""
        context = _context(tmp_path, {"view-state": "{broken"})

        with pytest.raises(StorageError) as exc_info:
            await migrate_titles_to_metadata(context)

        assert exc_info.value.details["key"] == "view-state"

    @pytest.mark.asyncio
    async def test_null_view_state_skipped(self, tmp_path: Path) -> None:
        """Test a null view state is treated as empty."""
        context = _context(
            tmp_path,
            {"view-state": "null", SCOPED_KEY: json.dumps([["g1", "Work"]])},
        )

        await migrate_titles_to_metadata(context)

        assert await context.metadata_store.get_all() == [
            GroupMetadata(id="g1", title="Work")
        ]

    @pytest.mark.asyncio
    async def test_view_state_keys_removed(self, tmp_path: Path) -> None:
        """Test the post-install task drops view-state keys only."""
        context = _context(
            tmp_path,
            {"view-state": "[]", SCOPED_KEY: "[]", "settings": "{}"},
        )

        await remove_view_state_titles(context)

        assert json.loads((tmp_path / "local.json").read_text()) == {"settings": "{}"}


class TestDowngradeMigration:
    """Tests for the 0.18.0 -> 0.17.4 tasks."""

    @pytest.mark.asyncio
    async def test_titles_written_to_every_key(self, tmp_path: Path) -> None:
        """Test titles land under the bare and scoped view-state keys."""
        context = _context(tmp_path, {SCOPED_KEY: "[]"})
        await context.metadata_store.bulk_put(
            [
                GroupMetadata(id="g1", title="Work"),
                GroupMetadata(id="g2", color="red"),
            ]
        )

        await migrate_titles_to_view_state(context)

        stored = json.loads((tmp_path / "local.json").read_text())
        assert json.loads(stored["view-state"]) == [["g1", "Work"]]
        assert json.loads(stored[SCOPED_KEY]) == [["g1", "Work"]]

    @pytest.mark.asyncio
    async def test_no_titles_leaves_store(self, tmp_path: Path) -> None:
        """Test nothing is written without titles."""
        context = _context(tmp_path)

        await migrate_titles_to_view_state(context)

        assert not (tmp_path / "local.json").exists()

    @pytest.mark.asyncio
    async def test_database_deleted(self, tmp_path: Path) -> None:
        """Test the post-install task removes the database."""
        context = _context(tmp_path)
        await context.metadata_store.bulk_put([GroupMetadata(id="g1", title="Work")])

        await delete_metadata_database(context)

        assert not context.metadata_store.db_path.exists()


class TestRegisterBuiltinMigrations:
    """Tests for register_builtin_migrations."""

    def test_records_resolve(self) -> None:
        """Test both built-in records resolve for their direction."""
        registry = MigrationRegistry()
        register_builtin_migrations(registry)

        assert len(registry) == 2
        assert [r.name for r in registry.resolve("0.17.4", "0.18.0-beta-1")] == [
            "group-titles-to-metadata"
        ]
        assert [r.name for r in registry.resolve("0.18.1", "0.17.4")] == [
            "group-titles-to-view-state"
        ]
        assert registry.resolve("0.18.0", "0.18.1") == []

    @pytest.mark.asyncio
    async def test_round_trip_through_both_directions(self, tmp_path: Path) -> None:
        """Test titles survive an upgrade followed by a downgrade."""
        context = _context(tmp_path, {SCOPED_KEY: json.dumps([["g1", "Work"]])})
        registry = MigrationRegistry()
        register_builtin_migrations(registry)

        (up,) = registry.resolve("0.17.4", "0.18.0")
        await up.pre_task(context)
        await up.post_task(context)
        assert context.local_storage.keys() == []

        (down,) = registry.resolve("0.18.0", "0.17.4")
        await down.pre_task(context)
        await down.post_task(context)

        assert context.local_storage.get_item(SCOPED_KEY) is None
        assert json.loads(context.local_storage.get_item("view-state") or "") == [
            ["g1", "Work"]
        ]
        assert not context.metadata_store.db_path.exists()
