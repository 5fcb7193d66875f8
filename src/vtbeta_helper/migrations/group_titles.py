"""
Group title migrations between 0.17.4 and 0.18.0.

Up to 0.17.4 custom group titles live in the legacy string store as a JSON
list of [id, title] pairs under each view-state key. From 0.18.0 they are a
field of the structured group metadata records.

- upgrade 0.17.4 -> 0.18.0: copy titles into the metadata store before the
  install, drop the view-state keys after it
- downgrade 0.18.0 -> 0.17.4: write titles back to every view-state key
  before the install, delete the metadata database after it
"""

from __future__ import annotations

import json

from vtbeta_helper.errors import StorageError
from vtbeta_helper.logging import get_logger
from vtbeta_helper.migrations.registry import (
    MigrationContext,
    MigrationQualifier,
    MigrationRecord,
    MigrationRegistry,
)
from vtbeta_helper.storage.local import find_view_state_keys
from vtbeta_helper.storage.metadata import GroupMetadata

logger = get_logger(__name__)

DEFAULT_GROUP_TITLE = "Grouped tabs"


def _parse_title_entries(key: str, raw: str) -> list[tuple[str, str]]:
    try:
        entries = json.loads(raw)
    except ValueError as e:
        raise StorageError(
            f"View state under {key} is not valid JSON: {e}",
            details={"key": key},
        ) from e

    # A cleared view state is stored as null
    if entries is None:
        return []

    if not isinstance(entries, list):
        raise StorageError(
            f"View state under {key} is not a list",
            details={"key": key},
        )

    pairs = []
    for entry in entries:
        if isinstance(entry, list) and len(entry) == 2:
            pairs.append((str(entry[0]), entry[1]))
    return pairs


async def migrate_titles_to_metadata(context: MigrationContext) -> None:
    """
    Copy custom group titles from view-state keys into the metadata store.

    Default titles are skipped.

    Raises:
        StorageError: If a view-state value cannot be parsed or the store
            cannot be written.
    """
    keys = find_view_state_keys(context.local_storage)
    groups: list[GroupMetadata] = []

    for key in keys:
        raw = context.local_storage.get_item(key)
        if not raw:
            continue
        for group_id, title in _parse_title_entries(key, raw):
            if title and title != DEFAULT_GROUP_TITLE:
                groups.append(GroupMetadata(id=group_id, title=title))

    if not groups:
        logger.info("No custom group titles to migrate")
        return

    await context.metadata_store.bulk_put(groups)
    logger.info(
        f"Migrated {len(groups)} group title(s) from {len(keys)} key(s)",
        extra={"count": len(groups), "keys": len(keys)},
    )


async def remove_view_state_titles(context: MigrationContext) -> None:
    """Remove every view-state key from the legacy store."""
    keys = find_view_state_keys(context.local_storage)
    for key in keys:
        context.local_storage.remove_item(key)
    logger.info(f"Removed {len(keys)} view-state key(s)", extra={"keys": keys})


async def migrate_titles_to_view_state(context: MigrationContext) -> None:
    """
    Write titles from the metadata store back into every view-state key.

    Raises:
        StorageError: If either store fails.
    """
    records = await context.metadata_store.get_all()
    entries = [[r.id, r.title] for r in records if r.title]

    if not entries:
        logger.info("No custom group titles found in metadata store")
        return

    keys = find_view_state_keys(context.local_storage)
    data = json.dumps(entries)
    for key in keys:
        context.local_storage.set_item(key, data)

    logger.info(
        f"Migrated {len(entries)} group title(s) to {len(keys)} key(s)",
        extra={"count": len(entries), "keys": len(keys)},
    )


async def delete_metadata_database(context: MigrationContext) -> None:
    """Delete the metadata database."""
    await context.metadata_store.delete_database()


def register_builtin_migrations(registry: MigrationRegistry) -> None:
    """
    Register the migrations shipped with the helper.

    Args:
        registry: Registry to append to.
    """
    registry.register(
        MigrationRecord(
            qualifier=MigrationQualifier("0.17.4", "0.18.0"),
            pre_task=migrate_titles_to_metadata,
            post_task=remove_view_state_titles,
            name="group-titles-to-metadata",
        )
    )
    registry.register(
        MigrationRecord(
            qualifier=MigrationQualifier("0.18.0", "0.17.4"),
            pre_task=migrate_titles_to_view_state,
            post_task=delete_metadata_database,
            name="group-titles-to-view-state",
        )
    )
