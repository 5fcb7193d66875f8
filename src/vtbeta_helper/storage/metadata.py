"""
SQLite store for structured plugin metadata.

Newer plugin versions keep per-group metadata (color, icon, custom title)
as records in this store. Data migrations read and write it when moving
between versions that keep titles here and versions that keep them in the
legacy string store.

SQLite Schema:
    CREATE TABLE group_metadata (
        id TEXT PRIMARY KEY,
        color TEXT,
        icon TEXT,
        title TEXT
    );
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vtbeta_helper.errors import StorageError
from vtbeta_helper.logging import get_logger

logger = get_logger(__name__)


@dataclass
class GroupMetadata:
    """Metadata attached to a tab group.

    Attributes:
        id: Group identifier.
        color: Optional color name.
        icon: Optional icon name.
        title: Optional custom title.
    """

    id: str
    color: str | None = None
    icon: str | None = None
    title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "color": self.color,
            "icon": self.icon,
            "title": self.title,
        }


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS group_metadata (
    id TEXT PRIMARY KEY,
    color TEXT,
    icon TEXT,
    title TEXT
);
"""


class MetadataStore:
    """
    SQLite-based store for group metadata records.

    Each operation opens its own connection inside the default executor so
    the event loop is never blocked on disk I/O.

    Example:
        >>> store = MetadataStore("~/.local/share/vtbeta-helper/metadata.db")
        >>> await store.bulk_put([GroupMetadata(id="g1", title="Work")])
        >>> await store.get_all()
        [GroupMetadata(id='g1', color=None, icon=None, title='Work')]
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the MetadataStore.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path).expanduser()
        self._initialized = False
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    async def initialize(self) -> None:
        """
        Create the schema if needed. Idempotent.

        Raises:
            StorageError: If the database cannot be initialized.
        """
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            def _init_db() -> None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                with self._get_connection() as conn:
                    conn.executescript(SCHEMA_SQL)
                    conn.commit()

            try:
                await asyncio.get_event_loop().run_in_executor(None, _init_db)
            except (OSError, sqlite3.Error) as e:
                raise StorageError(
                    f"Failed to initialize metadata database: {e}",
                    details={"db_path": str(self.db_path)},
                ) from e

            self._initialized = True
            logger.debug(
                "Metadata database initialized", extra={"db_path": str(self.db_path)}
            )

    async def bulk_put(self, records: list[GroupMetadata]) -> int:
        """
        Insert or replace records in a single transaction.

        Returns:
            Number of records written.

        Raises:
            StorageError: If the write fails.
        """
        if not records:
            return 0

        await self.initialize()

        def _put() -> int:
            with self._get_connection() as conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO group_metadata (id, color, icon, title)
                    VALUES (?, ?, ?, ?)
                    """,
                    [(r.id, r.color, r.icon, r.title) for r in records],
                )
                conn.commit()
            return len(records)

        try:
            return await asyncio.get_event_loop().run_in_executor(None, _put)
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to write group metadata: {e}",
                details={"db_path": str(self.db_path), "count": len(records)},
            ) from e

    async def get_all(self) -> list[GroupMetadata]:
        """
        Return every record, ordered by id.

        Raises:
            StorageError: If the read fails.
        """
        if not self.db_path.exists():
            return []

        await self.initialize()

        def _query() -> list[GroupMetadata]:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT id, color, icon, title FROM group_metadata ORDER BY id"
                ).fetchall()
            return [GroupMetadata(**dict(row)) for row in rows]

        try:
            return await asyncio.get_event_loop().run_in_executor(None, _query)
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to read group metadata: {e}",
                details={"db_path": str(self.db_path)},
            ) from e

    async def delete_database(self) -> bool:
        """
        Delete the whole database file.

        Returns:
            True if a database existed and was removed.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        async with self._lock:
            self._initialized = False
            if not self.db_path.exists():
                return False
            try:
                self.db_path.unlink()
            except OSError as e:
                raise StorageError(
                    f"Failed to delete metadata database: {e}",
                    details={"db_path": str(self.db_path)},
                ) from e

        logger.info("Deleted metadata database", extra={"db_path": str(self.db_path)})
        return True
