"""
Migration registry.

A migration record pairs a version range (its qualifier) with a task to run
before the install and a task to run after it. The registry is an ordered,
append-only list filled once at startup; resolve() answers which records
apply to a requested version transition.

Matching rules for a request from F to T (beta suffixes stripped):
- the record's own direction (q.from < q.to means upgrade) must equal the
  request's direction (F < T means upgrade)
- upgrade: F <= q.from and T >= q.to (the request spans the whole range)
- downgrade: F >= q.from and T <= q.to

Matches keep registration order. The orchestrator runs every matched
pre-task, installs, then runs every matched post-task, one at a time.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from vtbeta_helper.errors import MigrationFailedError
from vtbeta_helper.logging import get_logger
from vtbeta_helper.updates.version import (
    compare_versions,
    is_upgrade,
    normalize_version,
    parse_semantic_version,
)

if TYPE_CHECKING:
    from vtbeta_helper.storage.local import LocalStorage
    from vtbeta_helper.storage.metadata import MetadataStore

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Resources handed to migration tasks.

    Attributes:
        metadata_store: Structured record store.
        local_storage: Legacy flat string store.
    """

    metadata_store: MetadataStore
    local_storage: LocalStorage


MigrationTask = Callable[[MigrationContext], Awaitable[None]]


class MigrationPhase(str, Enum):
    """When a migration task runs relative to the install."""

    PRE_INSTALL = "pre_install"
    POST_INSTALL = "post_install"


@dataclass(frozen=True)
class MigrationQualifier:
    """
    Directed version range a migration bridges.

    Attributes:
        from_version: Version the range starts at.
        to_version: Version the range ends at. Lower than from_version for
            downgrade migrations.
    """

    from_version: str
    to_version: str

    def __post_init__(self) -> None:
        parse_semantic_version(self.from_version)
        parse_semantic_version(self.to_version)

    @property
    def is_upgrade(self) -> bool:
        """Whether the range describes an upgrade path."""
        return is_upgrade(self.from_version, self.to_version)

    def matches(self, from_version: str, to_version: str) -> bool:
        """
        Whether a normalized transition fully spans this range.

        Args:
            from_version: Normalized source version.
            to_version: Normalized destination version.
        """
        if is_upgrade(from_version, to_version) != self.is_upgrade:
            return False

        if self.is_upgrade:
            return (
                compare_versions(from_version, self.from_version) <= 0
                and compare_versions(to_version, self.to_version) >= 0
            )
        return (
            compare_versions(from_version, self.from_version) >= 0
            and compare_versions(to_version, self.to_version) <= 0
        )


@dataclass(frozen=True)
class MigrationRecord:
    """
    A registered data migration.

    Attributes:
        qualifier: Version range the migration bridges.
        pre_task: Runs before the new build is installed.
        post_task: Runs after the new build is installed.
        name: Label used in logs and errors.
    """

    qualifier: MigrationQualifier
    pre_task: MigrationTask
    post_task: MigrationTask
    name: str = field(default="")

    @property
    def label(self) -> str:
        """Name, or the qualifier range when unnamed."""
        return self.name or (
            f"{self.qualifier.from_version}->{self.qualifier.to_version}"
        )

    def task_for(self, phase: MigrationPhase) -> MigrationTask:
        """Return the task that runs in the given phase."""
        if phase is MigrationPhase.PRE_INSTALL:
            return self.pre_task
        return self.post_task


class MigrationRegistry:
    """
    Ordered, append-only collection of migration records.

    Registering the same record twice makes it run twice.

    Example:
        >>> registry = MigrationRegistry()
        >>> registry.register(MigrationRecord(MigrationQualifier("0.17.4", "0.18.0"), pre, post))
        >>> [r.label for r in registry.resolve("0.17.0", "0.19.0")]
        ['0.17.4->0.18.0']
    """

    def __init__(self) -> None:
        self._records: list[MigrationRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[MigrationRecord]:
        return iter(self._records)

    def register(self, record: MigrationRecord) -> None:
        """Append a record."""
        self._records.append(record)
        logger.debug(
            f"Registered migration {record.label}",
            extra={
                "from_version": record.qualifier.from_version,
                "to_version": record.qualifier.to_version,
            },
        )

    def resolve(self, from_version: str, to_version: str) -> list[MigrationRecord]:
        """
        Find the migrations that apply to a version transition.

        Args:
            from_version: Currently installed version.
            to_version: Version about to be installed.

        Returns:
            Matching records in registration order.

        Raises:
            InvalidVersionError: If either version is not a semantic version.
        """
        normalized_from = normalize_version(from_version)
        normalized_to = normalize_version(to_version)

        matched = [
            record
            for record in self._records
            if record.qualifier.matches(normalized_from, normalized_to)
        ]

        logger.debug(
            f"Resolved {len(matched)} migration(s) for {normalized_from} -> {normalized_to}",
            extra={"migrations": [r.label for r in matched]},
        )
        return matched


async def run_migration_phase(
    records: list[MigrationRecord],
    phase: MigrationPhase,
    context: MigrationContext,
) -> list[str]:
    """
    Run one phase of a resolved migration list, sequentially.

    Args:
        records: Records returned by MigrationRegistry.resolve().
        phase: Which task of each record to run.
        context: Resources passed to the tasks.

    Returns:
        Labels of the records whose task completed.

    Raises:
        MigrationFailedError: On the first failing task; later tasks in the
            phase are not run.
    """
    completed: list[str] = []
    for record in records:
        logger.info(
            f"Running {phase.value} migration {record.label}",
            extra={"phase": phase.value, "migration": record.label},
        )
        try:
            await record.task_for(phase)(context)
        except Exception as e:
            logger.error(
                f"Migration {record.label} failed during {phase.value}: {e}",
                extra={"phase": phase.value, "migration": record.label},
            )
            raise MigrationFailedError(
                f"Migration {record.label} failed: {e}",
                details={
                    "phase": phase.value,
                    "migration": record.label,
                    "completed": completed,
                },
            ) from e
        completed.append(record.label)
    return completed
