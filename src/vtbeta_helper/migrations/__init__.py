"""
Data migrations run around plugin installs.
"""

from vtbeta_helper.migrations.group_titles import register_builtin_migrations
from vtbeta_helper.migrations.registry import (
    MigrationContext,
    MigrationPhase,
    MigrationQualifier,
    MigrationRecord,
    MigrationRegistry,
    run_migration_phase,
)

__all__ = [
    "MigrationContext",
    "MigrationPhase",
    "MigrationQualifier",
    "MigrationRecord",
    "MigrationRegistry",
    "register_builtin_migrations",
    "run_migration_phase",
]
