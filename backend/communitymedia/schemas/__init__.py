from .migrations import (
    MigrationRecord,
    MigrationRunStats,
    MigrationStats,
    MigrationStatus,
    SourceType,
)

__all__ = [
    "MigrationRecord",
    "MigrationRunStats",
    "MigrationStats",
    "MigrationStatus",
    "SourceType",
]
