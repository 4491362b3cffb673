"""Migration ledger: one ``migration_records`` row per physical source file.

Allowed transitions::

    pending -> migrated -> (verified)
    pending -> failed -> pending   (retry)

Records are never deleted; the table doubles as the audit trail and the
checkpoint that makes the bulk migration resumable.
"""

from __future__ import annotations

import logging
from typing import Any

from ..repositories import migration_records as records_repo
from ..schemas.migrations import (
    MigrationRecord,
    MigrationStats,
    MigrationStatus,
    SourceType,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[MigrationStatus, frozenset[MigrationStatus]] = {
    MigrationStatus.pending: frozenset({MigrationStatus.migrated, MigrationStatus.failed}),
    MigrationStatus.failed: frozenset({MigrationStatus.pending}),
    MigrationStatus.migrated: frozenset(),
}


class MigrationLedgerError(RuntimeError):
    """Base error for ledger operations."""


class MigrationRecordNotFound(MigrationLedgerError):
    pass


class InvalidMigrationTransition(MigrationLedgerError):
    def __init__(self, record_id: int, current: str, requested: str) -> None:
        super().__init__(
            f"migration record {record_id}: {current} -> {requested} is not allowed"
        )
        self.record_id = record_id
        self.current = current
        self.requested = requested


def can_transition(current: MigrationStatus | str, requested: MigrationStatus | str) -> bool:
    return MigrationStatus(requested) in ALLOWED_TRANSITIONS[MigrationStatus(current)]


def _record(row: dict[str, Any] | None) -> MigrationRecord:
    if row is None:
        raise MigrationRecordNotFound("migration record not found")
    return MigrationRecord.model_validate(row)


async def create_record(
    source_location: str,
    bucket: str,
    media_type: str,
    *,
    storage_key: str,
    source_type: SourceType | str = SourceType.filesystem,
) -> MigrationRecord:
    """Create a ``pending`` record for a newly discovered source file."""

    row = await records_repo.insert_migration_record(
        source_type=SourceType(source_type).value,
        source_location=source_location,
        media_bucket=bucket,
        media_type=media_type,
        storage_key=storage_key,
        migration_status=MigrationStatus.pending.value,
    )
    return _record(row)


async def get_record(record_id: int) -> MigrationRecord:
    return _record(await records_repo.get_migration_record(record_id))


async def find_by_source(source_location: str) -> list[MigrationRecord]:
    rows = await records_repo.list_by_source_location(source_location)
    return [MigrationRecord.model_validate(row) for row in rows]


async def find_by_storage_key(bucket: str, storage_key: str) -> list[MigrationRecord]:
    """Records for any copy of a file that lands on ``bucket/storage_key``."""

    rows = await records_repo.list_by_storage_key(bucket, storage_key)
    return [MigrationRecord.model_validate(row) for row in rows]


async def update_status(
    record_id: int,
    status: MigrationStatus | str,
    *,
    error_message: str | None = None,
) -> MigrationRecord:
    requested = MigrationStatus(status)
    current = await get_record(record_id)
    if not can_transition(current.migration_status, requested):
        raise InvalidMigrationTransition(
            record_id, current.migration_status.value, requested.value
        )

    row = await records_repo.set_migration_status(
        record_id,
        expected_status=current.migration_status.value,
        status=requested.value,
        error_message=error_message if requested == MigrationStatus.failed else None,
    )
    if row is None:
        # another worker advanced the record between read and write
        latest = await get_record(record_id)
        raise InvalidMigrationTransition(
            record_id, latest.migration_status.value, requested.value
        )
    logger.debug(
        "Migration record %s: %s -> %s",
        record_id,
        current.migration_status.value,
        requested.value,
    )
    return _record(row)


async def mark_verified(record_id: int) -> MigrationRecord:
    current = await get_record(record_id)
    if current.migration_status != MigrationStatus.migrated:
        raise InvalidMigrationTransition(
            record_id, current.migration_status.value, "verified"
        )
    if current.verified:
        return current
    return _record(await records_repo.set_verified(record_id))


async def list_by_status(
    status: MigrationStatus | str,
    *,
    bucket: str | None = None,
    limit: int = 100,
) -> list[MigrationRecord]:
    rows = await records_repo.list_by_status(
        MigrationStatus(status).value, media_bucket=bucket, limit=limit
    )
    return [MigrationRecord.model_validate(row) for row in rows]


async def list_unverified(bucket: str | None = None, *, limit: int = 1000) -> list[MigrationRecord]:
    rows = await records_repo.list_by_status(
        MigrationStatus.migrated.value,
        media_bucket=bucket,
        unverified_only=True,
        limit=limit,
    )
    return [MigrationRecord.model_validate(row) for row in rows]


async def get_stats() -> MigrationStats:
    return MigrationStats(**await records_repo.fetch_migration_stats())


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidMigrationTransition",
    "MigrationLedgerError",
    "MigrationRecordNotFound",
    "can_transition",
    "create_record",
    "find_by_source",
    "find_by_storage_key",
    "get_record",
    "get_stats",
    "list_by_status",
    "list_unverified",
    "mark_verified",
    "update_status",
]
