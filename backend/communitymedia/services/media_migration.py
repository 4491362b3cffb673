from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Iterable, Iterator, Literal, Sequence, TypeVar

from .. import metrics
from ..config import settings
from ..schemas.migrations import MigrationRecord, MigrationRunStats, MigrationStatus
from ..utils.media_categories import REGISTRY_VERSION, MediaCategory, iter_categories
from ..utils.media_paths import canonical_storage_key
from . import migration_ledger
from .media_mirror import storage_roots
from .object_storage import ObjectStorageClient, ObjectStorageError, get_object_storage

logger = logging.getLogger(__name__)

Outcome = Literal["migrated", "failed", "skipped", "dry_run"]

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SourceFile:
    path: Path
    source_location: str
    category: MediaCategory

    @property
    def storage_key(self) -> str:
        return canonical_storage_key(self.category, self.path.name)


@dataclass(slots=True)
class FileMigrationOutcome:
    outcome: Outcome
    source_location: str
    record: MigrationRecord | None = None
    error: str | None = None


def _chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def _gather_batch(aws: Iterable[Awaitable[T]]) -> list[T]:
    """Run a batch concurrently; the first error is raised once every task settled."""

    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


def scan_category_files(
    category: MediaCategory,
    *,
    media_root: Path | str | None = None,
) -> list[SourceFile]:
    """List the category's files under both storage roots, one entry per storage key.

    The production root is scanned first, so when a file is mirrored in both
    roots the production copy is the one recorded and uploaded.
    """

    legacy_root, production_root = storage_roots(media_root)
    seen_keys: set[str] = set()
    files: list[SourceFile] = []
    for root in (production_root, legacy_root):
        for directory in category.directories:
            base = root / directory
            if not base.is_dir():
                continue
            for entry in sorted(base.iterdir()):
                if entry.name.startswith(".") or not entry.is_file():
                    continue
                source = SourceFile(
                    path=entry,
                    source_location=entry.relative_to(production_root).as_posix(),
                    category=category,
                )
                if source.storage_key in seen_keys:
                    logger.debug(
                        "Skipping duplicate copy %s (key %s already queued)",
                        source.source_location,
                        source.storage_key,
                    )
                    continue
                seen_keys.add(source.storage_key)
                files.append(source)
    return files


async def migrate_file(
    source: SourceFile,
    *,
    storage: ObjectStorageClient | None = None,
    verify_only: bool = False,
    dry_run: bool = False,
) -> FileMigrationOutcome:
    """Upload one source file unless the ledger says it is already migrated.

    Upload failures are recorded on the ledger as ``failed`` and retried on the
    next run; ledger (database) errors propagate to the caller.
    """

    client = storage or get_object_storage()
    existing = await migration_ledger.find_by_source(source.source_location)
    if not existing:
        # mirroring may have copied an already recorded file into the other root
        existing = await migration_ledger.find_by_storage_key(
            source.category.bucket, source.storage_key
        )
    record = next(
        (item for item in existing if item.migration_status == MigrationStatus.migrated),
        existing[0] if existing else None,
    )

    if record is not None:
        if record.migration_status == MigrationStatus.migrated:
            return FileMigrationOutcome("skipped", source.source_location, record)
        if record.migration_status == MigrationStatus.failed and verify_only:
            return FileMigrationOutcome("skipped", source.source_location, record)
    if verify_only:
        return FileMigrationOutcome("skipped", source.source_location, record)
    if dry_run:
        return FileMigrationOutcome("dry_run", source.source_location, record)

    if record is None:
        record = await migration_ledger.create_record(
            source.source_location,
            source.category.bucket,
            source.category.key,
            storage_key=source.storage_key,
        )
    elif record.migration_status == MigrationStatus.failed:
        record = await migration_ledger.update_status(record.id, MigrationStatus.pending)
    else:
        logger.info("Resuming pending migration record %s for %s", record.id, source.source_location)

    try:
        await client.upload_file(record.media_bucket, record.storage_key, source.path)
    except (ObjectStorageError, OSError) as exc:
        logger.warning(
            "Media upload failed source=%s bucket=%s key=%s: %s",
            source.source_location,
            record.media_bucket,
            record.storage_key,
            exc,
        )
        record = await migration_ledger.update_status(
            record.id, MigrationStatus.failed, error_message=str(exc)
        )
        return FileMigrationOutcome("failed", source.source_location, record, str(exc))

    record = await migration_ledger.update_status(record.id, MigrationStatus.migrated)
    return FileMigrationOutcome("migrated", source.source_location, record)


async def verify_record(
    record: MigrationRecord,
    *,
    storage: ObjectStorageClient | None = None,
    dry_run: bool = False,
) -> bool:
    if record.verified:
        return True
    if dry_run:
        return False
    client = storage or get_object_storage()
    try:
        exists = await client.object_exists(record.media_bucket, record.storage_key)
    except ObjectStorageError as exc:
        logger.warning("Verification lookup failed record=%s: %s", record.id, exc)
        return False
    if not exists:
        logger.error(
            "Verification failed: %s not found at %s/%s",
            record.source_location,
            record.media_bucket,
            record.storage_key,
        )
        return False
    await migration_ledger.mark_verified(record.id)
    return True


def _tally(stats: MigrationRunStats, outcome: FileMigrationOutcome) -> None:
    metrics.media_migration_files_total.labels(outcome=outcome.outcome).inc()
    if outcome.outcome == "migrated":
        stats.migrated += 1
    elif outcome.outcome == "failed":
        stats.failed += 1
    else:
        stats.skipped += 1


async def verify_category(
    category: MediaCategory,
    stats: MigrationRunStats,
    *,
    storage: ObjectStorageClient | None = None,
    batch_size: int | None = None,
    dry_run: bool = False,
) -> None:
    size = batch_size or settings.migration_batch_size
    records = await migration_ledger.list_unverified(category.bucket)
    for batch in _chunked(records, size):
        results = await _gather_batch(
            verify_record(record, storage=storage, dry_run=dry_run) for record in batch
        )
        for ok in results:
            if ok:
                stats.verified += 1
            elif dry_run:
                stats.skipped += 1
            else:
                stats.failed += 1


async def run_migration(
    categories: Iterable[MediaCategory] | None = None,
    *,
    batch_size: int | None = None,
    verify_only: bool = False,
    verify: bool = False,
    dry_run: bool = False,
    media_root: Path | str | None = None,
    storage: ObjectStorageClient | None = None,
) -> MigrationRunStats:
    """Migrate every category's files to object storage in bounded parallel batches.

    Safe to re-run: migrated files are skipped, failed ones retried, and a
    pending record left by a killed run is resumed.
    """

    size = batch_size or settings.migration_batch_size
    stats = MigrationRunStats(registry_version=REGISTRY_VERSION)

    for category in categories or iter_categories():
        if not verify_only:
            files = scan_category_files(category, media_root=media_root)
            stats.total += len(files)
            logger.info("Migrating category=%s files=%s", category.key, len(files))
            for batch in _chunked(files, size):
                outcomes = await _gather_batch(
                    migrate_file(source, storage=storage, dry_run=dry_run) for source in batch
                )
                for outcome in outcomes:
                    _tally(stats, outcome)

        if verify_only or verify:
            await verify_category(
                category,
                stats,
                storage=storage,
                batch_size=size,
                dry_run=dry_run,
            )

    logger.info(
        "Media migration finished total=%s migrated=%s failed=%s verified=%s skipped=%s",
        stats.total,
        stats.migrated,
        stats.failed,
        stats.verified,
        stats.skipped,
    )
    return stats


__all__ = [
    "FileMigrationOutcome",
    "SourceFile",
    "migrate_file",
    "run_migration",
    "scan_category_files",
    "verify_category",
    "verify_record",
]
