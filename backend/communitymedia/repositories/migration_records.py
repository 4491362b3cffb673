from __future__ import annotations

from typing import Any

from ..db import get_conn

_RECORD_COLUMNS = """
    id,
    source_type,
    source_location,
    media_bucket,
    media_type,
    storage_key,
    migration_status,
    error_message,
    migrated_at,
    verification_status,
    verified_at,
    created_at,
    updated_at
"""


async def insert_migration_record(
    *,
    source_type: str,
    source_location: str,
    media_bucket: str,
    media_type: str,
    storage_key: str,
    migration_status: str,
    error_message: str | None = None,
) -> dict[str, Any] | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            INSERT INTO migration_records (
                source_type,
                source_location,
                media_bucket,
                media_type,
                storage_key,
                migration_status,
                error_message,
                migrated_at,
                verification_status,
                created_at,
                updated_at
            )
            VALUES (
                %s, %s, %s, %s, %s, %s, %s,
                CASE WHEN %s = 'migrated' THEN now() END,
                false,
                now(),
                now()
            )
            RETURNING {_RECORD_COLUMNS}
            """,
            (
                source_type,
                source_location,
                media_bucket,
                media_type,
                storage_key,
                migration_status,
                error_message,
                migration_status,
            ),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def get_migration_record(record_id: int) -> dict[str, Any] | None:
    async with get_conn() as cur:
        await cur.execute(
            f"SELECT {_RECORD_COLUMNS} FROM migration_records WHERE id = %s",
            (record_id,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def list_by_source_location(source_location: str) -> list[dict[str, Any]]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_RECORD_COLUMNS}
            FROM migration_records
            WHERE source_location = %s
            ORDER BY id ASC
            """,
            (source_location,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_by_storage_key(media_bucket: str, storage_key: str) -> list[dict[str, Any]]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_RECORD_COLUMNS}
            FROM migration_records
            WHERE media_bucket = %s
              AND storage_key = %s
            ORDER BY id ASC
            """,
            (media_bucket, storage_key),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_by_status(
    status: str,
    *,
    media_bucket: str | None = None,
    unverified_only: bool = False,
    limit: int = 100,
) -> list[dict[str, Any]]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_RECORD_COLUMNS}
            FROM migration_records
            WHERE migration_status = %s
              AND (%s::text IS NULL OR media_bucket = %s)
              AND (NOT %s OR verification_status IS NOT TRUE)
            ORDER BY id ASC
            LIMIT %s
            """,
            (status, media_bucket, media_bucket, unverified_only, limit),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def set_migration_status(
    record_id: int,
    *,
    expected_status: str,
    status: str,
    error_message: str | None,
) -> dict[str, Any] | None:
    """Compare-and-set the status; returns None when the row moved on concurrently."""

    async with get_conn() as cur:
        await cur.execute(
            f"""
            UPDATE migration_records
            SET migration_status = %s,
                error_message = %s,
                migrated_at = CASE WHEN %s = 'migrated' THEN now() ELSE migrated_at END,
                updated_at = now()
            WHERE id = %s
              AND migration_status = %s
            RETURNING {_RECORD_COLUMNS}
            """,
            (status, error_message, status, record_id, expected_status),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def set_verified(record_id: int) -> dict[str, Any] | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            UPDATE migration_records
            SET verification_status = true,
                verified_at = now(),
                updated_at = now()
            WHERE id = %s
              AND migration_status = 'migrated'
            RETURNING {_RECORD_COLUMNS}
            """,
            (record_id,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def fetch_migration_stats() -> dict[str, int]:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT
              count(*) AS total,
              count(*) FILTER (WHERE migration_status = 'pending') AS pending,
              count(*) FILTER (WHERE migration_status = 'migrated') AS migrated,
              count(*) FILTER (WHERE migration_status = 'failed') AS failed,
              count(*) FILTER (WHERE verification_status IS TRUE) AS verified
            FROM migration_records
            """
        )
        row = await cur.fetchone()
    data = dict(row) if row else {}
    return {key: int(data.get(key) or 0) for key in ("total", "pending", "migrated", "failed", "verified")}


__all__ = [
    "fetch_migration_stats",
    "get_migration_record",
    "insert_migration_record",
    "list_by_source_location",
    "list_by_status",
    "list_by_storage_key",
    "set_migration_status",
    "set_verified",
]
