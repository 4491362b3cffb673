from __future__ import annotations

import itertools
from datetime import datetime, timezone
from pathlib import Path

from communitymedia.services.object_storage import (
    ObjectNotFoundError,
    ObjectStorageError,
    guess_content_type,
)


class FakeObjectStream:
    """Serves a stored payload in fixed-size chunks and records what was read."""

    def __init__(self, content: bytes, content_type: str, chunk_size: int) -> None:
        self._content = content
        self._chunk_size = chunk_size
        self.content_type = content_type
        self.content_length = len(content)
        self.chunks_sent = 0
        self.closed = False

    async def iter_bytes(self, chunk_size=None):
        size = chunk_size or self._chunk_size
        try:
            for start in range(0, len(self._content), size):
                self.chunks_sent += 1
                yield self._content[start : start + size]
        finally:
            await self.aclose()

    async def aclose(self):
        self.closed = True


class FakeObjectStorage:
    """In-memory stand-in for ObjectStorageClient keyed by ``(bucket, key)``."""

    enabled = True

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.uploads: list[tuple[str, str]] = []
        self.fail_keys: set[str] = set()
        self.streams: list[FakeObjectStream] = []
        self.chunk_size = 4

    async def upload_file(self, bucket, key, path, *, content_type=None):
        if key in self.fail_keys:
            raise ObjectStorageError("upload rejected", status_code=500)
        self.uploads.append((bucket, key))
        self.objects[(bucket, key)] = Path(path).read_bytes()
        return f"https://storage.test/{bucket}/{key}"

    async def object_exists(self, bucket, key):
        return (bucket, key) in self.objects

    async def open_object(self, bucket, key):
        content = self.objects.get((bucket, key))
        if content is None:
            raise ObjectNotFoundError("missing", status_code=404)
        stream = FakeObjectStream(content, guess_content_type(key), self.chunk_size)
        self.streams.append(stream)
        return stream


class InMemoryMigrationRecords:
    """Mimics repositories.migration_records against a list of dict rows."""

    def __init__(self) -> None:
        self.rows: dict[int, dict] = {}
        self._ids = itertools.count(1)

    def install(self, monkeypatch, repo_module) -> None:
        for name in (
            "insert_migration_record",
            "get_migration_record",
            "list_by_source_location",
            "list_by_storage_key",
            "list_by_status",
            "set_migration_status",
            "set_verified",
            "fetch_migration_stats",
        ):
            monkeypatch.setattr(repo_module, name, getattr(self, name), raising=True)

    async def insert_migration_record(
        self,
        *,
        source_type,
        source_location,
        media_bucket,
        media_type,
        storage_key,
        migration_status,
        error_message=None,
    ):
        now = datetime.now(timezone.utc)
        row = {
            "id": next(self._ids),
            "source_type": source_type,
            "source_location": source_location,
            "media_bucket": media_bucket,
            "media_type": media_type,
            "storage_key": storage_key,
            "migration_status": migration_status,
            "error_message": error_message,
            "migrated_at": now if migration_status == "migrated" else None,
            "verification_status": False,
            "verified_at": None,
            "created_at": now,
            "updated_at": now,
        }
        self.rows[row["id"]] = row
        return dict(row)

    async def get_migration_record(self, record_id):
        row = self.rows.get(record_id)
        return dict(row) if row else None

    async def list_by_source_location(self, source_location):
        return [
            dict(row)
            for row in sorted(self.rows.values(), key=lambda r: r["id"])
            if row["source_location"] == source_location
        ]

    async def list_by_storage_key(self, media_bucket, storage_key):
        return [
            dict(row)
            for row in sorted(self.rows.values(), key=lambda r: r["id"])
            if row["media_bucket"] == media_bucket and row["storage_key"] == storage_key
        ]

    async def list_by_status(self, status, *, media_bucket=None, unverified_only=False, limit=100):
        matches = [
            dict(row)
            for row in sorted(self.rows.values(), key=lambda r: r["id"])
            if row["migration_status"] == status
            and (media_bucket is None or row["media_bucket"] == media_bucket)
            and not (unverified_only and row["verification_status"])
        ]
        return matches[:limit]

    async def set_migration_status(self, record_id, *, expected_status, status, error_message):
        row = self.rows.get(record_id)
        if row is None or row["migration_status"] != expected_status:
            return None
        row["migration_status"] = status
        row["error_message"] = error_message
        if status == "migrated":
            row["migrated_at"] = datetime.now(timezone.utc)
        row["updated_at"] = datetime.now(timezone.utc)
        return dict(row)

    async def set_verified(self, record_id):
        row = self.rows.get(record_id)
        if row is None or row["migration_status"] != "migrated":
            return None
        row["verification_status"] = True
        row["verified_at"] = datetime.now(timezone.utc)
        return dict(row)

    async def fetch_migration_stats(self):
        rows = list(self.rows.values())
        return {
            "total": len(rows),
            "pending": sum(1 for row in rows if row["migration_status"] == "pending"),
            "migrated": sum(1 for row in rows if row["migration_status"] == "migrated"),
            "failed": sum(1 for row in rows if row["migration_status"] == "failed"),
            "verified": sum(1 for row in rows if row["verification_status"]),
        }


def write_file(path: Path, content: bytes = b"data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path
