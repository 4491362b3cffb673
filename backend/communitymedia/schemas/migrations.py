from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MigrationStatus(str, Enum):
    pending = "pending"
    migrated = "migrated"
    failed = "failed"


class SourceType(str, Enum):
    filesystem = "filesystem"
    postgresql = "postgresql"


class MigrationRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    source_type: SourceType = SourceType.filesystem
    source_location: str
    media_bucket: str
    media_type: str
    storage_key: str
    migration_status: MigrationStatus
    error_message: str | None = None
    migrated_at: datetime | None = None
    verified: bool = Field(default=False, validation_alias="verification_status")
    verified_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MigrationStats(BaseModel):
    total: int = 0
    pending: int = 0
    migrated: int = 0
    failed: int = 0
    verified: int = 0


class MigrationRunStats(BaseModel):
    total: int = 0
    migrated: int = 0
    failed: int = 0
    verified: int = 0
    skipped: int = 0
    registry_version: int | None = None
