from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from starlette import status

from ..config import settings
from ..schemas.migrations import MigrationRecord, MigrationStats, MigrationStatus
from ..services import migration_ledger
from ..utils.media_paths import normalize_media_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/media", tags=["media-admin"])


def require_admin_token(
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    expected = settings.admin_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API disabled",
        )
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


AdminGuard = Annotated[None, Depends(require_admin_token)]


@router.get("/migration/stats", response_model=MigrationStats)
async def migration_stats(_: AdminGuard) -> MigrationStats:
    return await migration_ledger.get_stats()


@router.get("/migration/records", response_model=list[MigrationRecord])
async def migration_records(
    _: AdminGuard,
    status_filter: Annotated[MigrationStatus, Query(alias="status")] = MigrationStatus.failed,
    bucket: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[MigrationRecord]:
    return await migration_ledger.list_by_status(status_filter, bucket=bucket, limit=limit)


@router.get("/normalize")
async def normalize_preview(
    _: AdminGuard,
    url: str,
    context: str | None = None,
) -> dict[str, str]:
    return {"url": url, "normalized": normalize_media_url(url, context)}
