from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Literal

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse, RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask

from .. import metrics
from ..config import settings
from ..logging_context import set_media_path_context
from ..services import object_storage as object_storage_service
from ..services.media_mirror import copy_file_atomic, storage_roots
from ..utils.media_categories import (
    MediaCategory,
    category_for_alias,
    category_for_bucket,
    iter_categories,
)
from ..utils.media_paths import canonical_proxy_url, category_proxy_url, extract_filename

logger = logging.getLogger(__name__)

router = APIRouter(tags=["media"])

ProbeKind = Literal["canonical", "legacy", "bucket", "category_root"]


@dataclass(frozen=True, slots=True)
class ProbeCandidate:
    probe: ProbeKind
    path: Path | None = None
    bucket: str | None = None
    key: str | None = None


def _safe_join(base: Path, *parts: str) -> Path | None:
    candidate = base.joinpath(*parts).resolve()
    root = base.resolve()
    if candidate != root and root not in candidate.parents:
        return None
    return candidate


def _cache_headers() -> dict[str, str]:
    cache_seconds = max(0, settings.media_cache_seconds)
    return {
        "Cache-Control": f"public, max-age={cache_seconds}" if cache_seconds else "no-store",
        "Access-Control-Allow-Origin": "*",
    }


def canonical_redirect(bucket: str, media_path: str) -> str | None:
    """Return the canonical proxy URL for misfiled proxy shapes, else None.

    Handles a category alias used in place of the bucket
    (``events/x.jpg``) and a doubled bucket (``CALENDAR/CALENDAR/events/x.jpg``).
    """

    category = category_for_bucket(bucket)
    if category is None:
        category = category_for_alias(bucket)
        if category is None or not media_path:
            return None
        if category.flat:
            return category_proxy_url(category, extract_filename(media_path))
        return category_proxy_url(category, media_path)

    doubled = f"{category.bucket}/"
    if media_path.startswith(doubled):
        return canonical_proxy_url(category.bucket, media_path[len(doubled) :])
    if bucket != category.bucket:
        return canonical_proxy_url(category.bucket, media_path)
    return None


def _category_dirs(
    category: MediaCategory,
    root: Path,
    filename: str,
    probe: ProbeKind,
) -> list[ProbeCandidate]:
    candidates: list[ProbeCandidate] = []
    for directory in category.directories:
        path = _safe_join(root, directory, filename)
        if path is not None:
            candidates.append(ProbeCandidate(probe, path=path))
    return candidates


def _storage_candidates(bucket: str, media_path: str) -> list[ProbeCandidate]:
    """Ordered locations a proxy request may resolve to.

    canonical production file, legacy ``uploads/`` copies, the bucket itself
    (local bucket layout, then the object store), then every other category
    directory as a last-resort sweep.
    """

    legacy_root, production_root = storage_roots()
    filename = extract_filename(media_path)
    category = category_for_bucket(bucket)
    candidates: list[ProbeCandidate] = []

    if category is not None:
        primary = _safe_join(production_root, category.primary_directory, filename)
        if primary is not None:
            candidates.append(ProbeCandidate("canonical", path=primary))
        candidates.extend(_category_dirs(category, legacy_root, filename, "legacy"))
    else:
        local = _safe_join(production_root, *PurePosixPath(media_path).parts)
        if local is not None:
            candidates.append(ProbeCandidate("canonical", path=local))
        legacy = _safe_join(legacy_root, *PurePosixPath(media_path).parts)
        if legacy is not None:
            candidates.append(ProbeCandidate("legacy", path=legacy))

    bucket_layout = _safe_join(production_root, bucket, *PurePosixPath(media_path).parts)
    if bucket_layout is not None:
        candidates.append(ProbeCandidate("bucket", path=bucket_layout))
    candidates.append(ProbeCandidate("bucket", bucket=bucket, key=media_path))

    if category is not None:
        candidates.extend(
            _category_dirs(category, production_root, filename, "category_root")[1:]
        )
    for other in iter_categories():
        if other is category:
            continue
        candidates.extend(_category_dirs(other, production_root, filename, "category_root"))
        candidates.extend(_category_dirs(other, legacy_root, filename, "category_root"))

    unique: list[ProbeCandidate] = []
    seen: set[object] = set()
    for candidate in candidates:
        marker = candidate.path or (candidate.bucket, candidate.key)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(candidate)
    return unique


def _sync_to_canonical(source: Path, bucket: str, filename: str) -> None:
    category = category_for_bucket(bucket)
    if category is None:
        return
    _, production_root = storage_roots()
    target = _safe_join(production_root, category.primary_directory, filename)
    if target is None or target == source.resolve() or target.exists():
        return
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        copy_file_atomic(source, target)
        logger.info("Synced media to canonical location %s/%s", category.primary_directory, filename)
    except OSError as exc:
        logger.warning("Failed to sync media to canonical location: %s", exc)


@router.get(settings.storage_proxy_prefix + "/{bucket}/{media_path:path}")
async def storage_proxy(bucket: str, media_path: str):
    set_media_path_context(f"{bucket}/{media_path}")

    redirect_to = canonical_redirect(bucket, media_path)
    if redirect_to is not None:
        metrics.storage_proxy_redirects_total.inc()
        return RedirectResponse(redirect_to, status_code=307)

    parts = PurePosixPath(media_path).parts
    if not parts or ".." in parts or ".." in PurePosixPath(bucket).parts:
        raise HTTPException(status_code=404, detail="Media not found")

    storage = object_storage_service.get_object_storage()
    for candidate in _storage_candidates(bucket, media_path):
        if candidate.path is not None:
            if not candidate.path.is_file():
                continue
            metrics.storage_proxy_hits_total.labels(probe=candidate.probe).inc()
            if candidate.probe != "canonical":
                logger.info("Media served from fallback location probe=%s", candidate.probe)
                if settings.media_sync_on_hit:
                    _sync_to_canonical(candidate.path, bucket, candidate.path.name)
            return FileResponse(candidate.path, headers=_cache_headers())

        if not storage.enabled:
            continue
        try:
            stream = await storage.open_object(candidate.bucket or bucket, candidate.key or media_path)
        except object_storage_service.ObjectNotFoundError:
            continue
        except object_storage_service.ObjectStorageError as exc:
            logger.warning("Object storage probe failed: %s", exc)
            continue
        metrics.storage_proxy_hits_total.labels(probe=candidate.probe).inc()
        headers = _cache_headers()
        if stream.content_length is not None:
            headers["Content-Length"] = str(stream.content_length)
        return StreamingResponse(
            stream.iter_bytes(),
            media_type=stream.content_type,
            headers=headers,
            background=BackgroundTask(stream.aclose),
        )

    metrics.storage_proxy_misses_total.inc()
    logger.info("Media not found in any known location")
    raise HTTPException(status_code=404, detail="Media not found")
