"""Media reference normalization.

Stored media references come in several historical shapes::

    calendar/foo.jpg                                     relative-local
    /uploads/calendar/foo.jpg                            legacy-prefixed
    https://object-storage.replit.app/CALENDAR/events/foo.jpg   absolute-bucket

All of them converge on the storage proxy form
``/api/storage-proxy/{BUCKET}/{key}``. ``normalize_media_url`` never raises;
bad input yields ``""`` (empty) or the input unchanged (unparseable).
"""

from __future__ import annotations

import logging
import re
from typing import Any, Sequence
from urllib.parse import urlparse

from ..config import settings
from .media_categories import (
    BUCKETS,
    MediaCategory,
    category_for_reference,
    iter_categories,
    resolve_category,
)

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:")


class _MalformedReference(ValueError):
    pass


def _proxy_root() -> str:
    return settings.storage_proxy_prefix.rstrip("/") + "/"


def is_proxy_url(url: str | None) -> bool:
    return bool(url) and str(url).startswith(_proxy_root())


def is_direct_object_storage_url(url: str | None) -> bool:
    if not url:
        return False
    try:
        parsed = urlparse(str(url))
    except ValueError:
        return False
    if parsed.scheme not in {"http", "https"}:
        return False
    hosts = {host.strip().lower() for host in settings.object_storage_hosts}
    return (parsed.hostname or "").lower() in hosts


def extract_filename(url: str | None) -> str:
    if not url:
        return ""
    path = str(url).split("#", 1)[0].split("?", 1)[0]
    return path.rstrip("/").rsplit("/", 1)[-1] if path.strip("/") else ""


def canonical_storage_key(category: MediaCategory, filename: str) -> str:
    return f"{category.proxy_prefix}/{filename.lstrip('/')}"


def canonical_proxy_url(bucket: str, key: str) -> str:
    return f"{_proxy_root()}{bucket.strip('/')}/{key.lstrip('/')}"


def category_proxy_url(category: MediaCategory, filename: str) -> str:
    return canonical_proxy_url(category.bucket, canonical_storage_key(category, filename))


def _bucket_url_segments(reference: str) -> list[str] | None:
    """Return the path segments of an absolute bucket URL, or None for anything else."""

    if not _SCHEME_RE.match(reference):
        return None
    try:
        parsed = urlparse(reference)
        hostname = parsed.hostname
    except ValueError as exc:
        raise _MalformedReference(str(exc)) from exc
    if parsed.scheme.lower() not in {"http", "https"} or not hostname:
        return None
    segments = [segment for segment in parsed.path.split("/") if segment]
    hosts = {host.strip().lower() for host in settings.object_storage_hosts}
    if hostname.lower() in hosts or (segments and segments[0] in BUCKETS):
        return segments
    return None


def _flat_category_match(segments: Sequence[str]) -> MediaCategory | None:
    for category in iter_categories():
        if not category.flat:
            continue
        for index in range(len(segments) - 2):
            if segments[index] == category.bucket and segments[index + 1] == category.proxy_prefix:
                return category
    return None


def normalize_media_url(reference: Any, context: str | MediaCategory | None = None) -> str:
    """Return the canonical proxy URL for ``reference``.

    Rules, first match wins: proxy URLs are returned unchanged; absolute bucket
    URLs are re-rooted under the proxy (calendar event media by filename only);
    references hinted to a category by ``context`` or by a directory marker
    such as ``/uploads/calendar/`` are rewritten by filename; anything else is
    returned unchanged.
    """

    if not reference or not isinstance(reference, str):
        logger.warning("Invalid media reference to normalize: %s", type(reference).__name__)
        return ""

    if is_proxy_url(reference):
        return reference

    try:
        segments = _bucket_url_segments(reference)
    except _MalformedReference as exc:
        logger.warning("Unparseable media reference left unchanged: %r (%s)", reference, exc)
        return reference

    if segments is not None:
        flat = _flat_category_match(segments)
        if flat is not None:
            normalized = category_proxy_url(flat, segments[-1])
            logger.debug("Bucket URL -> flat proxy: %s -> %s", reference, normalized)
            return normalized
        if len(segments) >= 2:
            normalized = canonical_proxy_url(segments[0], "/".join(segments[1:]))
            logger.debug("Bucket URL -> proxy: %s -> %s", reference, normalized)
            return normalized
    elif _SCHEME_RE.match(reference):
        # foreign URL (other host, data:, blob:)
        return reference

    category = resolve_category(context) or category_for_reference(reference)
    if category is not None:
        filename = extract_filename(reference)
        if filename:
            normalized = category_proxy_url(category, filename)
            logger.debug(
                "Category path -> proxy: %s -> %s (category=%s)",
                reference,
                normalized,
                category.key,
            )
            return normalized

    return reference


def normalize_media_urls(
    urls: Sequence[str | None] | None,
    context: str | MediaCategory | None = None,
) -> list[str]:
    if urls is None or isinstance(urls, (str, bytes)) or not isinstance(urls, Sequence):
        logger.warning("Invalid media reference list to normalize: %s", type(urls).__name__)
        return []
    return [normalize_media_url(url, context) for url in urls if url is not None]


def media_url_at(
    urls: Sequence[str | None] | None,
    index: int = 0,
    context: str | MediaCategory | None = None,
) -> str:
    if not urls or isinstance(urls, (str, bytes)):
        return ""
    if index < 0 or index >= len(urls) or not urls[index]:
        return ""
    return normalize_media_url(urls[index], context)


def default_image_url(context: str | MediaCategory | None) -> str:
    category = resolve_category(context)
    if category is None or not category.default_image:
        return ""
    if category.default_image.startswith("/"):
        return category.default_image
    return category_proxy_url(category, category.default_image)


__all__ = [
    "canonical_proxy_url",
    "canonical_storage_key",
    "category_proxy_url",
    "default_image_url",
    "extract_filename",
    "is_direct_object_storage_url",
    "is_proxy_url",
    "media_url_at",
    "normalize_media_url",
    "normalize_media_urls",
]
