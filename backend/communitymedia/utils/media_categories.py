"""Media category registry.

Every component that needs to know where a category's files live (path
normalizer, directory mirroring, reference rewriter, migration job, storage
proxy) reads it from here. Bump ``REGISTRY_VERSION`` whenever a category's
bucket, prefix or directory list changes; the value is written into
migration reports so old runs can be told apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator
from urllib.parse import unquote

REGISTRY_VERSION = 3


@dataclass(frozen=True, slots=True)
class MediaCategory:
    key: str
    bucket: str
    proxy_prefix: str
    directories: tuple[str, ...]
    aliases: tuple[str, ...] = ()
    flat: bool = False
    default_image: str | None = None

    @property
    def primary_directory(self) -> str:
        return self.directories[0]

    @property
    def markers(self) -> tuple[str, ...]:
        """URL substrings that identify a reference as belonging to this category."""

        return tuple(f"/{name.lower()}/" for name in self.directories)


_CATEGORIES: tuple[MediaCategory, ...] = (
    MediaCategory(
        key="calendar",
        bucket="CALENDAR",
        proxy_prefix="events",
        directories=("calendar", "events"),
        aliases=("calendar", "calendar-media", "event", "events"),
        flat=True,
        default_image="default-event-image.svg",
    ),
    MediaCategory(
        key="forum",
        bucket="FORUM",
        proxy_prefix="forum",
        directories=("forum-media", "forum"),
        aliases=("forum", "forum-media", "forum_post", "forum_comment"),
        default_image="/public/forum-placeholder.jpg",
    ),
    MediaCategory(
        key="vendors",
        bucket="VENDORS",
        proxy_prefix="vendors",
        directories=("vendor-media", "vendors", "predefined-vendors", "generated-vendors"),
        aliases=("vendor", "vendors", "vendor-media"),
        default_image="/public/vendor-placeholder.png",
    ),
    MediaCategory(
        key="sale",
        bucket="SALE",
        proxy_prefix="real-estate-media",
        directories=("real-estate-media", "Real Estate", "real-estate", "for-sale"),
        aliases=("sale", "real_estate", "real_estate_media", "for_sale", "real-estate"),
    ),
    MediaCategory(
        key="community",
        bucket="COMMUNITY",
        proxy_prefix="community",
        directories=("community-media", "content-media", "community"),
        aliases=("community", "content", "page"),
    ),
    MediaCategory(
        key="banner",
        bucket="BANNER",
        proxy_prefix="banner-slides",
        directories=("banner-slides",),
        aliases=("banner", "banner-slides"),
        default_image="/public/banner-placeholder.jpg",
    ),
    MediaCategory(
        key="default",
        bucket="DEFAULT",
        proxy_prefix="general",
        directories=("avatars", "icons", "generated", "products"),
        aliases=("avatar", "icon", "general", "user"),
    ),
    MediaCategory(
        key="messages",
        bucket="MESSAGES",
        proxy_prefix="attachments",
        directories=("attachments",),
        aliases=("message", "messages", "attachment", "attachments"),
    ),
)

_BY_KEY: dict[str, MediaCategory] = {category.key: category for category in _CATEGORIES}
_BY_BUCKET: dict[str, MediaCategory] = {category.bucket: category for category in _CATEGORIES}
_BY_ALIAS: dict[str, MediaCategory] = {}
for _category in _CATEGORIES:
    for _name in (_category.key, *_category.aliases, *_category.directories):
        _BY_ALIAS.setdefault(_name.lower(), _category)

BUCKETS: frozenset[str] = frozenset(_BY_BUCKET)


class UnknownCategoryError(KeyError):
    """Raised when a category key is not registered."""


def iter_categories() -> Iterator[MediaCategory]:
    return iter(_CATEGORIES)


def get_category(key: str) -> MediaCategory:
    category = _BY_KEY.get((key or "").strip().lower())
    if category is None:
        raise UnknownCategoryError(key)
    return category


def category_for_alias(value: str | None) -> MediaCategory | None:
    normalized = (value or "").strip().lower()
    if not normalized:
        return None
    return _BY_ALIAS.get(normalized)


def category_for_bucket(bucket: str | None) -> MediaCategory | None:
    return _BY_BUCKET.get((bucket or "").strip().upper())


def category_for_reference(reference: str | None) -> MediaCategory | None:
    """Return the category whose marker appears earliest in ``reference``."""

    if not reference:
        return None
    probe = unquote(reference).lower()
    if not probe.startswith("/"):
        probe = f"/{probe}"
    best: tuple[int, MediaCategory] | None = None
    for category in _CATEGORIES:
        for marker in category.markers:
            position = probe.find(marker)
            if position < 0:
                continue
            if best is None or position < best[0]:
                best = (position, category)
    return best[1] if best else None


def resolve_category(value: str | MediaCategory | None) -> MediaCategory | None:
    if isinstance(value, MediaCategory):
        return value
    return category_for_alias(value)


__all__ = [
    "BUCKETS",
    "MediaCategory",
    "REGISTRY_VERSION",
    "UnknownCategoryError",
    "category_for_alias",
    "category_for_bucket",
    "category_for_reference",
    "get_category",
    "iter_categories",
    "resolve_category",
]
