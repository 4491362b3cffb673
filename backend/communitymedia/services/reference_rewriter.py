from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable

from ..repositories import media_references as references_repo
from ..utils.media_categories import MediaCategory, resolve_category
from ..utils.media_paths import normalize_media_url

logger = logging.getLogger(__name__)

REFERENCE_KINDS = frozenset({"scalar", "text_array", "json_array", "embedded"})

_EMBEDDED_REFERENCE_RE = re.compile(r"""(?:https?://|/uploads/)[^\s"'<>()\[\]]+""")
_TRAILING_PUNCTUATION = ".,;:!?"


class UnknownReferenceColumn(ValueError):
    """Raised for a table/column pair that is not a registered media reference column."""


@dataclass(frozen=True, slots=True)
class ReferenceColumn:
    table: str
    column: str
    kind: str
    category: str


REFERENCE_COLUMNS: tuple[ReferenceColumn, ...] = (
    ReferenceColumn("events", "media_urls", "text_array", "calendar"),
    ReferenceColumn("forum_posts", "media_urls", "text_array", "forum"),
    ReferenceColumn("forum_posts", "content", "embedded", "forum"),
    ReferenceColumn("forum_comments", "media_urls", "text_array", "forum"),
    ReferenceColumn("forum_comments", "content", "embedded", "forum"),
    ReferenceColumn("page_contents", "media_urls", "text_array", "community"),
    ReferenceColumn("content_versions", "media_urls", "text_array", "community"),
    ReferenceColumn("real_estate_listings", "photos", "text_array", "sale"),
    ReferenceColumn("users", "avatar_url", "scalar", "default"),
)

_COLUMNS_BY_KEY: dict[tuple[str, str], ReferenceColumn] = {
    (ref.table, ref.column): ref for ref in REFERENCE_COLUMNS
}


@dataclass(slots=True)
class RewriteResult:
    table: str
    column: str
    records_scanned: int = 0
    records_updated: int = 0
    records_failed: int = 0
    dry_run: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "column": self.column,
            "records_scanned": self.records_scanned,
            "records_updated": self.records_updated,
            "records_failed": self.records_failed,
            "dry_run": self.dry_run,
        }


def get_reference_column(table: str, column: str) -> ReferenceColumn:
    ref = _COLUMNS_BY_KEY.get((table, column))
    if ref is None:
        raise UnknownReferenceColumn(f"{table}.{column} is not a media reference column")
    return ref


def _rewrite_embedded(text: str, category: MediaCategory | None) -> str:
    def _replace(match: re.Match[str]) -> str:
        token = match.group(0)
        stripped = token.rstrip(_TRAILING_PUNCTUATION)
        suffix = token[len(stripped) :]
        normalized = normalize_media_url(stripped)
        if normalized == stripped and stripped.startswith("/uploads/") and category is not None:
            normalized = normalize_media_url(stripped, category)
        return normalized + suffix

    return _EMBEDDED_REFERENCE_RE.sub(_replace, text)


def rewrite_value(
    value: Any,
    *,
    kind: str,
    category: str | MediaCategory | None,
) -> tuple[Any, bool]:
    """Return ``(new_value, changed)`` for one stored column value."""

    resolved = resolve_category(category)
    if kind == "scalar":
        if not isinstance(value, str):
            raise TypeError(f"expected a string reference, got {type(value).__name__}")
        normalized = normalize_media_url(value, resolved)
        return normalized, normalized != value
    if kind in {"text_array", "json_array"}:
        if not isinstance(value, list):
            raise TypeError(f"expected an array of references, got {type(value).__name__}")
        rewritten = [
            normalize_media_url(item, resolved) if isinstance(item, str) and item else item
            for item in value
        ]
        return rewritten, rewritten != value
    if kind == "embedded":
        if not isinstance(value, str):
            raise TypeError(f"expected text content, got {type(value).__name__}")
        rewritten_text = _rewrite_embedded(value, resolved)
        return rewritten_text, rewritten_text != value
    raise ValueError(f"unsupported reference column kind: {kind}")


async def rewrite_column(
    table: str,
    column: str,
    category: str | MediaCategory | None = None,
    *,
    kind: str | None = None,
    dry_run: bool = False,
    page_size: int = 500,
) -> RewriteResult:
    """Rewrite every media reference in ``table.column`` through the normalizer.

    Each row is its own UPDATE; there is no transaction across rows, so a crash
    leaves earlier rows rewritten and the job is simply re-run. A failing row is
    logged and counted, never fatal.
    """

    ref = get_reference_column(table, column)
    resolved_kind = kind or ref.kind
    if resolved_kind not in REFERENCE_KINDS:
        raise ValueError(f"unsupported reference column kind: {resolved_kind}")
    resolved_category = category if category is not None else ref.category

    result = RewriteResult(table=table, column=column, dry_run=dry_run)
    after_id: Any | None = None
    while True:
        rows = await references_repo.fetch_reference_rows(
            table,
            column,
            kind=resolved_kind,
            after_id=after_id,
            limit=page_size,
        )
        if not rows:
            break
        for row in rows:
            row_id = row.get("id")
            after_id = row_id
            result.records_scanned += 1
            try:
                new_value, changed = rewrite_value(
                    row.get("value"),
                    kind=resolved_kind,
                    category=resolved_category,
                )
                if not changed:
                    continue
                if dry_run:
                    result.records_updated += 1
                    continue
                affected = await references_repo.update_reference_value(
                    table,
                    column,
                    row_id,
                    new_value,
                    kind=resolved_kind,
                )
                if affected:
                    result.records_updated += 1
            except Exception:
                result.records_failed += 1
                logger.exception(
                    "Failed to rewrite media reference table=%s column=%s id=%s",
                    table,
                    column,
                    row_id,
                )
        if len(rows) < page_size:
            break

    logger.info(
        "Rewrote media references table=%s column=%s scanned=%s updated=%s failed=%s dry_run=%s",
        table,
        column,
        result.records_scanned,
        result.records_updated,
        result.records_failed,
        dry_run,
    )
    return result


async def rewrite_all_columns(
    columns: Iterable[ReferenceColumn] | None = None,
    *,
    dry_run: bool = False,
) -> list[RewriteResult]:
    results: list[RewriteResult] = []
    for ref in columns or REFERENCE_COLUMNS:
        results.append(
            await rewrite_column(
                ref.table,
                ref.column,
                ref.category,
                kind=ref.kind,
                dry_run=dry_run,
            )
        )
    return results


__all__ = [
    "REFERENCE_COLUMNS",
    "ReferenceColumn",
    "RewriteResult",
    "UnknownReferenceColumn",
    "get_reference_column",
    "rewrite_all_columns",
    "rewrite_column",
    "rewrite_value",
]
