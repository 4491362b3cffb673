#!/usr/bin/env python3
"""Media reconciliation tooling.

Sub-commands:
- mirror   copy files between ``uploads/<dir>`` and ``<dir>`` for each category
           (additive; never deletes)
- rewrite  rewrite media reference columns to canonical proxy URLs
- migrate  upload category files to object storage, tracked in migration_records
- verify   confirm migrated objects are fetchable and mark them verified
- stats    print migration ledger counts

Database-writing and uploading commands default to dry-run; pass --apply to
persist. Every command prints a deterministic JSON report. All commands are
safe to re-run after an interruption.

Examples
  python scripts/media_reconcile.py mirror --category calendar
  python scripts/media_reconcile.py rewrite --table events --column media_urls --apply
  python scripts/media_reconcile.py migrate --category forum --batch-size 25 --apply
  python scripts/media_reconcile.py verify --apply
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Sequence

import psycopg

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from communitymedia.config import settings  # noqa: E402
from communitymedia.db import pool  # noqa: E402
from communitymedia.logging_utils import setup_logging  # noqa: E402
from communitymedia.services import media_migration, migration_ledger  # noqa: E402
from communitymedia.services import media_mirror, reference_rewriter  # noqa: E402
from communitymedia.utils.media_categories import (  # noqa: E402
    REGISTRY_VERSION,
    MediaCategory,
    UnknownCategoryError,
    get_category,
    iter_categories,
)


def format_report(report: Any) -> str:
    return json.dumps(report, indent=2, sort_keys=True, ensure_ascii=False, default=str)


def resolve_categories(keys: Sequence[str] | None) -> list[MediaCategory]:
    if not keys:
        return list(iter_categories())
    return [get_category(key) for key in keys]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile media locations and references.")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every rewritten reference (DEBUG level).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_category_option(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--category",
            action="append",
            dest="categories",
            help="Category key to process; repeatable (default: all categories).",
        )

    mirror = subparsers.add_parser("mirror", help="Mirror legacy and production directories.")
    add_category_option(mirror)
    mirror.add_argument(
        "--media-root",
        default=settings.media_root,
        help="Production media root; legacy files live under <root>/%s." % settings.legacy_uploads_dir,
    )
    mirror.add_argument(
        "--compare",
        choices=("checksum", "mtime"),
        default=settings.mirror_compare,
        help="How to compare files present on both sides (default: %(default)s).",
    )

    rewrite = subparsers.add_parser("rewrite", help="Rewrite media reference columns.")
    rewrite.add_argument("--table", help="Only this table (requires --column).")
    rewrite.add_argument("--column", help="Only this column (requires --table).")
    rewrite.add_argument("--apply", action="store_true", help="Write changes (default is dry-run).")

    migrate = subparsers.add_parser("migrate", help="Upload category files to object storage.")
    add_category_option(migrate)
    migrate.add_argument("--media-root", default=settings.media_root)
    migrate.add_argument(
        "--batch-size",
        type=int,
        default=settings.migration_batch_size,
        help="Files uploaded in parallel per batch (default: %(default)s).",
    )
    migrate.add_argument("--verify", action="store_true", help="Verify uploads after migrating.")
    migrate.add_argument("--apply", action="store_true", help="Upload (default is dry-run).")

    verify = subparsers.add_parser("verify", help="Verify migrated objects exist.")
    add_category_option(verify)
    verify.add_argument("--batch-size", type=int, default=settings.migration_batch_size)
    verify.add_argument("--apply", action="store_true", help="Mark records verified.")

    subparsers.add_parser("stats", help="Print migration ledger counts.")

    args = parser.parse_args(argv)
    if getattr(args, "batch_size", 1) < 1:
        parser.error("--batch-size must be positive")
    if args.command == "rewrite" and bool(args.table) != bool(args.column):
        parser.error("--table and --column must be given together")
    return args


def run_mirror(args: argparse.Namespace) -> dict[str, Any]:
    results = media_mirror.mirror_all(
        resolve_categories(args.categories),
        media_root=args.media_root,
        compare=args.compare,
    )
    return {
        "registry_version": REGISTRY_VERSION,
        "categories": {key: result.as_dict() for key, result in results.items()},
    }


async def run_rewrite(args: argparse.Namespace) -> dict[str, Any]:
    dry_run = not args.apply
    if args.table:
        results = [
            await reference_rewriter.rewrite_column(args.table, args.column, dry_run=dry_run)
        ]
    else:
        results = await reference_rewriter.rewrite_all_columns(dry_run=dry_run)
    return {
        "registry_version": REGISTRY_VERSION,
        "dry_run": dry_run,
        "columns": [result.as_dict() for result in results],
    }


async def run_migrate(args: argparse.Namespace, *, verify_only: bool) -> dict[str, Any]:
    stats = await media_migration.run_migration(
        resolve_categories(args.categories),
        batch_size=args.batch_size,
        verify_only=verify_only,
        verify=bool(getattr(args, "verify", False)),
        dry_run=not args.apply,
        media_root=getattr(args, "media_root", None),
    )
    report = stats.model_dump()
    report["dry_run"] = not args.apply
    return report


async def _run_with_pool(args: argparse.Namespace) -> dict[str, Any]:
    await pool.open(wait=True)
    try:
        if args.command == "rewrite":
            return await run_rewrite(args)
        if args.command == "migrate":
            return await run_migrate(args, verify_only=False)
        if args.command == "verify":
            return await run_migrate(args, verify_only=True)
        return (await migration_ledger.get_stats()).model_dump()
    finally:
        await pool.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging("DEBUG" if args.verbose else "INFO")

    try:
        if args.command == "mirror":
            report = run_mirror(args)
        else:
            report = asyncio.run(_run_with_pool(args))
    except (UnknownCategoryError, reference_rewriter.UnknownReferenceColumn) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except psycopg.Error as exc:
        print(f"Database error: {exc}", file=sys.stderr)
        return 2

    print(format_report(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
