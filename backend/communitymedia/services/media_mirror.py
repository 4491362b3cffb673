from __future__ import annotations

import hashlib
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal

from ..config import settings
from ..utils.media_categories import MediaCategory, iter_categories

logger = logging.getLogger(__name__)

CompareMode = Literal["checksum", "mtime"]

_HASH_CHUNK_BYTES = 1024 * 1024


@dataclass(slots=True)
class MirrorResult:
    copied_a_to_b: int = 0
    copied_b_to_a: int = 0
    failed: int = 0
    conflicts: list[str] = field(default_factory=list)

    def merge(self, other: "MirrorResult") -> "MirrorResult":
        self.copied_a_to_b += other.copied_a_to_b
        self.copied_b_to_a += other.copied_b_to_a
        self.failed += other.failed
        self.conflicts.extend(other.conflicts)
        return self

    def as_dict(self) -> dict[str, object]:
        return {
            "copied_a_to_b": self.copied_a_to_b,
            "copied_b_to_a": self.copied_b_to_a,
            "failed": self.failed,
            "conflicts": sorted(self.conflicts),
        }


def file_checksum(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as stream:
        for chunk in iter(lambda: stream.read(_HASH_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _list_files(directory: Path) -> dict[str, Path]:
    files: dict[str, Path] = {}
    for entry in directory.iterdir():
        if entry.name.startswith("."):
            continue
        try:
            if entry.is_file():
                files[entry.name] = entry
        except OSError as exc:
            logger.warning("Skipping unreadable entry %s: %s", entry, exc)
    return files


def copy_file_atomic(source: Path, destination: Path) -> None:
    """Copy ``source`` onto ``destination`` through a hidden temp sibling.

    The destination is replaced only once the full copy (data and stat) has
    landed, so an interrupted copy never leaves a truncated file behind.
    """

    temp = destination.with_name(f".{destination.name}.tmp")
    try:
        shutil.copyfile(source, temp)
        shutil.copystat(source, temp)
        os.replace(temp, destination)
    finally:
        temp.unlink(missing_ok=True)


def _copy(source: Path, destination: Path) -> None:
    if destination.exists() and not destination.is_file():
        raise IsADirectoryError(f"{destination} exists and is not a regular file")
    copy_file_atomic(source, destination)


def _plan_direction(
    path_a: Path,
    path_b: Path,
    *,
    compare: CompareMode,
    conflicts: list[str],
) -> Literal["a_to_b", "b_to_a"] | None:
    mtime_a = path_a.stat().st_mtime
    mtime_b = path_b.stat().st_mtime
    if compare == "checksum":
        if file_checksum(path_a) == file_checksum(path_b):
            return None
        conflicts.append(path_a.name)
        logger.warning(
            "Mirrored copies diverge; newer copy wins name=%s newer=%s",
            path_a.name,
            "a" if mtime_a >= mtime_b else "b",
        )
        return "a_to_b" if mtime_a >= mtime_b else "b_to_a"
    if mtime_a > mtime_b:
        return "a_to_b"
    if mtime_b > mtime_a:
        return "b_to_a"
    return None


def mirror_directories(
    dir_a: Path,
    dir_b: Path,
    *,
    compare: CompareMode | None = None,
) -> MirrorResult:
    """Make ``dir_a`` and ``dir_b`` hold the same top-level files.

    Additive only: files are copied, never deleted. A file missing on one side
    is copied over; a file present on both sides is compared by checksum (the
    newer copy wins when they differ) or, in ``mtime`` mode, copied when the
    source is newer. Per-file failures are logged and counted, and the
    remaining files are still processed.
    """

    mode: CompareMode = compare or settings.mirror_compare  # type: ignore[assignment]
    dir_a = Path(dir_a)
    dir_b = Path(dir_b)
    dir_a.mkdir(parents=True, exist_ok=True)
    dir_b.mkdir(parents=True, exist_ok=True)

    result = MirrorResult()
    files_a = _list_files(dir_a)
    files_b = _list_files(dir_b)

    for name in sorted(set(files_a) | set(files_b)):
        path_a = files_a.get(name)
        path_b = files_b.get(name)
        try:
            if path_b is None:
                direction = "a_to_b"
            elif path_a is None:
                direction = "b_to_a"
            else:
                direction = _plan_direction(
                    path_a, path_b, compare=mode, conflicts=result.conflicts
                )

            if direction == "a_to_b":
                _copy(files_a[name], dir_b / name)
                result.copied_a_to_b += 1
            elif direction == "b_to_a":
                _copy(files_b[name], dir_a / name)
                result.copied_b_to_a += 1
        except OSError as exc:
            result.failed += 1
            logger.warning(
                "Mirror copy failed name=%s dir_a=%s dir_b=%s: %s",
                name,
                dir_a,
                dir_b,
                exc,
            )

    logger.info(
        "Mirrored %s <-> %s copied_a_to_b=%s copied_b_to_a=%s failed=%s",
        dir_a,
        dir_b,
        result.copied_a_to_b,
        result.copied_b_to_a,
        result.failed,
    )
    return result


def storage_roots(media_root: Path | str | None = None) -> tuple[Path, Path]:
    """Return ``(legacy_root, production_root)`` for the configured media root."""

    production_root = Path(media_root or settings.media_root)
    return production_root / settings.legacy_uploads_dir, production_root


def mirror_category(
    category: MediaCategory,
    *,
    legacy_root: Path,
    production_root: Path,
    compare: CompareMode | None = None,
) -> MirrorResult:
    result = MirrorResult()
    for directory in category.directories:
        result.merge(
            mirror_directories(
                legacy_root / directory,
                production_root / directory,
                compare=compare,
            )
        )
    return result


def mirror_all(
    categories: Iterable[MediaCategory] | None = None,
    *,
    media_root: Path | str | None = None,
    compare: CompareMode | None = None,
) -> dict[str, MirrorResult]:
    legacy_root, production_root = storage_roots(media_root)
    results: dict[str, MirrorResult] = {}
    for category in categories or iter_categories():
        results[category.key] = mirror_category(
            category,
            legacy_root=legacy_root,
            production_root=production_root,
            compare=compare,
        )
    return results


__all__ = [
    "MirrorResult",
    "copy_file_atomic",
    "file_checksum",
    "mirror_all",
    "mirror_category",
    "mirror_directories",
    "storage_roots",
]
