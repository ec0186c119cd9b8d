"""Utility helpers for working with files."""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import mimetypes
import subprocess
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, Sequence

LOGGER = logging.getLogger(__name__)

MARKDOWN_SUFFIXES = {".md", ".markdown"}
IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".avif", ".bmp", ".tif", ".tiff"}
PASSTHROUGH_MEDIA_SUFFIXES = {".svg", ".gif", ".mp4", ".webm", ".mov", ".mp3", ".wav", ".m4a", ".pdf"}
MEDIA_SUFFIXES = IMAGE_SUFFIXES | PASSTHROUGH_MEDIA_SUFFIXES

IGNORE_FILE_NAME = ".vaultignore"


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def relative_posix(path: Path, root: Path) -> str:
    """Vault-relative path with forward slashes."""
    return PurePosixPath(path.relative_to(root)).as_posix()


def guess_mime_type(path: Path | str) -> str:
    mime, _ = mimetypes.guess_type(str(path))
    return mime or "application/octet-stream"


def load_ignore_patterns(root: Path, extra: Sequence[str] = ()) -> list[str]:
    """Combine configured ignore names with patterns from ``.vaultignore``."""
    patterns = [p for p in extra if p]
    ignore_file = root / IGNORE_FILE_NAME
    if ignore_file.is_file():
        for line in ignore_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                patterns.append(line.rstrip("/"))
        LOGGER.debug("Loaded ignore patterns from %s", ignore_file)
    return patterns


def is_ignored(relative: str, patterns: Iterable[str]) -> bool:
    """Match a vault-relative path against gitignore-like name or path patterns."""
    parts = PurePosixPath(relative).parts
    for pattern in patterns:
        if "/" in pattern:
            if fnmatch.fnmatchcase(relative, pattern.lstrip("/")):
                return True
        elif any(fnmatch.fnmatchcase(part, pattern) for part in parts):
            return True
    return False


def iter_vault_files(
    root: Path, suffixes: set[str], ignore: Sequence[str] = ()
) -> Iterator[Path]:
    """Yield files under ``root`` with matching suffixes in sorted, stable order.

    Hidden directories and files are always skipped.
    """
    yield from _walk(root, root, suffixes, ignore)


def _walk(directory: Path, root: Path, suffixes: set[str], ignore: Sequence[str]) -> Iterator[Path]:
    if directory != root and is_ignored(relative_posix(directory, root), ignore):
        LOGGER.debug("Skipping ignored directory: %s", directory)
        return
    for item in sorted(directory.iterdir(), key=lambda p: p.name):
        if item.name.startswith("."):
            continue
        if item.is_dir():
            yield from _walk(item, root, suffixes, ignore)
        elif item.is_file() and item.suffix.lower() in suffixes:
            if not is_ignored(relative_posix(item, root), ignore):
                yield item


def file_times(path: Path) -> tuple[datetime, datetime]:
    """Return (created, modified) filesystem timestamps in UTC."""
    stat = path.stat()
    created = getattr(stat, "st_birthtime", None) or stat.st_ctime
    return (
        datetime.fromtimestamp(created, tz=timezone.utc),
        datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )


def git_times(path: Path) -> tuple[datetime | None, datetime | None]:
    """Return (first commit, last commit) dates for a file, or ``(None, None)``."""
    try:
        output = subprocess.run(
            ["git", "log", "--follow", "--format=%aI", "--", path.name],
            cwd=path.parent,
            capture_output=True,
            text=True,
            check=True,
            timeout=30,
        ).stdout
    except (OSError, subprocess.SubprocessError) as exc:
        LOGGER.debug("git metadata unavailable for %s: %s", path, exc)
        return None, None
    dates = [line.strip() for line in output.splitlines() if line.strip()]
    if not dates:
        return None, None
    # git log lists newest first
    return datetime.fromisoformat(dates[-1]), datetime.fromisoformat(dates[0])
