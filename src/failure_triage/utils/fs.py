"""Filesystem helpers shared by the scanners."""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from pathlib import Path

import structlog

log = structlog.get_logger()

SKIPPED_DIRS = frozenset({"node_modules"})


def iter_source_files(
    root: Path,
    directories: Iterable[str],
    extensions: Iterable[str],
    skip_dirs: Iterable[str] = SKIPPED_DIRS,
) -> Iterator[Path]:
    """Yield source files below ``root/<directory>`` for each directory.

    Dot-directories and ``skip_dirs`` are never descended into. Missing
    directories are ignored.
    """
    exts = tuple(extensions)
    skipped = frozenset(skip_dirs)
    for directory in directories:
        base = root / directory
        if not base.is_dir():
            log.debug("source_dir_missing", path=str(base))
            continue
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in skipped
            )
            for filename in sorted(filenames):
                if filename.endswith(exts):
                    yield Path(dirpath) / filename


def read_text(path: Path) -> str | None:
    """Read a UTF-8 file verbatim, returning None when it cannot be read.

    Line endings are preserved so the text can be compared byte for byte.
    """
    try:
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        log.debug("file_read_skipped", path=str(path), error=str(e))
        return None


def to_relative(path: Path | str, root: Path) -> str:
    """Repo-relative POSIX path, or the input unchanged if outside ``root``."""
    candidate = Path(path)
    if not candidate.is_absolute():
        return candidate.as_posix()
    try:
        return candidate.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return candidate.as_posix()


def line_and_column(content: str, index: int) -> tuple[int, int]:
    """1-based line and column for a character offset."""
    before = content[:index]
    line = before.count("\n") + 1
    column = index - before.rfind("\n")
    return line, column


def write_text(path: Path, content: str) -> None:
    """Write UTF-8 text without newline translation, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
