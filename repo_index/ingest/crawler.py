"""Local checkout crawler.

The production crawler walks a remote code host; this one reads a working copy
on disk so the CLI and tests can feed the pipeline the same ``(path, bytes)``
pairs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

SKIPPED_DIRS = frozenset({".git", ".hg", ".svn"})


def crawl_directory(root: Path) -> Iterator[tuple[str, bytes]]:
    """Yield ``(relative_posix_path, raw_bytes)`` for every file under ``root``."""
    base = root.expanduser().resolve()
    if not base.is_dir():
        raise NotADirectoryError(f"{root} is not a directory")
    for file_path in sorted(base.rglob("*")):
        relative = file_path.relative_to(base)
        if any(part in SKIPPED_DIRS for part in relative.parts):
            continue
        if file_path.is_file():
            yield relative.as_posix(), file_path.read_bytes()


__all__ = ["crawl_directory"]
