"""Deduplication helpers."""

from __future__ import annotations

from typing import Iterable

from repo_index.core.logging import get_logger
from repo_index.ingest.types import CrawledFile

logger = get_logger(__name__)


def dedupe_paths(files: Iterable[CrawledFile]) -> list[CrawledFile]:
    """Drop repeated paths while preserving crawl order; the first occurrence wins."""
    seen: set[str] = set()
    unique: list[CrawledFile] = []
    for item in files:
        if item.path in seen:
            logger.warning("Crawler yielded %s more than once; keeping the first copy", item.path)
            continue
        seen.add(item.path)
        unique.append(item)
    return unique


__all__ = ["dedupe_paths"]
