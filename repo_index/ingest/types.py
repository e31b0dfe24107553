"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

CHANGED = "changed"
UNCHANGED = "unchanged"
FAILED = "failed"
CANCELLED = "cancelled"


@dataclass(slots=True)
class CrawledFile:
    """A ``(path, raw_bytes)`` pair from the crawler after path normalisation."""

    path: str
    raw: bytes


@dataclass(slots=True)
class DocumentResult:
    """Outcome for a single crawled path."""

    path: str
    status: str
    document_id: str | None = None
    chunks: int = 0
    error_kind: str | None = None
    detail: str | None = None


@dataclass(slots=True)
class IngestionReport:
    """Aggregated outcome of one ingestion run over a source."""

    run_id: str
    source_id: str
    changed: int = 0
    unchanged: int = 0
    failed: int = 0
    deleted: int = 0
    cancelled: bool = False
    results: list[DocumentResult] = field(default_factory=list)

    def record(self, result: DocumentResult) -> None:
        self.results.append(result)
        if result.status == CHANGED:
            self.changed += 1
        elif result.status == UNCHANGED:
            self.unchanged += 1
        elif result.status == FAILED:
            self.failed += 1

    @property
    def failures(self) -> list[DocumentResult]:
        return [result for result in self.results if result.status == FAILED]

    def stats(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "deleted": self.deleted,
            "cancelled": self.cancelled,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "source_id": self.source_id,
            **self.stats(),
            "results": [asdict(result) for result in self.results],
        }


__all__ = [
    "CHANGED",
    "UNCHANGED",
    "FAILED",
    "CANCELLED",
    "CrawledFile",
    "DocumentResult",
    "IngestionReport",
]
