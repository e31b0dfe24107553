"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class Collection:
    id: str
    name: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Source:
    id: str
    collection_id: str
    owner: str
    repo: str
    branch: str
    allowed_ext: frozenset[str]
    allowed_dirs: frozenset[str]
    ignored_dirs: frozenset[str]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Document:
    id: str
    source_id: str
    collection_id: str
    path: str
    checksum: int
    tokens_len: int
    data: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Chunk:
    id: str
    document_id: str
    source_id: str
    collection_id: str
    chunk_index: int
    context: str
    data: str
    vector: bytes


@dataclass(slots=True)
class IngestRun:
    id: str
    source_id: str
    started_at: datetime
    finished_at: datetime | None
    status: str
    stats: dict[str, object] | None
