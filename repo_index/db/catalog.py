"""Persistent collection -> source -> document -> chunk catalog."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, replace
from typing import Any, Iterable, Iterator, Sequence

import orjson

from repo_index.core.errors import ScopeError, StorageError
from repo_index.core.logging import get_logger, log_context
from repo_index.db.sqlite import SQLiteDatabase, iter_rows, placeholders
from repo_index.ingest.filters import PathFilter
from repo_index.models.entities import Chunk, Collection, Document, IngestRun, Source
from repo_index.utils.ids import new_id
from repo_index.utils.time import ms_to_datetime, now_ms

logger = get_logger(__name__)

_SOURCE_COLUMNS = (
    "id, collection_id, owner, repo, branch, allowed_ext, allowed_dirs, ignored_dirs, created_at, updated_at"
)
_DOCUMENT_COLUMNS = "id, source_id, collection_id, path, checksum, tokens_len, data, created_at, updated_at"
_CHUNK_COLUMNS = "id, document_id, source_id, collection_id, chunk_index, context, data, vector"


@dataclass(slots=True)
class NewChunk:
    """Chunk content and packed vector awaiting insertion."""

    context: str
    data: str
    vector: bytes


@dataclass(slots=True)
class CommitResult:
    document_id: str
    chunk_ids: list[str]
    created: bool


class Catalog:
    """Typed access to the catalog tables.

    Denormalised ``source_id``/``collection_id`` columns on documents and chunks
    are copied from the owning source at insert time and never written
    independently afterwards.
    """

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    # Collections ------------------------------------------------------

    def create_collection(self, name: str) -> Collection:
        now = now_ms()
        collection_id = new_id("col")
        with self.db.transaction() as cur:
            cur.execute(
                "INSERT INTO collections (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                [collection_id, name, now, now],
            )
        logger.info("Created collection %s", collection_id, extra=log_context(collection_id=collection_id))
        return Collection(id=collection_id, name=name, created_at=ms_to_datetime(now), updated_at=ms_to_datetime(now))

    def get_collection(self, collection_id: str) -> Collection | None:
        row = self.db.query_one(
            "SELECT id, name, created_at, updated_at FROM collections WHERE id = ?",
            [collection_id],
        )
        return _row_to_collection(row) if row else None

    def list_collections(self, name: str | None = None) -> list[Collection]:
        if name is None:
            rows = self.db.query("SELECT id, name, created_at, updated_at FROM collections ORDER BY created_at, id")
        else:
            rows = self.db.query(
                "SELECT id, name, created_at, updated_at FROM collections WHERE name = ? ORDER BY created_at, id",
                [name],
            )
        return [_row_to_collection(row) for row in rows]

    def delete_collection(self, collection_id: str) -> bool:
        """Delete an empty collection; callers remove its sources first."""
        remaining = self.db.scalar("SELECT COUNT(*) FROM sources WHERE collection_id = ?", [collection_id])
        if remaining:
            raise StorageError(f"Collection {collection_id} still has {remaining} source(s)")
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM collections WHERE id = ?", [collection_id])
            return cur.rowcount > 0

    # Sources ----------------------------------------------------------

    def create_source(
        self,
        collection_id: str,
        owner: str,
        repo: str,
        branch: str,
        allowed_ext: Iterable[str] = (),
        allowed_dirs: Iterable[str] = (),
        ignored_dirs: Iterable[str] = (),
    ) -> Source:
        if self.get_collection(collection_id) is None:
            raise ScopeError(f"Collection {collection_id} does not exist")
        rules = PathFilter.from_rules(allowed_ext, allowed_dirs, ignored_dirs)
        now = now_ms()
        source_id = new_id("src")
        with self.db.transaction() as cur:
            cur.execute(
                f"INSERT INTO sources ({_SOURCE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    source_id,
                    collection_id,
                    owner,
                    repo,
                    branch,
                    _dump_set(rules.allowed_ext),
                    _dump_set(rules.allowed_dirs),
                    _dump_set(rules.ignored_dirs),
                    now,
                    now,
                ],
            )
        logger.info(
            "Created source %s for %s/%s@%s",
            source_id,
            owner,
            repo,
            branch,
            extra=log_context(source_id=source_id, collection_id=collection_id),
        )
        return Source(
            id=source_id,
            collection_id=collection_id,
            owner=owner,
            repo=repo,
            branch=branch,
            allowed_ext=frozenset(rules.allowed_ext),
            allowed_dirs=frozenset(rules.allowed_dirs),
            ignored_dirs=frozenset(rules.ignored_dirs),
            created_at=ms_to_datetime(now),
            updated_at=ms_to_datetime(now),
        )

    def get_source(self, source_id: str) -> Source | None:
        row = self.db.query_one(f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", [source_id])
        return _row_to_source(row) if row else None

    def list_sources(self, collection_id: str | None = None) -> list[Source]:
        if collection_id is None:
            rows = self.db.query(f"SELECT {_SOURCE_COLUMNS} FROM sources ORDER BY created_at, id")
        else:
            rows = self.db.query(
                f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE collection_id = ? ORDER BY created_at, id",
                [collection_id],
            )
        return [_row_to_source(row) for row in rows]

    def update_source_rules(
        self,
        source_id: str,
        allowed_ext: Iterable[str] | None = None,
        allowed_dirs: Iterable[str] | None = None,
        ignored_dirs: Iterable[str] | None = None,
    ) -> Source:
        source = self.get_source(source_id)
        if source is None:
            raise ScopeError(f"Source {source_id} does not exist")
        rules = PathFilter.from_rules(
            source.allowed_ext if allowed_ext is None else allowed_ext,
            source.allowed_dirs if allowed_dirs is None else allowed_dirs,
            source.ignored_dirs if ignored_dirs is None else ignored_dirs,
        )
        now = now_ms()
        with self.db.transaction() as cur:
            cur.execute(
                "UPDATE sources SET allowed_ext = ?, allowed_dirs = ?, ignored_dirs = ?, updated_at = ? WHERE id = ?",
                [
                    _dump_set(rules.allowed_ext),
                    _dump_set(rules.allowed_dirs),
                    _dump_set(rules.ignored_dirs),
                    now,
                    source_id,
                ],
            )
            if cur.rowcount != 1:
                raise StorageError(f"Source {source_id} vanished during update")
        return replace(
            source,
            allowed_ext=frozenset(rules.allowed_ext),
            allowed_dirs=frozenset(rules.allowed_dirs),
            ignored_dirs=frozenset(rules.ignored_dirs),
            updated_at=ms_to_datetime(now),
        )

    def delete_source(self, source_id: str) -> bool:
        """Delete a source; its documents, chunks and runs cascade."""
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM sources WHERE id = ?", [source_id])
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted source %s", source_id, extra=log_context(source_id=source_id))
        return deleted

    # Documents --------------------------------------------------------

    def get_document(self, source_id: str, path: str) -> Document | None:
        row = self.db.query_one(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE source_id = ? AND path = ?",
            [source_id, path],
        )
        return _row_to_document(row) if row else None

    def get_document_by_id(self, document_id: str) -> Document | None:
        row = self.db.query_one(f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", [document_id])
        return _row_to_document(row) if row else None

    def document_state(self, source_id: str, path: str) -> tuple[str, int] | None:
        """Return ``(document_id, checksum)`` for a stored path without loading its body."""
        row = self.db.query_one(
            "SELECT id, checksum FROM documents WHERE source_id = ? AND path = ?",
            [source_id, path],
        )
        return (row["id"], int(row["checksum"])) if row else None

    def list_documents(self, source_id: str) -> list[Document]:
        rows = self.db.query(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE source_id = ? ORDER BY path",
            [source_id],
        )
        return [_row_to_document(row) for row in rows]

    def document_checksums(self, source_id: str) -> dict[str, int]:
        rows = self.db.query("SELECT path, checksum FROM documents WHERE source_id = ?", [source_id])
        return {row["path"]: int(row["checksum"]) for row in rows}

    def commit_document(
        self,
        source: Source,
        path: str,
        checksum: int,
        tokens_len: int,
        data: str,
        chunks: Sequence[NewChunk],
    ) -> CommitResult:
        """Upsert a document and replace all of its chunks in one transaction."""
        now = now_ms()
        chunk_ids = [new_id("chk") for _ in chunks]
        with self.db.transaction() as cur:
            existing = cur.execute(
                "SELECT id FROM documents WHERE source_id = ? AND path = ?",
                [source.id, path],
            ).fetchone()
            if existing is None:
                document_id = new_id("doc")
                cur.execute(
                    f"INSERT INTO documents ({_DOCUMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [document_id, source.id, source.collection_id, path, checksum, tokens_len, data, now, now],
                )
            else:
                document_id = existing["id"]
                cur.execute(
                    "UPDATE documents SET checksum = ?, tokens_len = ?, data = ?, updated_at = ? WHERE id = ?",
                    [checksum, tokens_len, data, now, document_id],
                )
                cur.execute("DELETE FROM chunks WHERE document_id = ?", [document_id])
            cur.executemany(
                f"INSERT INTO chunks ({_CHUNK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        chunk_id,
                        document_id,
                        source.id,
                        source.collection_id,
                        chunk_index,
                        chunk.context,
                        chunk.data,
                        chunk.vector,
                    )
                    for chunk_index, (chunk_id, chunk) in enumerate(zip(chunk_ids, chunks))
                ],
            )
        return CommitResult(document_id=document_id, chunk_ids=chunk_ids, created=existing is None)

    def delete_document(self, document_id: str) -> bool:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM documents WHERE id = ?", [document_id])
            return cur.rowcount > 0

    def delete_documents(self, source_id: str, paths: Sequence[str]) -> int:
        if not paths:
            return 0
        with self.db.transaction() as cur:
            cur.execute(
                f"DELETE FROM documents WHERE source_id = ? AND path IN ({placeholders(paths)})",
                [source_id, *paths],
            )
            return cur.rowcount

    # Chunks -----------------------------------------------------------

    def list_chunks(self, document_id: str) -> list[Chunk]:
        rows = self.db.query(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE document_id = ? ORDER BY chunk_index",
            [document_id],
        )
        return [_row_to_chunk(row) for row in rows]

    def scoped_chunks(self, collection_id: str | None = None, source_id: str | None = None) -> Iterator[Chunk]:
        """Stream every chunk inside the given collection and/or source."""
        where, params = _scope_clause(collection_id, source_id)
        cursor = self.db.execute(f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE {where}", params)
        try:
            for row in iter_rows(cursor):
                yield _row_to_chunk(row)
        finally:
            cursor.close()

    def count_chunks(
        self,
        collection_id: str | None = None,
        source_id: str | None = None,
        document_id: str | None = None,
    ) -> int:
        if document_id is not None:
            return int(self.db.scalar("SELECT COUNT(*) FROM chunks WHERE document_id = ?", [document_id]))
        if collection_id is None and source_id is None:
            return int(self.db.scalar("SELECT COUNT(*) FROM chunks"))
        where, params = _scope_clause(collection_id, source_id)
        return int(self.db.scalar(f"SELECT COUNT(*) FROM chunks WHERE {where}", params))

    # Ingest runs ------------------------------------------------------

    def start_run(self, source_id: str) -> str:
        run_id = new_id("run")
        with self.db.transaction() as cur:
            cur.execute(
                "INSERT INTO ingest_runs (id, source_id, started_at, status) VALUES (?, ?, ?, ?)",
                [run_id, source_id, now_ms(), "running"],
            )
        return run_id

    def finish_run(self, run_id: str, status: str, stats: dict[str, Any]) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                "UPDATE ingest_runs SET finished_at = ?, status = ?, stats_json = ? WHERE id = ?",
                [now_ms(), status, orjson.dumps(stats).decode("utf-8"), run_id],
            )

    def list_runs(self, source_id: str) -> list[IngestRun]:
        rows = self.db.query(
            "SELECT id, source_id, started_at, finished_at, status, stats_json FROM ingest_runs "
            "WHERE source_id = ? ORDER BY started_at, id",
            [source_id],
        )
        return [
            IngestRun(
                id=row["id"],
                source_id=row["source_id"],
                started_at=ms_to_datetime(row["started_at"]),
                finished_at=ms_to_datetime(row["finished_at"]) if row["finished_at"] is not None else None,
                status=row["status"],
                stats=orjson.loads(row["stats_json"]) if row["stats_json"] else None,
            )
            for row in rows
        ]


def _scope_clause(collection_id: str | None, source_id: str | None) -> tuple[str, list[str]]:
    clauses: list[str] = []
    params: list[str] = []
    if collection_id is not None:
        clauses.append("collection_id = ?")
        params.append(collection_id)
    if source_id is not None:
        clauses.append("source_id = ?")
        params.append(source_id)
    if not clauses:
        raise ScopeError("A collection_id or source_id is required")
    return " AND ".join(clauses), params


def _dump_set(values: Iterable[str]) -> str:
    return orjson.dumps(sorted(set(values))).decode("utf-8")


def _load_set(raw: str) -> frozenset[str]:
    return frozenset(orjson.loads(raw)) if raw else frozenset()


def _row_to_collection(row: sqlite3.Row) -> Collection:
    return Collection(
        id=row["id"],
        name=row["name"],
        created_at=ms_to_datetime(row["created_at"]),
        updated_at=ms_to_datetime(row["updated_at"]),
    )


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        collection_id=row["collection_id"],
        owner=row["owner"],
        repo=row["repo"],
        branch=row["branch"],
        allowed_ext=_load_set(row["allowed_ext"]),
        allowed_dirs=_load_set(row["allowed_dirs"]),
        ignored_dirs=_load_set(row["ignored_dirs"]),
        created_at=ms_to_datetime(row["created_at"]),
        updated_at=ms_to_datetime(row["updated_at"]),
    )


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        source_id=row["source_id"],
        collection_id=row["collection_id"],
        path=row["path"],
        checksum=int(row["checksum"]),
        tokens_len=int(row["tokens_len"]),
        data=row["data"],
        created_at=ms_to_datetime(row["created_at"]),
        updated_at=ms_to_datetime(row["updated_at"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        source_id=row["source_id"],
        collection_id=row["collection_id"],
        chunk_index=int(row["chunk_index"]),
        context=row["context"],
        data=row["data"],
        vector=bytes(row["vector"]),
    )


__all__ = ["Catalog", "NewChunk", "CommitResult"]
