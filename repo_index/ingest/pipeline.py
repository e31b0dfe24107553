"""Ingest pipeline orchestration."""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from typing import AsyncIterable, Iterable, Sequence, Union

from repo_index.core.config import Settings
from repo_index.core.errors import ChunkingError, RepoIndexError, ScopeError
from repo_index.core.logging import get_logger, log_context
from repo_index.core.metrics import DOCUMENTS_TOTAL, INDEX_SIZE, INGEST_DURATION
from repo_index.db.catalog import Catalog, NewChunk
from repo_index.ingest.chunker import ChunkCandidate, Chunker
from repo_index.ingest.dedupe import dedupe_paths
from repo_index.ingest.embeddings import EmbeddingClient, pack_vector
from repo_index.ingest.filters import PathFilter, normalize_path
from repo_index.ingest.locks import KeyedLock
from repo_index.ingest.tokenizer import Tokenizer
from repo_index.ingest.types import (
    CANCELLED,
    CHANGED,
    FAILED,
    UNCHANGED,
    CrawledFile,
    DocumentResult,
    IngestionReport,
)
from repo_index.models.entities import Source
from repo_index.utils.hashing import fingerprint

logger = get_logger(__name__)

CrawlResults = Union[Iterable[tuple[str, bytes]], AsyncIterable[tuple[str, bytes]]]


class IngestPipeline:
    """Coordinate change detection, chunking, embeddings, and persistence.

    Each crawled document moves through
    fetched -> checksum compared -> unchanged | chunked -> embedded -> committed,
    or ends as failed without touching its previously committed state.
    """

    def __init__(
        self,
        catalog: Catalog,
        settings: Settings,
        embedding_client: EmbeddingClient,
        chunker: Chunker | None = None,
    ) -> None:
        self.catalog = catalog
        self.settings = settings
        self.embedding_client = embedding_client
        self.chunker = chunker or Chunker(Tokenizer(settings.tokenizer_encoding))
        self._executor = ThreadPoolExecutor(max_workers=settings.chunk_workers, thread_name_prefix="ridx-chunk")
        self._locks = KeyedLock()

    async def ingest(
        self,
        source_id: str,
        crawl_results: CrawlResults,
        paths: Sequence[str] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IngestionReport:
        """Ingest one crawl of a source and return the per-run report.

        With ``paths`` the run is scoped: only those paths are considered and no
        stored document is deleted. Setting ``cancel_event`` stops the run
        between documents.
        """
        source = self.catalog.get_source(source_id)
        if source is None:
            raise ScopeError(f"Source {source_id} does not exist")
        path_filter = PathFilter.from_source(source)
        scope = {normalize_path(path) for path in paths} if paths is not None else None
        cancel = cancel_event or asyncio.Event()

        run_id = self.catalog.start_run(source.id)
        report = IngestionReport(run_id=run_id, source_id=source.id)
        started = time.perf_counter()
        status = "failed"
        try:
            files = await self._collect(crawl_results, path_filter, scope)
            logger.info(
                "Ingesting %s files for source %s",
                len(files),
                source.id,
                extra=log_context(source_id=source.id, run_id=run_id),
            )
            semaphore = asyncio.Semaphore(self.settings.document_concurrency)

            async def run_one(item: CrawledFile) -> DocumentResult:
                async with semaphore:
                    if cancel.is_set():
                        return DocumentResult(path=item.path, status=CANCELLED)
                    return await self._process(source, item)

            for result in await asyncio.gather(*(run_one(item) for item in files)):
                report.record(result)
                DOCUMENTS_TOTAL.labels(status=result.status).inc()

            report.cancelled = cancel.is_set()
            if scope is None and not report.cancelled:
                report.deleted = await self._delete_stale(source, {item.path for item in files})
            status = "cancelled" if report.cancelled else "completed"
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except Exception as exc:
            logger.exception("Ingest run %s failed: %s", run_id, exc, extra=log_context(source_id=source.id))
            raise
        finally:
            self.catalog.finish_run(run_id, status, report.stats())
            INGEST_DURATION.labels(source=source.id).observe(time.perf_counter() - started)
            self._update_index_metric()

        logger.info(
            "Ingest run %s finished: %s changed, %s unchanged, %s failed, %s deleted",
            run_id,
            report.changed,
            report.unchanged,
            report.failed,
            report.deleted,
            extra=log_context(source_id=source.id, run_id=run_id),
        )
        return report

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # Internal helpers -------------------------------------------------

    async def _collect(
        self,
        crawl_results: CrawlResults,
        path_filter: PathFilter,
        scope: set[str] | None,
    ) -> list[CrawledFile]:
        files: list[CrawledFile] = []

        def accept(raw_path: str, raw: bytes) -> None:
            path = normalize_path(raw_path)
            if scope is not None and path not in scope:
                return
            if not path_filter.matches(path):
                logger.debug("Skipping filtered path %s", path)
                return
            files.append(CrawledFile(path=path, raw=raw))

        if isinstance(crawl_results, AsyncIterable):
            async for raw_path, raw in crawl_results:
                accept(raw_path, raw)
        else:
            for raw_path, raw in crawl_results:
                accept(raw_path, raw)
        return dedupe_paths(files)

    async def _process(self, source: Source, item: CrawledFile) -> DocumentResult:
        async with self._locks.hold((source.id, item.path)):
            checksum = fingerprint(item.raw)
            stored = self.catalog.document_state(source.id, item.path)
            if stored is not None and stored[1] == checksum:
                return DocumentResult(path=item.path, status=UNCHANGED, document_id=stored[0])
            try:
                text = _decode(item.raw)
                loop = asyncio.get_running_loop()
                tokens_len, candidates = await loop.run_in_executor(self._executor, self._chunk, text, item.path)
                vectors = await self.embedding_client.embed([embedding_input(c) for c in candidates])
                # No await between here and the end of the commit.
                committed = self.catalog.commit_document(
                    source,
                    item.path,
                    checksum,
                    tokens_len,
                    text,
                    [
                        NewChunk(context=candidate.context, data=candidate.data, vector=pack_vector(vector))
                        for candidate, vector in zip(candidates, vectors)
                    ],
                )
            except RepoIndexError as exc:
                logger.warning(
                    "Failed to ingest %s: %s",
                    item.path,
                    exc,
                    extra=log_context(source_id=source.id, error_kind=exc.kind),
                )
                return DocumentResult(
                    path=item.path,
                    status=FAILED,
                    document_id=stored[0] if stored else None,
                    error_kind=exc.kind,
                    detail=str(exc),
                )
        return DocumentResult(
            path=item.path,
            status=CHANGED,
            document_id=committed.document_id,
            chunks=len(committed.chunk_ids),
        )

    def _chunk(self, text: str, path: str) -> tuple[int, list[ChunkCandidate]]:
        try:
            tokens_len = self.chunker.tokenizer.count(text)
            candidates = self.chunker.chunk(
                text,
                self.settings.max_tokens_per_chunk,
                self.settings.overlap_tokens,
                path=path,
            )
        except ChunkingError:
            raise
        except Exception as exc:
            raise ChunkingError(f"Chunker failed on {path}: {exc!r}") from exc
        return tokens_len, candidates

    async def _delete_stale(self, source: Source, crawled: set[str]) -> int:
        stale = sorted(set(self.catalog.document_checksums(source.id)) - crawled)
        deleted = 0
        for path in stale:
            async with self._locks.hold((source.id, path)):
                deleted += self.catalog.delete_documents(source.id, [path])
        if deleted:
            logger.info("Deleted %s stale documents from source %s", deleted, source.id)
        return deleted

    def _update_index_metric(self) -> None:
        INDEX_SIZE.set(self.catalog.count_chunks())


def embedding_input(candidate: ChunkCandidate) -> str:
    """Text sent to the embedding backend: the chunk prefixed by its context."""
    if candidate.context:
        return f"{candidate.context}\n{candidate.data}"
    return candidate.data


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ChunkingError(f"Document is not valid UTF-8: {exc.reason}") from exc


__all__ = ["IngestPipeline", "embedding_input"]
