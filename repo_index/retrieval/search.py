"""Scoped similarity search over stored chunks."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Sequence

from repo_index.core.errors import ScopeError
from repo_index.core.logging import get_logger, log_context
from repo_index.db.catalog import Catalog
from repo_index.ingest.embeddings import EmbeddingClient, unpack_vector
from repo_index.models.entities import Chunk
from repo_index.retrieval.similarity import cosine, select_top_k

logger = get_logger(__name__)


@dataclass(slots=True)
class ScoredChunk:
    chunk: Chunk
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk.id,
            "document_id": self.chunk.document_id,
            "source_id": self.chunk.source_id,
            "collection_id": self.chunk.collection_id,
            "chunk_index": self.chunk.chunk_index,
            "context": self.chunk.context,
            "data": self.chunk.data,
            "score": self.score,
        }


class Retriever:
    """Exact cosine top-k over the chunks of a collection and/or source."""

    def __init__(self, catalog: Catalog, embedding_client: EmbeddingClient | None = None) -> None:
        self.catalog = catalog
        self.embedding_client = embedding_client

    def search(
        self,
        query_vector: Sequence[float],
        collection_id: str | None = None,
        source_id: str | None = None,
        top_k: int = 10,
    ) -> list[ScoredChunk]:
        """Return the ``top_k`` best chunks in scope, highest score first.

        Equal scores order by ascending ``chunk_index`` and then ``document_id``.
        """
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        self._check_scope(collection_id, source_id)
        start_time = time.perf_counter()
        query = [float(value) for value in query_vector]
        scored = (
            ScoredChunk(chunk=chunk, score=cosine(query, unpack_vector(chunk.vector)))
            for chunk in self.catalog.scoped_chunks(collection_id=collection_id, source_id=source_id)
        )
        results = select_top_k(
            scored,
            top_k,
            key=lambda item: (-item.score, item.chunk.chunk_index, item.chunk.document_id, item.chunk.id),
        )
        logger.debug(
            "Search returned %s results in %.3fs",
            len(results),
            time.perf_counter() - start_time,
            extra=log_context(collection_id=collection_id, source_id=source_id),
        )
        return results

    async def search_text(
        self,
        query: str,
        collection_id: str | None = None,
        source_id: str | None = None,
        top_k: int = 10,
    ) -> list[ScoredChunk]:
        if self.embedding_client is None:
            raise RuntimeError("search_text requires an embedding client")
        # Fail on a bad scope before paying for an embedding call.
        self._check_scope(collection_id, source_id)
        vector = await self.embedding_client.embed_one(query)
        return self.search(vector, collection_id=collection_id, source_id=source_id, top_k=top_k)

    def _check_scope(self, collection_id: str | None, source_id: str | None) -> None:
        if collection_id is None and source_id is None:
            raise ScopeError("A collection_id or source_id is required")
        if collection_id is not None and self.catalog.get_collection(collection_id) is None:
            raise ScopeError(f"Collection {collection_id} does not exist")
        if source_id is not None:
            source = self.catalog.get_source(source_id)
            if source is None:
                raise ScopeError(f"Source {source_id} does not exist")
            if collection_id is not None and source.collection_id != collection_id:
                raise ScopeError(f"Source {source_id} does not belong to collection {collection_id}")


__all__ = ["Retriever", "ScoredChunk"]
