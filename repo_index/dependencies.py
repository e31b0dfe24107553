"""Lazily built singletons shared by the CLI and library callers."""

from __future__ import annotations

from repo_index.core.config import Settings, get_settings
from repo_index.db.catalog import Catalog
from repo_index.db.sqlite import SQLiteDatabase
from repo_index.ingest.embeddings import (
    EmbeddingBackend,
    EmbeddingClient,
    HashedEmbeddingBackend,
    OpenAIEmbeddingBackend,
)
from repo_index.ingest.pipeline import IngestPipeline
from repo_index.retrieval import Retriever

_DB: SQLiteDatabase | None = None
_CATALOG: Catalog | None = None
_EMBEDDING_CLIENT: EmbeddingClient | None = None
_PIPELINE: IngestPipeline | None = None
_RETRIEVER: Retriever | None = None


def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_catalog() -> Catalog:
    global _CATALOG
    if _CATALOG is None:
        _CATALOG = Catalog(get_database())
    return _CATALOG


def build_embedding_backend(settings: Settings) -> EmbeddingBackend:
    if settings.embedding_backend == "openai":
        return OpenAIEmbeddingBackend(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            base_url=settings.openai_base_url,
            max_batch_size=settings.embedding_batch_size,
            timeout=settings.embedding_timeout,
        )
    return HashedEmbeddingBackend(dim=settings.embedding_dim, max_batch_size=settings.embedding_batch_size)


def get_embedding_client() -> EmbeddingClient:
    global _EMBEDDING_CLIENT
    if _EMBEDDING_CLIENT is None:
        settings = get_app_settings()
        _EMBEDDING_CLIENT = EmbeddingClient(
            build_embedding_backend(settings),
            concurrency=settings.embedding_concurrency,
            max_retries=settings.embedding_max_retries,
            backoff_base=settings.embedding_backoff_base,
            backoff_max=settings.embedding_backoff_max,
            timeout=settings.embedding_timeout,
        )
    return _EMBEDDING_CLIENT


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(
            catalog=get_catalog(),
            settings=get_app_settings(),
            embedding_client=get_embedding_client(),
        )
    return _PIPELINE


def get_retriever() -> Retriever:
    global _RETRIEVER
    if _RETRIEVER is None:
        _RETRIEVER = Retriever(get_catalog(), embedding_client=get_embedding_client())
    return _RETRIEVER


def reset() -> None:
    """Drop every singleton, closing the ones that hold resources."""
    global _DB, _CATALOG, _EMBEDDING_CLIENT, _PIPELINE, _RETRIEVER
    if _PIPELINE is not None:
        _PIPELINE.close()
    if _DB is not None:
        _DB.close()
    get_settings.cache_clear()
    _DB = None
    _CATALOG = None
    _EMBEDDING_CLIENT = None
    _PIPELINE = None
    _RETRIEVER = None


__all__ = [
    "build_embedding_backend",
    "get_app_settings",
    "get_catalog",
    "get_database",
    "get_embedding_client",
    "get_ingest_pipeline",
    "get_retriever",
    "reset",
]
