"""Test fixtures for Repo Index."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Iterator

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from repo_index.core.config import Settings  # noqa: E402
from repo_index.db.catalog import Catalog  # noqa: E402
from repo_index.db.sqlite import SQLiteDatabase  # noqa: E402
from repo_index.ingest.embeddings import EmbeddingClient, HashedEmbeddingBackend  # noqa: E402
from repo_index.ingest.pipeline import IngestPipeline  # noqa: E402
from repo_index.models.entities import Collection, Source  # noqa: E402


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Reset global singletons and environment between tests."""
    for key in list(os.environ):
        if key.startswith("RIDX_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RIDX_DB_PATH", str(tmp_path / "index.db"))
    monkeypatch.setenv("RIDX_CONFIG", str(tmp_path / "missing-config.yaml"))

    from repo_index import dependencies as deps

    deps.reset()
    yield
    deps.reset()


@pytest.fixture
def database(tmp_path: Path) -> Iterator[SQLiteDatabase]:
    db = SQLiteDatabase(tmp_path / "catalog.db")
    db.ensure_schema()
    yield db
    db.close()


@pytest.fixture
def catalog(database: SQLiteDatabase) -> Catalog:
    return Catalog(database)


@pytest.fixture
def collection(catalog: Catalog) -> Collection:
    return catalog.create_collection("docs")


@pytest.fixture
def source(catalog: Catalog, collection: Collection) -> Source:
    return catalog.create_source(collection.id, "acme", "handbook", "main")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "settings.db",
        embedding_dim=16,
        max_tokens_per_chunk=40,
        overlap_tokens=5,
        chunk_workers=2,
        document_concurrency=4,
    )


@pytest.fixture
def embedding_client() -> EmbeddingClient:
    return EmbeddingClient(HashedEmbeddingBackend(dim=16, max_batch_size=4), concurrency=2, backoff_base=0.0)


@pytest.fixture
def pipeline(catalog: Catalog, settings: Settings, embedding_client: EmbeddingClient) -> Iterator[IngestPipeline]:
    ingest_pipeline = IngestPipeline(catalog, settings, embedding_client)
    yield ingest_pipeline
    ingest_pipeline.close()


@pytest.fixture(scope="session")
def sample_markdown() -> str:
    return (
        "# Guide\n\nIntro text.\n\n"
        "## Install\n\nRun the installer.\n\n"
        "## Usage\n\nCall the tool.\n"
    )
