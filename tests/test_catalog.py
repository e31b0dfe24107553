"""Tests for the catalog store."""

from __future__ import annotations

import pytest

from repo_index.core.errors import FilterConfigError, ScopeError, StorageError
from repo_index.db.catalog import Catalog, NewChunk
from repo_index.ingest.embeddings import pack_vector
from repo_index.models.entities import Collection, Source


def _chunks(*texts: str) -> list[NewChunk]:
    return [NewChunk(context="ctx", data=text, vector=pack_vector([1.0, 0.0])) for text in texts]


def test_collections_roundtrip(catalog: Catalog) -> None:
    docs = catalog.create_collection("docs")
    catalog.create_collection("code")
    assert catalog.get_collection(docs.id) == docs
    assert sorted(item.name for item in catalog.list_collections()) == ["code", "docs"]
    assert [item.id for item in catalog.list_collections(name="docs")] == [docs.id]
    assert catalog.get_collection("col_missing") is None


def test_create_source_validates_scope_and_rules(catalog: Catalog, collection: Collection) -> None:
    with pytest.raises(ScopeError):
        catalog.create_source("col_missing", "acme", "handbook", "main")
    with pytest.raises(FilterConfigError):
        catalog.create_source(collection.id, "acme", "handbook", "main", ignored_dirs=["../up"])

    source = catalog.create_source(
        collection.id, "acme", "handbook", "main", allowed_ext=[".md"], ignored_dirs=["vendor/"]
    )
    assert source.allowed_ext == frozenset({".md"})
    assert source.ignored_dirs == frozenset({"vendor"})
    assert source.allowed_dirs == frozenset()
    assert catalog.list_sources(collection.id) == [source]


def test_update_source_rules(catalog: Catalog, source: Source) -> None:
    updated = catalog.update_source_rules(source.id, allowed_ext=[".md", ".rst"])
    assert updated.allowed_ext == frozenset({".md", ".rst"})
    assert updated.ignored_dirs == source.ignored_dirs
    assert catalog.get_source(source.id) == updated
    with pytest.raises(ScopeError):
        catalog.update_source_rules("src_missing", allowed_ext=[".md"])


def test_commit_document_assigns_contiguous_indexes(catalog: Catalog, source: Source) -> None:
    result = catalog.commit_document(source, "README.md", 42, 7, "body", _chunks("a", "b", "c"))
    assert result.created
    chunks = catalog.list_chunks(result.document_id)
    assert [chunk.chunk_index for chunk in chunks] == [0, 1, 2]
    assert [chunk.id for chunk in chunks] == result.chunk_ids
    assert all(chunk.source_id == source.id for chunk in chunks)
    assert all(chunk.collection_id == source.collection_id for chunk in chunks)

    document = catalog.get_document(source.id, "README.md")
    assert document is not None
    assert document.collection_id == source.collection_id
    assert (document.checksum, document.tokens_len, document.data) == (42, 7, "body")
    assert catalog.document_state(source.id, "README.md") == (result.document_id, 42)


def test_recommit_replaces_chunks(catalog: Catalog, source: Source) -> None:
    first = catalog.commit_document(source, "README.md", 1, 3, "old", _chunks("a", "b", "c"))
    second = catalog.commit_document(source, "README.md", 2, 2, "new", _chunks("x", "y"))
    assert not second.created
    assert second.document_id == first.document_id
    chunks = catalog.list_chunks(first.document_id)
    assert [chunk.chunk_index for chunk in chunks] == [0, 1]
    assert [chunk.data for chunk in chunks] == ["x", "y"]
    assert not set(first.chunk_ids) & {chunk.id for chunk in chunks}


def test_failed_commit_keeps_previous_state(catalog: Catalog, source: Source) -> None:
    first = catalog.commit_document(source, "README.md", 1, 3, "old", _chunks("a", "b"))
    broken = [*_chunks("x"), NewChunk(context="ctx", data="y", vector=None)]  # type: ignore[arg-type]
    with pytest.raises(StorageError):
        catalog.commit_document(source, "README.md", 2, 2, "new", broken)
    assert catalog.document_state(source.id, "README.md") == (first.document_id, 1)
    assert [chunk.id for chunk in catalog.list_chunks(first.document_id)] == first.chunk_ids


def test_delete_collection_requires_no_sources(catalog: Catalog, collection: Collection, source: Source) -> None:
    with pytest.raises(StorageError):
        catalog.delete_collection(collection.id)
    assert catalog.delete_source(source.id)
    assert catalog.delete_collection(collection.id)
    assert catalog.get_collection(collection.id) is None


def test_delete_source_cascades(catalog: Catalog, source: Source) -> None:
    result = catalog.commit_document(source, "README.md", 1, 3, "body", _chunks("a", "b"))
    run_id = catalog.start_run(source.id)
    catalog.finish_run(run_id, "completed", {"changed": 1})
    assert catalog.delete_source(source.id)
    assert catalog.get_document_by_id(result.document_id) is None
    assert catalog.count_chunks(document_id=result.document_id) == 0
    assert catalog.count_chunks() == 0
    assert catalog.list_runs(source.id) == []


def test_delete_documents_by_path(catalog: Catalog, source: Source) -> None:
    catalog.commit_document(source, "a.md", 1, 1, "a", _chunks("a"))
    catalog.commit_document(source, "b.md", 2, 1, "b", _chunks("b"))
    assert catalog.delete_documents(source.id, ["a.md", "missing.md"]) == 1
    assert catalog.delete_documents(source.id, []) == 0
    assert list(catalog.document_checksums(source.id)) == ["b.md"]


def test_scoped_chunks_require_scope(catalog: Catalog, source: Source) -> None:
    catalog.commit_document(source, "a.md", 1, 1, "a", _chunks("a", "b"))
    with pytest.raises(ScopeError):
        list(catalog.scoped_chunks())
    assert len(list(catalog.scoped_chunks(source_id=source.id))) == 2
    assert len(list(catalog.scoped_chunks(collection_id=source.collection_id))) == 2
    assert catalog.count_chunks(collection_id=source.collection_id, source_id=source.id) == 2


def test_run_ledger(catalog: Catalog, source: Source) -> None:
    run_id = catalog.start_run(source.id)
    [running] = catalog.list_runs(source.id)
    assert (running.id, running.status, running.finished_at) == (run_id, "running", None)
    catalog.finish_run(run_id, "completed", {"changed": 2, "failed": 0})
    [finished] = catalog.list_runs(source.id)
    assert finished.status == "completed"
    assert finished.stats == {"changed": 2, "failed": 0}
    assert finished.finished_at is not None
