"""CLI entrypoint for Repo Index."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, List, Optional

import orjson
import typer

from repo_index import dependencies as deps
from repo_index.core.errors import RepoIndexError
from repo_index.core.metrics import INDEX_SIZE, render_metrics
from repo_index.ingest.crawler import crawl_directory
from repo_index.models.entities import Collection, Document, Source

app = typer.Typer(name="ridx", help="Repo Index command-line interface")
collections_app = typer.Typer(name="collections", help="Manage collections")
sources_app = typer.Typer(name="sources", help="Manage sources")
documents_app = typer.Typer(name="documents", help="Inspect and remove documents")
app.add_typer(collections_app, name="collections")
app.add_typer(sources_app, name="sources")
app.add_typer(documents_app, name="documents")


def _echo(payload: Any) -> None:
    typer.echo(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode("utf-8"))


def _fail(exc: Exception) -> typer.Exit:
    kind = getattr(exc, "kind", "error")
    typer.echo(f"Error ({kind}): {exc}", err=True)
    return typer.Exit(code=1)


def _collection_dict(collection: Collection) -> dict[str, Any]:
    return {
        "id": collection.id,
        "name": collection.name,
        "created_at": collection.created_at.isoformat(),
        "updated_at": collection.updated_at.isoformat(),
    }


def _source_dict(source: Source) -> dict[str, Any]:
    return {
        "id": source.id,
        "collection_id": source.collection_id,
        "owner": source.owner,
        "repo": source.repo,
        "branch": source.branch,
        "allowed_ext": sorted(source.allowed_ext),
        "allowed_dirs": sorted(source.allowed_dirs),
        "ignored_dirs": sorted(source.ignored_dirs),
        "created_at": source.created_at.isoformat(),
        "updated_at": source.updated_at.isoformat(),
    }


def _document_dict(document: Document, chunks: int) -> dict[str, Any]:
    return {
        "id": document.id,
        "path": document.path,
        "checksum": document.checksum,
        "tokens_len": document.tokens_len,
        "chunks": chunks,
        "updated_at": document.updated_at.isoformat(),
    }


@collections_app.command("add")
def add_collection(name: str = typer.Argument(..., help="Collection name")) -> None:
    """Create a collection."""
    _echo(_collection_dict(deps.get_catalog().create_collection(name)))


@collections_app.command("list")
def list_collections(name: Optional[str] = typer.Option(None, "--name", help="Only collections with this name")) -> None:
    """List collections."""
    _echo([_collection_dict(collection) for collection in deps.get_catalog().list_collections(name)])


@collections_app.command("remove")
def remove_collection(collection_id: str = typer.Argument(..., help="Collection identifier")) -> None:
    """Remove an empty collection."""
    try:
        removed = deps.get_catalog().delete_collection(collection_id)
    except RepoIndexError as exc:
        raise _fail(exc) from exc
    _echo({"status": "ok" if removed else "not_found"})


@sources_app.command("add")
def add_source(
    collection_id: str = typer.Argument(..., help="Owning collection"),
    owner: str = typer.Argument(..., help="Repository owner"),
    repo: str = typer.Argument(..., help="Repository name"),
    branch: str = typer.Option("main", "--branch", help="Branch to index"),
    ext: Optional[List[str]] = typer.Option(None, "--ext", help="Allowed extension, e.g. .md (repeatable)"),
    allow_dir: Optional[List[str]] = typer.Option(None, "--dir", help="Allowed directory prefix (repeatable)"),
    ignore_dir: Optional[List[str]] = typer.Option(None, "--ignore", help="Ignored directory prefix (repeatable)"),
) -> None:
    """Register a repository branch under a collection."""
    try:
        source = deps.get_catalog().create_source(
            collection_id,
            owner,
            repo,
            branch,
            allowed_ext=ext or (),
            allowed_dirs=allow_dir or (),
            ignored_dirs=ignore_dir or (),
        )
    except RepoIndexError as exc:
        raise _fail(exc) from exc
    _echo(_source_dict(source))


@sources_app.command("list")
def list_sources(
    collection_id: Optional[str] = typer.Option(None, "--collection", help="Only sources of this collection"),
) -> None:
    """List registered sources."""
    _echo([_source_dict(source) for source in deps.get_catalog().list_sources(collection_id)])


@sources_app.command("remove")
def remove_source(source_id: str = typer.Argument(..., help="Source identifier")) -> None:
    """Remove a source together with its documents and chunks."""
    removed = deps.get_catalog().delete_source(source_id)
    _echo({"status": "ok" if removed else "not_found"})


@documents_app.command("list")
def list_documents(source_id: str = typer.Argument(..., help="Source identifier")) -> None:
    """List the documents stored for a source."""
    catalog = deps.get_catalog()
    _echo(
        [
            _document_dict(document, catalog.count_chunks(document_id=document.id))
            for document in catalog.list_documents(source_id)
        ]
    )


@documents_app.command("remove")
def remove_document(document_id: str = typer.Argument(..., help="Document identifier")) -> None:
    """Remove a document and its chunks."""
    removed = deps.get_catalog().delete_document(document_id)
    _echo({"status": "ok" if removed else "not_found"})


@app.command()
def ingest(
    source_id: str = typer.Argument(..., help="Source to ingest into"),
    checkout_dir: Path = typer.Argument(..., help="Local checkout of the source's branch"),
    path: Optional[List[str]] = typer.Option(None, "--path", help="Only ingest this repository path (repeatable)"),
) -> None:
    """Ingest a local checkout into a source."""
    pipeline = deps.get_ingest_pipeline()
    try:
        report = asyncio.run(pipeline.ingest(source_id, crawl_directory(checkout_dir), paths=path or None))
    except (RepoIndexError, NotADirectoryError) as exc:
        raise _fail(exc) from exc
    _echo(report.to_dict())
    if report.failed:
        raise typer.Exit(code=2)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    collection_id: Optional[str] = typer.Option(None, "--collection", help="Search within a collection"),
    source_id: Optional[str] = typer.Option(None, "--source", help="Search within a source"),
    k: Optional[int] = typer.Option(None, "--k", help="Number of results to return"),
) -> None:
    """Search stored chunks by similarity to the query text."""
    retriever = deps.get_retriever()
    top_k = k if k is not None else deps.get_app_settings().top_k
    try:
        results = asyncio.run(
            retriever.search_text(query, collection_id=collection_id, source_id=source_id, top_k=top_k)
        )
    except (RepoIndexError, ValueError) as exc:
        raise _fail(exc) from exc
    _echo([result.to_dict() for result in results])


@app.command()
def metrics() -> None:
    """Print Prometheus metrics for this process."""
    INDEX_SIZE.set(deps.get_catalog().count_chunks())
    typer.echo(render_metrics().decode("utf-8"))


if __name__ == "__main__":
    app()
