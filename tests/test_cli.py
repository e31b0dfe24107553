"""Tests for the command-line interface."""

from __future__ import annotations

from pathlib import Path

import orjson
from typer.testing import CliRunner

from repo_index.cli.main import app

runner = CliRunner()


def _invoke(*args: str) -> object:
    result = runner.invoke(app, list(args))
    assert result.exit_code == 0, result.output
    return orjson.loads(result.stdout)


def _checkout(root: Path) -> Path:
    (root / "docs").mkdir(parents=True)
    (root / "vendor").mkdir()
    (root / ".git").mkdir()
    (root / "README.md").write_text("# Readme\n\nInstall with pip.\n", encoding="utf-8")
    (root / "docs" / "usage.md").write_text("# Usage\n\nRun the search command.\n", encoding="utf-8")
    (root / "vendor" / "lib.md").write_text("# Vendored\n", encoding="utf-8")
    (root / "notes.txt").write_text("scratch", encoding="utf-8")
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    return root


def test_collection_source_ingest_search(tmp_path: Path) -> None:
    checkout = _checkout(tmp_path / "checkout")
    collection = _invoke("collections", "add", "handbook")
    source = _invoke(
        "sources", "add", collection["id"], "acme", "handbook", "--ext", ".md", "--ignore", "vendor/"
    )
    assert source["ignored_dirs"] == ["vendor"]

    report = _invoke("ingest", source["id"], str(checkout))
    assert (report["changed"], report["failed"]) == (2, 0)

    documents = _invoke("documents", "list", source["id"])
    assert [document["path"] for document in documents] == ["README.md", "docs/usage.md"]

    results = _invoke("search", "install with pip", "--source", source["id"], "--k", "1")
    assert len(results) == 1
    assert results[0]["source_id"] == source["id"]

    again = _invoke("ingest", source["id"], str(checkout))
    assert (again["changed"], again["unchanged"]) == (0, 2)


def test_search_without_scope_fails() -> None:
    result = runner.invoke(app, ["search", "anything"])
    assert result.exit_code == 1


def test_remove_collection_with_sources_fails() -> None:
    collection = _invoke("collections", "add", "handbook")
    source = _invoke("sources", "add", collection["id"], "acme", "handbook")
    assert runner.invoke(app, ["collections", "remove", collection["id"]]).exit_code == 1
    assert _invoke("sources", "remove", source["id"]) == {"status": "ok"}
    assert _invoke("collections", "remove", collection["id"]) == {"status": "ok"}
    assert _invoke("collections", "list") == []


def test_metrics_command() -> None:
    result = runner.invoke(app, ["metrics"])
    assert result.exit_code == 0
    assert "ridx_index_chunks" in result.stdout
