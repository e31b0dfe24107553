"""Tests for structured logging."""

from __future__ import annotations

import logging

import orjson

from repo_index.core.logging import JsonFormatter, log_context


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("repo_index.test", logging.INFO, __file__, 1, "ingested %s", ("a.md",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_log_context_prefixes_and_drops_none() -> None:
    assert log_context(source_id="src_1", run_id=None) == {"ctx_source_id": "src_1"}


def test_json_formatter_nests_context() -> None:
    payload = orjson.loads(JsonFormatter().format(_record(**log_context(source_id="src_1", batch_size=3))))
    assert payload["message"] == "ingested a.md"
    assert payload["level"] == "INFO"
    assert payload["context"] == {"source_id": "src_1", "batch_size": 3}


def test_json_formatter_omits_empty_context() -> None:
    payload = orjson.loads(JsonFormatter().format(_record()))
    assert "context" not in payload
