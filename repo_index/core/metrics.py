"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry()

INGEST_DURATION = Histogram(
    "ridx_ingest_duration_seconds",
    "Ingest run duration",
    labelnames=("source",),
    registry=REGISTRY,
)

DOCUMENTS_TOTAL = Counter(
    "ridx_documents_total",
    "Documents seen by the ingest pipeline, by outcome",
    labelnames=("status",),
    registry=REGISTRY,
)

EMBEDDING_BATCHES = Counter(
    "ridx_embedding_batches_total",
    "Embedding backend batch calls, by outcome",
    labelnames=("status",),
    registry=REGISTRY,
)

EMBEDDING_LATENCY = Histogram(
    "ridx_embedding_latency_seconds",
    "Latency of a single embedding backend call",
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "ridx_index_chunks",
    "Number of chunks stored in the catalog",
    registry=REGISTRY,
)


def render_metrics() -> bytes:
    """Return the registry in Prometheus text exposition format."""
    return generate_latest(REGISTRY)


__all__ = [
    "REGISTRY",
    "INGEST_DURATION",
    "DOCUMENTS_TOTAL",
    "EMBEDDING_BATCHES",
    "EMBEDDING_LATENCY",
    "INDEX_SIZE",
    "render_metrics",
]
