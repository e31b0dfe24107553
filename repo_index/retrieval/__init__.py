"""Retrieval components."""

from .search import Retriever, ScoredChunk
from .similarity import cosine, select_top_k

__all__ = [
    "Retriever",
    "ScoredChunk",
    "cosine",
    "select_top_k",
]
