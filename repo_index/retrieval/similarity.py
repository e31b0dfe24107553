"""Vector similarity helpers."""

from __future__ import annotations

import heapq
import math
from typing import Callable, Iterable, Sequence, TypeVar

T = TypeVar("T")


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; a zero-norm operand scores 0.0."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimension mismatch: {len(a)} != {len(b)}")
    norm_a = math.sqrt(_dot(a, a))
    norm_b = math.sqrt(_dot(b, b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return _dot(a, b) / (norm_a * norm_b)


def select_top_k(items: Iterable[T], k: int, key: Callable[[T], tuple]) -> list[T]:
    """Exact top-k: the ``k`` smallest items by ``key``, in ascending key order."""
    if k < 1:
        raise ValueError("k must be at least 1")
    return heapq.nsmallest(k, items, key=key)


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return math.fsum(x * y for x, y in zip(a, b))


__all__ = ["cosine", "select_top_k"]
