"""Embedding backends and the batching, retrying embedding client."""

from __future__ import annotations

import asyncio
import hashlib
import math
import re
import sys
import time
from array import array
from typing import Any, Protocol, Sequence

import httpx

from repo_index.core.errors import EmbeddingError
from repo_index.core.logging import get_logger, log_context
from repo_index.core.metrics import EMBEDDING_BATCHES, EMBEDDING_LATENCY

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")
_TRANSIENT_STATUS = {408, 409, 425, 429}


class EmbeddingBackend(Protocol):
    """Capability interface: turn a batch of texts into fixed-length vectors."""

    name: str
    max_batch_size: int

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class HashedEmbeddingBackend:
    """Lightweight hashed bag-of-words model with deterministic output."""

    name = "hashed"

    def __init__(self, dim: int = 384, max_batch_size: int = 32) -> None:
        self.dim = dim
        self.max_batch_size = max_batch_size

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.encode_one(text) for text in texts]

    def encode_one(self, text: str) -> list[float]:
        vector = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            vector[_hash_token(token, self.dim)] += 1.0
        _normalize(vector)
        return vector


class OpenAIEmbeddingBackend:
    """OpenAI-compatible ``/embeddings`` endpoint over httpx."""

    name = "openai"

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        max_batch_size: int = 128,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_batch_size = max_batch_size
        self.timeout = timeout
        self._client = client

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not self.api_key:
            raise EmbeddingError("Embedding API key is not configured", transient=False)
        payload = {"model": self.model, "input": list(texts)}
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self.base_url}/embeddings", json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(f"{self.base_url}/embeddings", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise EmbeddingError(f"Embedding request timed out: {exc}", transient=True) from exc
        except httpx.TransportError as exc:
            raise EmbeddingError(f"Embedding transport failure: {exc}", transient=True) from exc

        if response.status_code >= 500 or response.status_code in _TRANSIENT_STATUS:
            raise EmbeddingError(f"Embedding API error {response.status_code}: {response.text}", transient=True)
        if response.status_code >= 400:
            raise EmbeddingError(f"Embedding API rejected request {response.status_code}: {response.text}")
        return _parse_openai_payload(response.json(), len(texts))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class EmbeddingClient:
    """Embed texts in concurrent batches with bounded retries.

    The semaphore is shared by every caller, so the number of backend calls in
    flight never exceeds ``concurrency``; extra batches wait for a slot.
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        concurrency: int = 4,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        timeout: float | None = 30.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.backend = backend
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.timeout = timeout
        self.dim: int | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""
        if not texts:
            return []
        size = max(1, self.backend.max_batch_size)
        batches = [list(texts[offset : offset + size]) for offset in range(0, len(texts), size)]
        tasks = [asyncio.ensure_future(self._embed_batch(batch)) for batch in batches]
        try:
            results = await asyncio.gather(*tasks)
        except Exception:
            # Release the concurrency slots held by sibling batches.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        vectors: list[list[float]] = []
        for batch_vectors in results:
            vectors.extend(batch_vectors)
        return vectors

    async def embed_one(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        attempt = 0
        while True:
            try:
                async with self._slots():
                    vectors = await self._call_backend(batch)
            except EmbeddingError as exc:
                EMBEDDING_BATCHES.labels(status=exc.kind).inc()
                if not exc.transient or attempt >= self.max_retries:
                    raise
                delay = min(self.backoff_max, self.backoff_base * (2**attempt))
                attempt += 1
                logger.warning(
                    "Transient embedding failure, retry %s/%s in %.2fs: %s",
                    attempt,
                    self.max_retries,
                    delay,
                    exc,
                    extra=log_context(backend=self.backend.name, batch_size=len(batch)),
                )
                await asyncio.sleep(delay)
                continue
            EMBEDDING_BATCHES.labels(status="ok").inc()
            return self._check_vectors(batch, vectors)

    def _slots(self) -> asyncio.Semaphore:
        # asyncio primitives bind to one loop; rebuild when a new loop drives us.
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._loop = loop
        return self._semaphore

    async def _call_backend(self, batch: list[str]) -> list[list[float]]:
        started = time.perf_counter()
        try:
            if self.timeout is None:
                return await self.backend.embed(batch)
            return await asyncio.wait_for(self.backend.embed(batch), timeout=self.timeout)
        except EmbeddingError:
            raise
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise EmbeddingError(f"Embedding backend timed out after {self.timeout}s", transient=True) from exc
        except Exception as exc:
            raise EmbeddingError(f"Embedding backend failed: {exc!r}") from exc
        finally:
            EMBEDDING_LATENCY.observe(time.perf_counter() - started)

    def _check_vectors(self, batch: Sequence[str], vectors: Sequence[Sequence[float]]) -> list[list[float]]:
        if len(vectors) != len(batch):
            raise EmbeddingError(f"Backend returned {len(vectors)} vectors for {len(batch)} inputs")
        checked: list[list[float]] = []
        for vector in vectors:
            if not vector:
                raise EmbeddingError("Backend returned an empty vector")
            if self.dim is None:
                self.dim = len(vector)
            if len(vector) != self.dim:
                raise EmbeddingError(f"Backend returned a {len(vector)}-d vector, expected {self.dim}")
            try:
                checked.append([float(value) for value in vector])
            except (TypeError, ValueError) as exc:
                raise EmbeddingError(f"Backend returned a non-numeric vector: {exc}") from exc
        return checked


def pack_vector(vector: Sequence[float]) -> bytes:
    """Serialize a vector as packed little-endian float32."""
    arr = array("f", vector)
    if sys.byteorder == "big":
        arr.byteswap()
    return arr.tobytes()


def unpack_vector(blob: bytes) -> list[float]:
    if len(blob) % 4:
        raise ValueError(f"Vector blob length {len(blob)} is not a multiple of 4")
    arr = array("f")
    arr.frombytes(blob)
    if sys.byteorder == "big":
        arr.byteswap()
    return list(arr)


def _parse_openai_payload(payload: Any, expected: int) -> list[list[float]]:
    try:
        items = sorted(payload["data"], key=lambda item: item["index"])
        vectors = [list(item["embedding"]) for item in items]
    except (KeyError, TypeError) as exc:
        raise EmbeddingError(f"Malformed embedding response: {exc}") from exc
    if len(vectors) != expected:
        raise EmbeddingError(f"Embedding response has {len(vectors)} vectors for {expected} inputs")
    return vectors


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingBackend",
    "EmbeddingClient",
    "HashedEmbeddingBackend",
    "OpenAIEmbeddingBackend",
    "pack_vector",
    "unpack_vector",
]
