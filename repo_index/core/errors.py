"""Error taxonomy shared by ingestion and retrieval."""

from __future__ import annotations


class RepoIndexError(Exception):
    """Base class for every classified pipeline failure."""

    kind = "error"


class ChunkingError(RepoIndexError):
    """Raised when a document body or chunking parameters are unusable."""

    kind = "chunking"


class EmbeddingError(RepoIndexError):
    """Raised by the embedding client; ``transient`` failures may be retried."""

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient

    @property
    def kind(self) -> str:  # type: ignore[override]
        return "embedding_transient" if self.transient else "embedding_permanent"


class StorageError(RepoIndexError):
    """A catalog transaction failed and was rolled back."""

    kind = "storage"


class ScopeError(RepoIndexError):
    """A collection or source referenced by the caller does not exist."""

    kind = "scope"


class FilterConfigError(RepoIndexError):
    """A source's allowed/ignored path rules cannot be evaluated."""

    kind = "filter_config"


__all__ = [
    "RepoIndexError",
    "ChunkingError",
    "EmbeddingError",
    "StorageError",
    "ScopeError",
    "FilterConfigError",
]
