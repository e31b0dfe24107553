"""BPE tokenization shared by chunk sizing and document stats."""

from __future__ import annotations

import tiktoken

from repo_index.core.errors import ChunkingError

DEFAULT_ENCODING = "cl100k_base"


class Tokenizer:
    """Token counts and character spans in the embedding model's BPE encoding.

    Spans are contiguous and cover the whole text. A character split across
    two tokens belongs to the later one, so some spans can be empty.
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING) -> None:
        self.name = encoding_name
        try:
            self._encoding = tiktoken.get_encoding(encoding_name)
        except ValueError as exc:
            raise ChunkingError(f"Unknown token encoding {encoding_name!r}") from exc

    def validate(self, text: str) -> None:
        if "\x00" in text:
            raise ChunkingError("Text contains NUL characters; binary content cannot be tokenized")
        try:
            text.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ChunkingError(f"Text is not valid UTF-8: {exc.reason}") from exc

    def encode(self, text: str) -> list[int]:
        self.validate(text)
        # Special-token markers in documents are ordinary text.
        return self._encoding.encode_ordinary(text)

    def spans(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` character offsets of every token."""
        tokens = self.encode(text)
        if not tokens:
            return []
        _, offsets = self._encoding.decode_with_offsets(tokens)
        ends = offsets[1:] + [len(text)]
        return list(zip(offsets, ends))

    def count(self, text: str) -> int:
        return len(self.encode(text))


__all__ = ["DEFAULT_ENCODING", "Tokenizer"]
