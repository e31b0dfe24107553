"""Chunking utilities."""

from __future__ import annotations

import re
from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from typing import Any, Sequence

import yaml
from markdown_it import MarkdownIt

from repo_index.core.errors import ChunkingError
from repo_index.ingest.tokenizer import Tokenizer

MARKDOWN_SUFFIXES = (".md", ".markdown", ".mdx")
# Headings at or above this depth open a new chunk.
SECTION_DEPTH = 3
CONTEXT_SEPARATOR = " > "

# Same line breaks markdown-it normalizes before parsing.
_NEWLINE_RE = re.compile(r"\r\n?|\n")
_PARAGRAPH_RE = re.compile(r"(?:\r\n?|\n)[ \t]*(?:\r\n?|\n)")
_FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


@dataclass(frozen=True, slots=True)
class ChunkCandidate:
    """A chunk produced by the chunker prior to embedding."""

    context: str
    data: str
    token_count: int
    start_char: int
    end_char: int


@dataclass(slots=True)
class Boundary:
    offset: int
    trail: tuple[str, ...]
    section_break: bool


@dataclass(slots=True)
class Unit:
    start: int
    end: int
    trail: tuple[str, ...]
    section_break: bool


class Chunker:
    """Split document text into token-bounded chunks along structural boundaries."""

    def __init__(self, tokenizer: Tokenizer | None = None) -> None:
        self.tokenizer = tokenizer or Tokenizer()
        self._md = MarkdownIt().enable("table")

    def chunk(
        self,
        text: str,
        max_tokens_per_chunk: int,
        overlap_tokens: int,
        path: str = "",
    ) -> list[ChunkCandidate]:
        if max_tokens_per_chunk < 1:
            raise ChunkingError("max_tokens_per_chunk must be positive")
        if overlap_tokens < 0:
            raise ChunkingError("overlap_tokens must not be negative")
        if max_tokens_per_chunk <= overlap_tokens:
            raise ChunkingError(
                f"max_tokens_per_chunk ({max_tokens_per_chunk}) must exceed overlap_tokens ({overlap_tokens})"
            )

        spans = self.tokenizer.spans(text)
        if not spans or not text.strip():
            return []

        if path.lower().endswith(MARKDOWN_SUFFIXES):
            boundaries = self._markdown_boundaries(text)
        else:
            boundaries = _paragraph_boundaries(text)

        units = _units_from_boundaries(text, spans, boundaries)
        units = _shrink_units(text, spans, units, max_tokens_per_chunk, overlap_tokens)
        return _pack(text, spans, units, max_tokens_per_chunk, overlap_tokens, path)

    def _markdown_boundaries(self, text: str) -> list[Boundary]:
        front_matter, body_offset = _split_front_matter(text)
        root: tuple[str, ...] = ()
        doc_title = front_matter.get("title") if front_matter else None
        if isinstance(doc_title, str) and doc_title.strip():
            root = (doc_title.strip(),)

        body = text[body_offset:]
        line_starts = _line_starts(body)
        boundaries = [Boundary(offset=body_offset, trail=root, section_break=False)]
        headings: list[tuple[int, str]] = []
        tokens = self._md.parse(body)
        for index, token in enumerate(tokens):
            if token.level != 0 or token.map is None or token.nesting == -1:
                continue
            offset = body_offset + line_starts[token.map[0]]
            section_break = False
            if token.type == "heading_open":
                depth = int(token.tag[1:])
                heading = tokens[index + 1].content.strip() if index + 1 < len(tokens) else ""
                while headings and headings[-1][0] >= depth:
                    headings.pop()
                if heading:
                    headings.append((depth, heading))
                section_break = depth <= SECTION_DEPTH
            trail = root + tuple(name for _, name in headings)
            boundaries.append(Boundary(offset=offset, trail=trail, section_break=section_break))
        return boundaries


def chunk(
    text: str,
    max_tokens_per_chunk: int,
    overlap_tokens: int,
    path: str = "",
) -> list[ChunkCandidate]:
    """Chunk ``text`` with a default :class:`Chunker`."""
    return Chunker().chunk(text, max_tokens_per_chunk, overlap_tokens, path=path)


def _split_front_matter(text: str) -> tuple[dict[str, Any] | None, int]:
    match = _FRONT_MATTER_RE.match(text)
    if match is None:
        return None, 0
    try:
        front_matter = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        return None, 0
    if not isinstance(front_matter, dict):
        return None, 0
    return front_matter, match.end()


def _line_starts(text: str) -> list[int]:
    starts = [0]
    for match in _NEWLINE_RE.finditer(text):
        starts.append(match.end())
    return starts


def _paragraph_boundaries(text: str) -> list[Boundary]:
    boundaries = [Boundary(offset=0, trail=(), section_break=False)]
    for match in _PARAGRAPH_RE.finditer(text):
        boundaries.append(Boundary(offset=match.end(), trail=(), section_break=False))
    return boundaries


def _units_from_boundaries(
    text: str,
    spans: Sequence[tuple[int, int]],
    boundaries: Sequence[Boundary],
) -> list[Unit]:
    """Map character boundaries onto contiguous token ranges covering every token."""
    starts = [start for start, _ in spans]
    ordered = sorted(boundaries, key=lambda boundary: boundary.offset)
    units: list[Unit] = []
    for position, boundary in enumerate(ordered):
        next_offset = ordered[position + 1].offset if position + 1 < len(ordered) else len(text)
        first = bisect_left(starts, boundary.offset)
        last = bisect_left(starts, next_offset)
        if first >= last:
            if boundary.section_break and position + 1 < len(ordered):
                # Keep the break for the next block, e.g. an empty heading.
                ordered[position + 1].section_break = True
            continue
        units.append(Unit(start=first, end=last, trail=boundary.trail, section_break=boundary.section_break))
    return units


def _shrink_units(
    text: str,
    spans: Sequence[tuple[int, int]],
    units: Sequence[Unit],
    max_tokens: int,
    overlap_tokens: int,
) -> list[Unit]:
    """Split oversize units at line boundaries, then hard-cut long lines."""
    starts = [start for start, _ in spans]
    shrunk: list[Unit] = []
    for unit in units:
        if unit.end - unit.start <= max_tokens:
            shrunk.append(unit)
            continue
        pieces: list[tuple[int, int]] = []
        begin_char = spans[unit.start][0]
        end_char = spans[unit.end - 1][1]
        segment = text[begin_char:end_char]
        line_offsets = [begin_char] + [begin_char + m.end() for m in _NEWLINE_RE.finditer(segment)]
        for position, line_offset in enumerate(line_offsets):
            first = bisect_left(starts, line_offset, lo=unit.start, hi=unit.end)
            if position + 1 < len(line_offsets):
                last = bisect_left(starts, line_offsets[position + 1], lo=unit.start, hi=unit.end)
            else:
                last = unit.end
            if first >= last:
                continue
            if last - first <= max_tokens:
                pieces.append((first, last))
                continue
            # Hard cut leaves room for the overlap carried into each piece.
            step = max_tokens - overlap_tokens
            for cut in range(first, last, step):
                pieces.append((cut, min(cut + step, last)))
        for position, (first, last) in enumerate(pieces):
            shrunk.append(
                Unit(
                    start=first,
                    end=last,
                    trail=unit.trail,
                    section_break=unit.section_break and position == 0,
                )
            )
    return shrunk


def _pack(
    text: str,
    spans: Sequence[tuple[int, int]],
    units: Sequence[Unit],
    max_tokens: int,
    overlap_tokens: int,
    path: str,
) -> list[ChunkCandidate]:
    unit_starts = [unit.start for unit in units]
    chunks: list[ChunkCandidate] = []
    current_start: int | None = None
    current_end = 0

    def emit(first: int, last: int) -> None:
        owner = units[bisect_right(unit_starts, first) - 1]
        start_char, end_char = _trim(text, spans[first][0], spans[last - 1][1])
        if start_char >= end_char:
            return
        chunks.append(
            ChunkCandidate(
                context=_context(path, owner.trail),
                data=text[start_char:end_char],
                token_count=last - first,
                start_char=start_char,
                end_char=end_char,
            )
        )

    for unit in units:
        size = unit.end - unit.start
        if current_start is None:
            current_start = unit.start
        elif unit.section_break:
            emit(current_start, current_end)
            current_start = unit.start
        elif unit.end - current_start > max_tokens:
            emit(current_start, current_end)
            overlap = min(overlap_tokens, max_tokens - size, current_end - current_start)
            current_start = current_end - overlap
        current_end = unit.end

    if current_start is not None:
        emit(current_start, current_end)
    return chunks


def _trim(text: str, start: int, end: int) -> tuple[int, int]:
    # BPE tokens carry their surrounding whitespace; chunks do not.
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def _context(path: str, trail: Sequence[str]) -> str:
    parts = [path] if path else []
    parts.extend(trail)
    return CONTEXT_SEPARATOR.join(parts)


__all__ = ["Chunker", "ChunkCandidate", "chunk", "MARKDOWN_SUFFIXES"]
