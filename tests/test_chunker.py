"""Tests for chunker."""

import pytest

from repo_index.core.errors import ChunkingError
from repo_index.ingest.chunker import Chunker, chunk
from repo_index.ingest.tokenizer import Tokenizer


def _words(count: int) -> str:
    return " ".join(f"w{idx}" for idx in range(count))


def test_chunking_is_deterministic() -> None:
    text = ("Title\n\nPara1.\n\nPara2 is longer..." * 40).strip()
    assert chunk(text, 500, 50) == chunk(text, 500, 50)
    assert chunk(text, 30, 5, path="notes.txt") == chunk(text, 30, 5, path="notes.txt")


def test_chunks_respect_token_limit_and_cover_text() -> None:
    tokenizer = Tokenizer()
    text = "\n\n".join(_words(n) for n in (3, 17, 55, 8, 120, 2))
    chunks = chunk(text, 25, 4, path="notes.txt")
    assert chunks
    spans = tokenizer.spans(text)
    assert chunks[0].start_char == spans[0][0]
    assert chunks[-1].end_char == spans[-1][1]
    for item in chunks:
        assert 0 < item.token_count <= 25
        assert tokenizer.count(item.data) <= item.token_count
        assert item.data == text[item.start_char : item.end_char]
    for previous, following in zip(chunks, chunks[1:]):
        if following.start_char > previous.end_char:
            assert text[previous.end_char : following.start_char].strip() == ""


def test_hard_cut_pieces_carry_overlap() -> None:
    text = _words(100)
    chunks = chunk(text, 20, 5, path="notes.txt")
    assert len(chunks) > 1
    for previous, following in zip(chunks, chunks[1:]):
        assert following.start_char < previous.end_char
        assert previous.data.endswith(text[following.start_char : previous.end_char])
    assert all(item.token_count <= 20 for item in chunks)


@pytest.mark.parametrize("text", ["\u6570\u636e\u5904\u7406" * 500, "x" * 4000, "QUJD" * 1000])
def test_unbroken_runs_are_hard_cut(text: str) -> None:
    chunks = chunk(text, 100, 10)
    assert len(chunks) > 1
    assert all(0 < item.token_count <= 100 for item in chunks)
    assert chunks[0].start_char == 0
    assert chunks[-1].end_char == len(text)
    for previous, following in zip(chunks, chunks[1:]):
        assert following.start_char <= previous.end_char


def test_token_counts_follow_bpe_encoding() -> None:
    tokenizer = Tokenizer()
    assert tokenizer.name == "cl100k_base"
    assert tokenizer.count("hello world") == 2
    spans = tokenizer.spans("hello world")
    assert spans == [(0, 5), (5, 11)]
    assert tokenizer.count("<|endoftext|>") > 1


def test_carriage_return_markdown_splits_on_headings() -> None:
    chunks = chunk("# A\r\rone\r\r# B\r\rtwo\r", 500, 50, path="a.md")
    assert [item.data for item in chunks] == ["# A\r\rone", "# B\r\rtwo"]
    assert [item.context for item in chunks] == ["a.md > A", "a.md > B"]


def test_mixed_line_endings_keep_heading_offsets() -> None:
    text = "# Top\r\n\r\nalpha\rstray\n\n## Next\n\nbeta\n"
    chunks = chunk(text, 500, 50, path="a.md")
    assert [item.data for item in chunks] == ["# Top\r\n\r\nalpha\rstray", "## Next\n\nbeta"]
    assert chunks[1].context == "a.md > Top > Next"


def test_markdown_sections_and_context(sample_markdown: str) -> None:
    chunks = chunk(sample_markdown, 500, 50, path="docs/guide.md")
    assert [item.data for item in chunks] == [
        "# Guide\n\nIntro text.",
        "## Install\n\nRun the installer.",
        "## Usage\n\nCall the tool.",
    ]
    assert [item.context for item in chunks] == [
        "docs/guide.md > Guide",
        "docs/guide.md > Guide > Install",
        "docs/guide.md > Guide > Usage",
    ]


def test_deep_headings_stay_in_their_section() -> None:
    text = "# Top\n\nalpha\n\n#### Detail\n\nbeta\n"
    chunks = chunk(text, 500, 50, path="a.md")
    assert len(chunks) == 1
    assert chunks[0].context == "a.md > Top"


def test_front_matter_title_prefixes_context() -> None:
    text = "---\ntitle: Handbook\n---\n# Intro\n\nHello world.\n"
    chunks = chunk(text, 500, 50, path="a.md")
    assert len(chunks) == 1
    assert chunks[0].context == "a.md > Handbook > Intro"
    assert "title:" not in chunks[0].data


def test_plain_text_context_is_path() -> None:
    chunks = chunk("first paragraph\n\nsecond paragraph", 500, 50, path="notes.txt")
    assert [item.context for item in chunks] == ["notes.txt"]


def test_empty_text_yields_no_chunks() -> None:
    assert chunk("", 10, 2) == []
    assert chunk("  \n\n\t ", 10, 2) == []


@pytest.mark.parametrize("max_tokens,overlap", [(10, 10), (0, 0), (5, -1), (4, 9)])
def test_invalid_parameters_raise(max_tokens: int, overlap: int) -> None:
    with pytest.raises(ChunkingError):
        Chunker().chunk("some text", max_tokens, overlap)


def test_binary_text_raises() -> None:
    with pytest.raises(ChunkingError):
        chunk("abc\x00def", 10, 2)
