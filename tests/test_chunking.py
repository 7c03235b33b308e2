"""
Test suite for ParagraphChunker.

Covers chunk boundaries, paragraph-granular overlap, token estimates,
determinism and empty input handling.
"""

import math

import pytest

from knowledge_rag.chunking import ParagraphChunker
from knowledge_rag.exceptions import EmptyInputError


def make_paragraphs(count: int, words: int = 15) -> list:
    return [
        f"Paragraph {i} " + " ".join(f"word{i}x{j}" for j in range(words))
        for i in range(count)
    ]


@pytest.fixture
def chunker() -> ParagraphChunker:
    """Provide chunker with small limits."""
    return ParagraphChunker(chunk_size=500, chunk_overlap=50)


class TestParagraphChunkerInit:
    """Test suite for constructor validation."""

    def test_overlap_must_be_smaller_than_size(self) -> None:
        """Test overlap equal to chunk size is rejected."""
        with pytest.raises(ValueError):
            ParagraphChunker(chunk_size=100, chunk_overlap=100)

    def test_size_must_be_positive(self) -> None:
        """Test non-positive chunk size is rejected."""
        with pytest.raises(ValueError):
            ParagraphChunker(chunk_size=0, chunk_overlap=0)

    def test_defaults_come_from_config(self) -> None:
        """Test config defaults of 1000 / 200 characters."""
        chunker = ParagraphChunker()

        assert chunker.chunk_size == 1000
        assert chunker.chunk_overlap == 200


class TestParagraphChunking:
    """Test suite for ParagraphChunker.chunk."""

    def test_thousand_chars_yields_overlapping_chunks(self, chunker: ParagraphChunker) -> None:
        """Test ~1000 chars at size 500 / overlap 50 gives >=2 chunks sharing 50 chars."""
        text = "\n\n".join(make_paragraphs(8))
        assert len(text) >= 1000

        chunks = chunker.chunk(text, document_id="doc-1", knowledge_base_id="kb-1")

        assert len(chunks) >= 2
        tail = chunks[0].content[-50:].lstrip()
        assert chunks[1].content.startswith(tail)

    def test_ids_and_positions(self, chunker: ParagraphChunker) -> None:
        """Test chunk ids follow {document_id}_chunk_{position}."""
        text = "\n\n".join(make_paragraphs(8))

        chunks = chunker.chunk(text, document_id="doc-9", knowledge_base_id="kb-1")

        for position, chunk in enumerate(chunks):
            assert chunk.position == position
            assert chunk.id == f"doc-9_chunk_{position}"
            assert chunk.knowledge_base_id == "kb-1"

    def test_token_count_formula(self, chunker: ParagraphChunker) -> None:
        """Test token count is ceil(words * 1.33)."""
        text = "\n\n".join(make_paragraphs(5, words=11))

        chunks = chunker.chunk(text, document_id="doc-1", knowledge_base_id="kb-1")

        for chunk in chunks:
            assert chunk.token_count == math.ceil(len(chunk.content.split()) * 1.33)

    def test_chunk_length_bounded_by_size_plus_one_paragraph(self, chunker: ParagraphChunker) -> None:
        """Test no chunk exceeds chunk size by more than one paragraph."""
        paragraphs = make_paragraphs(20, words=9) + make_paragraphs(3, words=40)
        longest = max(len(p) for p in paragraphs)

        chunks = chunker.chunk("\n\n".join(paragraphs), document_id="d", knowledge_base_id="k")

        for chunk in chunks:
            assert len(chunk.content) <= 500 + longest + 2

    def test_no_content_loss(self, chunker: ParagraphChunker) -> None:
        """Test every paragraph appears in at least one chunk."""
        paragraphs = make_paragraphs(12)

        chunks = chunker.chunk("\n\n".join(paragraphs), document_id="d", knowledge_base_id="k")

        for paragraph in paragraphs:
            assert any(paragraph in chunk.content for chunk in chunks)

    def test_deterministic(self, chunker: ParagraphChunker) -> None:
        """Test chunking the same text twice is identical."""
        text = "\n\n".join(make_paragraphs(10))

        first = chunker.chunk(text, document_id="d", knowledge_base_id="k")
        second = chunker.chunk(text, document_id="d", knowledge_base_id="k")

        assert [c.model_dump() for c in first] == [c.model_dump() for c in second]

    def test_overlap_taken_from_emitted_content(self) -> None:
        """Test trailing whitespace does not shift the overlap carried into the next chunk."""
        chunker = ParagraphChunker(chunk_size=60, chunk_overlap=10)
        text = "alpha beta gamma delta epsilon zeta \n\nsecond paragraph here with words"

        chunks = chunker.chunk(text, document_id="d", knowledge_base_id="k", normalize=False)

        assert len(chunks) == 2
        assert chunks[0].content.endswith("silon zeta")
        assert chunks[1].content == "silon zeta\n\nsecond paragraph here with words"

    def test_overlap_longer_than_chunk_carries_whole_chunk(self) -> None:
        chunker = ParagraphChunker(chunk_size=30, chunk_overlap=20)

        chunks = chunker.chunk("x" * 15 + "\n\n" + "y" * 40, document_id="d", knowledge_base_id="k")

        assert chunks[1].content == "x" * 15 + "\n\n" + "y" * 40

    def test_oversized_paragraph_kept_whole(self) -> None:
        """Test a paragraph longer than chunk size is emitted as its own chunk."""
        chunker = ParagraphChunker(chunk_size=50, chunk_overlap=0)
        big = "x" * 120

        chunks = chunker.chunk(f"short one\n\n{big}\n\nshort two", document_id="d", knowledge_base_id="k")

        assert [c.content for c in chunks] == ["short one", big, "short two"]

    def test_single_short_text_yields_one_chunk(self, chunker: ParagraphChunker) -> None:
        """Test a short text becomes one stripped chunk."""
        chunks = chunker.chunk("  Hola mundo  \r\n", document_id="d", knowledge_base_id="k")

        assert len(chunks) == 1
        assert chunks[0].content == "Hola mundo"

    def test_empty_text_raises(self, chunker: ParagraphChunker) -> None:
        """Test whitespace-only text raises EmptyInputError."""
        with pytest.raises(EmptyInputError):
            chunker.chunk(" \n\n \t \r\n", document_id="d", knowledge_base_id="k")
