"""
Tests for Chunker: span sizing, overlap, determinism and metadata propagation.
"""

from unittest.mock import MagicMock

import pytest

from session_rag.exception.custom_exception import InvalidInput
from session_rag.schemas import ChunkMetadata, TaggedUnit
from session_rag.src.document_ingestion.chunker import Chunker, ChunkSequence

from conftest import filler_words


@pytest.fixture
def long_text() -> str:
    paragraphs = [filler_words(120) for _ in range(8)]
    return "\n\n".join(paragraphs)


class TestChunkerConfig:
    def test_rejects_non_positive_size(self):
        with pytest.raises(InvalidInput):
            Chunker(chunk_size=0)

    def test_rejects_overlap_not_smaller_than_size(self):
        with pytest.raises(InvalidInput):
            Chunker(chunk_size=100, chunk_overlap=100)

    def test_from_config_reads_chunker_section(self):
        chunker = Chunker.from_config({"chunker": {"chunk_size": 500, "chunk_overlap": 50}})

        assert chunker.chunk_size == 500
        assert chunker.chunk_overlap == 50
        assert chunker.separators == ["\n\n", "\n", " ", ""]


class TestSplit:
    def test_empty_text_is_an_error(self, chunker):
        with pytest.raises(InvalidInput):
            chunker.split("")
        with pytest.raises(InvalidInput):
            chunker.split("   \n\n  ")

    def test_spans_respect_chunk_size(self, chunker, long_text):
        spans = list(chunker.split(long_text))

        assert len(spans) > 1
        assert all(len(s) <= chunker.chunk_size for s in spans)
        assert all(s.strip() for s in spans)

    def test_neighbouring_spans_overlap(self):
        chunker = Chunker(chunk_size=200, chunk_overlap=50)
        text = " ".join(f"word{i}" for i in range(200))

        spans = list(chunker.split(text))

        for left, right in zip(spans, spans[1:]):
            assert left.split()[-1] in right.split()

    def test_short_text_is_a_single_span(self, chunker):
        assert list(chunker.split("A short note.")) == ["A short note."]

    def test_same_input_same_spans(self, chunker, long_text):
        first = list(chunker.split(long_text))
        second = list(Chunker(chunk_size=1000, chunk_overlap=200).split(long_text))

        assert first == second

    def test_sequence_is_restartable(self, chunker, long_text):
        seq = chunker.split(long_text)

        assert isinstance(seq, ChunkSequence)
        assert list(seq) == list(seq)

    def test_sequence_is_lazy(self):
        splitter = MagicMock()
        splitter.split_text.return_value = ["a", "b"]

        seq = ChunkSequence("a b", splitter)
        splitter.split_text.assert_not_called()

        assert list(seq) == ["a", "b"]
        splitter.split_text.assert_called_once_with("a b")

    def test_prefers_paragraph_boundaries(self):
        chunker = Chunker(chunk_size=40, chunk_overlap=10)
        text = "First paragraph about apples.\n\nSecond paragraph about pears."

        spans = list(chunker.split(text))

        assert spans == ["First paragraph about apples.", "Second paragraph about pears."]


class TestSplitUnits:
    def _unit(self, text, page):
        return TaggedUnit(
            text=text,
            metadata=ChunkMetadata(
                tenant_id="s1",
                source_name="report.pdf",
                content_type="pdf",
                page=page,
                total_pages=2,
            ),
        )

    def test_every_span_carries_its_unit_metadata(self, chunker, long_text):
        units = [self._unit(long_text, 1), self._unit("Page two text.", 2)]

        chunks = chunker.split_units(units)

        assert chunks[-1] == ("Page two text.", units[1].metadata)
        assert {md.page for _, md in chunks} == {1, 2}
        assert all(md.tenant_id == "s1" and md.total_pages == 2 for _, md in chunks)

    def test_blank_units_are_skipped(self, chunker):
        chunks = chunker.split_units([self._unit("  ", 1), self._unit("Real text.", 2)])

        assert [md.page for _, md in chunks] == [2]

    def test_all_blank_units_is_an_error(self, chunker):
        with pytest.raises(InvalidInput, match="No valid content"):
            chunker.split_units([self._unit("", 1), self._unit("\n", 2)])
