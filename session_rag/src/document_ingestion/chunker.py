from __future__ import annotations

from typing import Iterable, Iterator, List, Sequence, Tuple

from langchain_text_splitters import RecursiveCharacterTextSplitter

from session_rag.exception.custom_exception import InvalidInput
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.schemas import ChunkMetadata, TaggedUnit

# paragraph break -> line break -> word break -> character break
DEFAULT_SEPARATORS: Tuple[str, ...] = ("\n\n", "\n", " ", "")


class ChunkSequence:
    """
    Lazy, restartable view over the spans of one text.

    Nothing is split until the sequence is iterated, and every new iteration
    splits the source text again, so two passes yield identical spans.
    """

    def __init__(self, text: str, splitter: RecursiveCharacterTextSplitter):
        self._text = text
        self._splitter = splitter

    def __iter__(self) -> Iterator[str]:
        yield from self._splitter.split_text(self._text)

    def __repr__(self):
        return f"ChunkSequence(chars={len(self._text)})"


class Chunker:
    """
    Splits extracted text into overlapping spans sized for retrieval.

    - chunk_size: target span length in characters
    - chunk_overlap: characters shared between neighbouring spans
    - separators: boundaries tried in priority order, so semantic breaks win
      over mid-word cuts
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ):
        if chunk_size <= 0:
            raise InvalidInput(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise InvalidInput(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap}"
            )

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators)

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=self.separators,
        )

    @classmethod
    def from_config(cls, config: dict) -> "Chunker":
        cfg = config.get("chunker", {})
        return cls(
            chunk_size=cfg.get("chunk_size", 1000),
            chunk_overlap=cfg.get("chunk_overlap", 200),
            separators=cfg.get("separators") or DEFAULT_SEPARATORS,
        )

    def split(self, text: str) -> ChunkSequence:
        """
        Return the spans of a document's text.
        Empty text is an input error, never an empty result.
        """
        if text is None or not text.strip():
            raise InvalidInput("Cannot chunk empty text")
        return ChunkSequence(text, self._splitter)

    def split_units(self, units: Iterable[TaggedUnit]) -> List[Tuple[str, ChunkMetadata]]:
        """
        Chunk every tagged unit, copying the unit's metadata onto each span.
        Blank units (e.g. empty pdf pages) contribute nothing.
        """
        out: List[Tuple[str, ChunkMetadata]] = []
        skipped = 0
        for unit in units:
            if not unit.text.strip():
                skipped += 1
                continue
            for span in self.split(unit.text):
                out.append((span, unit.metadata))

        if not out:
            raise InvalidInput("No valid content found to index.")

        log.info("Split complete", chunks=len(out), blank_units_skipped=skipped)
        return out
