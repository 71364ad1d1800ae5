from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SourceKind = Literal["file", "url", "text"]
ContentType = Literal["pdf", "markdown", "text", "web"]

# Display name used for raw-text sources
USER_TEXT_SOURCE = "User Text"
# Older chunks of raw-text sources were tagged with this name
LEGACY_USER_TEXT_SOURCE = "user_text"


def _now_ms() -> int:
    return int(time.time() * 1000)


_id_lock = threading.Lock()
_last_source_id = 0


def next_source_id() -> str:
    """Millisecond timestamp, bumped so ids stay unique within the process."""
    global _last_source_id
    with _id_lock:
        _last_source_id = max(_now_ms(), _last_source_id + 1)
        return str(_last_source_id)


class SourceMetadata(BaseModel):
    """One attached source, stored in the session's ordered source list."""

    id: str = Field(default_factory=next_source_id)
    name: str
    kind: SourceKind
    content_type: ContentType
    size: str
    uploaded_at: int = Field(default_factory=_now_ms)


class ChunkMetadata(BaseModel):
    """
    Payload carried by every chunk in the index.

    Built once per extracted unit, before chunking, and copied unchanged
    onto each chunk derived from it.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    source_name: str
    content_type: ContentType
    page: Optional[int] = None
    total_pages: Optional[int] = None
    section_index: Optional[int] = None

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ExtractedUnit(BaseModel):
    """Pre-chunking unit of text: a pdf page, a web section or a whole file."""

    text: str
    page: Optional[int] = None
    total_pages: Optional[int] = None
    section_index: Optional[int] = None


class ExtractedSource(BaseModel):
    """Everything the format extractors hand to the ingestion pipeline."""

    name: str
    kind: SourceKind
    content_type: ContentType
    size: str
    units: List[ExtractedUnit]
    word_count: int = 0
    page_count: Optional[int] = None


class TaggedUnit(BaseModel):
    text: str
    metadata: ChunkMetadata


class RetrievedChunk(BaseModel):
    content: str
    metadata: ChunkMetadata


class IngestResult(BaseModel):
    source: SourceMetadata
    documents_indexed: int
    chunks_indexed: int
    extracted_words: int
    extracted_pages: Optional[int] = None


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class QuestionState(str, Enum):
    RECEIVED = "received"
    QUOTA_CHECKED = "quota_checked"
    RETRIEVING = "retrieving"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"
