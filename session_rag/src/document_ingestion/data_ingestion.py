from __future__ import annotations

from typing import List, Optional

from langchain_core.embeddings import Embeddings

from session_rag.exception.custom_exception import IngestionFailed, InvalidInput
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.redis_cache.redis_client import SessionStore
from session_rag.schemas import (
    LEGACY_USER_TEXT_SOURCE,
    USER_TEXT_SOURCE,
    ChunkMetadata,
    ExtractedSource,
    IngestResult,
    SourceMetadata,
    TaggedUnit,
)
from session_rag.src.document_ingestion.chunker import Chunker
from session_rag.utils.document_ops import extract_file, extract_text, extract_url
from session_rag.utils.thread_pool import run_sync
from session_rag.vectorstore.faiss_store import IndexStore


def tag_units(session_id: str, extracted: ExtractedSource) -> List[TaggedUnit]:
    """
    Attach the fixed chunk metadata to every extracted unit.
    Runs before chunking so each span inherits it without re-derivation.
    """
    return [
        TaggedUnit(
            text=unit.text,
            metadata=ChunkMetadata(
                tenant_id=session_id,
                source_name=extracted.name,
                content_type=extracted.content_type,
                page=unit.page,
                total_pages=unit.total_pages,
                section_index=unit.section_index,
            ),
        )
        for unit in extracted.units
    ]


class DataIngestor:
    """
    Ingest one source (a file, a url or raw text) into the shared index for a session.

    - extract text units through the format extractors
    - tag every unit with tenant + source identity
    - chunk, embed in one batch, upsert with the full payload
    - record the source in the session store

    A source is all-or-nothing: embedding / index / bookkeeping failures
    leave no source recorded. Re-ingesting a source duplicates its chunks.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        index_store: IndexStore,
        session_store: SessionStore,
        chunker: Optional[Chunker] = None,
    ):
        self.embeddings = embeddings
        self.index_store = index_store
        self.session_store = session_store
        self.chunker = chunker or Chunker()

    async def extract(
        self,
        *,
        file_name: Optional[str] = None,
        file_bytes: Optional[bytes] = None,
        url: Optional[str] = None,
        text: Optional[str] = None,
    ) -> ExtractedSource:
        """Pick the single source to index. Blank url / text count as absent."""
        url = (url or "").strip() or None
        text = (text or "").strip() or None

        supplied = [v for v in (file_name, url, text) if v]
        if len(supplied) > 1:
            raise InvalidInput("Provide exactly one of file, url or text.")

        if file_name:
            return await run_sync(extract_file, file_name, file_bytes or b"")
        if url:
            return await run_sync(extract_url, url)
        if text:
            return extract_text(text)

        raise InvalidInput("Please upload a file, provide a URL, or enter text.")

    async def ingest(
        self,
        session_id: str,
        *,
        file_name: Optional[str] = None,
        file_bytes: Optional[bytes] = None,
        url: Optional[str] = None,
        text: Optional[str] = None,
    ) -> IngestResult:
        log.info("Indexing request received | session_id=%s", session_id)

        # Step 1-2: validation + extraction, before any embedding cost
        extracted = await self.extract(
            file_name=file_name, file_bytes=file_bytes, url=url, text=text
        )

        # Step 3: tenant tagging
        tagged = tag_units(session_id, extracted)

        # Step 4: chunking
        chunks = await run_sync(self.chunker.split_units, tagged)
        texts = [content for content, _ in chunks]
        payloads = [md.payload() for _, md in chunks]
        log.info(
            "Split documents into chunks",
            source=extracted.name,
            units=len(tagged),
            chunks=len(texts),
        )

        # Step 5: embed + upsert
        try:
            vectors = await run_sync(self.embeddings.embed_documents, texts)
        except Exception as e:
            log.error("Embedding failed", source=extracted.name, error=str(e))
            raise IngestionFailed(f"Embedding failed for {extracted.name}: {e}", e) from e

        if len(vectors) != len(texts):
            raise IngestionFailed(
                f"Embedder returned {len(vectors)} vectors for {len(texts)} chunks"
            )

        try:
            ids = await run_sync(self.index_store.add, texts, vectors, payloads)
        except Exception as e:
            log.error("Index upsert failed", source=extracted.name, error=str(e))
            raise IngestionFailed(f"Indexing failed for {extracted.name}: {e}", e) from e

        # Step 6: session bookkeeping
        source = SourceMetadata(
            name=extracted.name,
            kind=extracted.kind,
            content_type=extracted.content_type,
            size=extracted.size,
        )
        try:
            await run_sync(self.session_store.add_source, session_id, source)
        except Exception as e:
            log.error("Recording source failed, rolling back chunks", error=str(e))
            await self._rollback(ids)
            raise IngestionFailed(f"Could not record source {extracted.name}: {e}", e) from e

        log.info(
            "Indexing completed | session_id=%s | source=%s | chunks=%d",
            session_id,
            source.name,
            len(ids),
        )
        return IngestResult(
            source=source,
            documents_indexed=len(extracted.units),
            chunks_indexed=len(ids),
            extracted_words=extracted.word_count,
            extracted_pages=extracted.page_count if extracted.content_type == "pdf" else None,
        )

    async def _rollback(self, ids: List[str]) -> None:
        try:
            await run_sync(self.index_store.delete, ids)
        except Exception as e:
            log.error("Rollback of inserted chunks failed", count=len(ids), error=str(e))

    async def delete_source(self, session_id: str, source_name: str) -> int:
        """
        Delete every chunk of this session whose source_name matches, and the
        source record itself. An unknown name deletes nothing and returns 0.
        """
        log.info("Delete request | session_id=%s | source=%s", session_id, source_name)

        names = {source_name}
        if source_name == USER_TEXT_SOURCE:
            names.add(LEGACY_USER_TEXT_SOURCE)

        def _matches(payload: dict) -> bool:
            return (
                payload.get("tenant_id") == session_id
                and payload.get("source_name") in names
            )

        deleted = await run_sync(self.index_store.delete_where, _matches)
        await run_sync(self.session_store.remove_source, session_id, source_name)

        log.info("Deleted chunks", source=source_name, deleted=deleted)
        return deleted

    async def delete_tenant(self, session_id: str) -> int:
        """Remove every chunk tagged with this session."""
        return await run_sync(
            self.index_store.delete_where,
            lambda payload: payload.get("tenant_id") == session_id,
        )
