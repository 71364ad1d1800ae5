from typing import List, Optional, Sequence

from session_rag.exception.custom_exception import InvalidInput
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.redis_cache.redis_client import SessionStore
from session_rag.schemas import IngestResult, QuestionState, SourceMetadata
from session_rag.src.document_chat.generation import (
    AnswerStream,
    GenerationStreamer,
    classify_generation_error,
)
from session_rag.src.document_chat.retrieval import RetrieverWrapper
from session_rag.src.document_ingestion.data_ingestion import DataIngestor
from session_rag.src.session.quota import QuotaManager
from session_rag.utils.thread_pool import run_sync


class Orchestrator:
    """
    Orchestrates the session lifecycle:
      - ingestion and deletion of sources
      - the per-question pipeline: quota -> retrieval -> streamed generation
      - session snapshot / clear / quota reset
    """

    def __init__(
        self,
        ingestor: DataIngestor,
        retriever: RetrieverWrapper,
        quota: QuotaManager,
        streamer: GenerationStreamer,
        session_store: SessionStore,
    ):
        self.ingestor = ingestor
        self.retriever = retriever
        self.quota = quota
        self.streamer = streamer
        self.session_store = session_store

    async def ask(
        self,
        session_id: str,
        question: str,
        sources: Optional[Sequence] = None,
        target_source: Optional[str] = None,
        conversation_history=None,
        model: Optional[str] = None,
        k: Optional[int] = None,
    ) -> AnswerStream:
        """
        Run one question through quota, retrieval and generation.

        Input is validated before any external call. The quota unit is
        spent before retrieval and is not refunded if generation fails.
        """
        question = (question or "").strip()
        if not question or not sources:
            raise InvalidInput("Missing question or sources")

        remaining = await self.quota.check_and_consume(session_id)
        log.info(
            "Question accepted",
            session_id=session_id,
            state=QuestionState.QUOTA_CHECKED.value,
            remaining=remaining,
        )

        try:
            chunks = await self.retriever.retrieve(
                session_id, question, source_filter=target_source or None, k=k
            )
        except Exception as e:
            # an outage is not "nothing found": report it like a model failure
            error = classify_generation_error(e, self.streamer.model_loader.resolve_model(model))
            log.error(
                "Retrieval failed",
                session_id=session_id,
                state=QuestionState.FAILED.value,
                error_type=error.error_type,
                error=str(e),
            )
            raise error from e
        log.info(
            "Context retrieved",
            session_id=session_id,
            state=QuestionState.RETRIEVING.value,
            chunks=len(chunks),
            chars=sum(len(c.content) for c in chunks),
        )

        return self.streamer.answer(
            session_id,
            question,
            chunks,
            conversation_history=conversation_history,
            model=model,
            remaining_quota=remaining,
        )

    async def ingest(self, session_id: str, **source) -> IngestResult:
        return await self.ingestor.ingest(session_id, **source)

    async def delete_source(self, session_id: str, source_name: str) -> int:
        return await self.ingestor.delete_source(session_id, source_name)

    async def session_snapshot(self, session_id: str) -> dict:
        tokens = await self.quota.remaining(session_id)
        files: List[SourceMetadata] = await run_sync(self.session_store.list_sources, session_id)
        return {"tokens": tokens, "files": files}

    async def reset_quota(self, session_id: str) -> int:
        return await self.quota.reset(session_id)

    async def clear_session(self, session_id: str) -> int:
        """
        Drop quota + source list, then every chunk of the tenant.
        The index half is best-effort: failures are logged, not raised.
        """
        await run_sync(self.session_store.clear, session_id)
        log.info("Session state cleared", session_id=session_id)

        try:
            deleted = await self.ingestor.delete_tenant(session_id)
        except Exception as e:
            log.error("Error clearing index data", session_id=session_id, error=str(e))
            return 0

        if deleted:
            log.info("Deleted embeddings for session", session_id=session_id, deleted=deleted)
        else:
            log.info("No embeddings found for session", session_id=session_id)
        return deleted
