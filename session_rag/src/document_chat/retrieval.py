from typing import List, Optional

from langchain_core.embeddings import Embeddings
from pydantic import ValidationError

from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.schemas import ChunkMetadata, RetrievedChunk
from session_rag.utils.thread_pool import run_sync
from session_rag.vectorstore.faiss_store import IndexStore


class RetrieverWrapper:
    """
    Tenant-scoped retrieval over the shared index.

    The store's payload filter is not trusted, so the wrapper:
     - over-fetches candidates (k * oversample_factor, at least min_candidates)
     - keeps only chunks whose tenant_id is the asking session (and whose
       source_name matches the optional source filter)
     - truncates to k, keeping the store's ranking, no re-ranking

    With trust_native_filter=True the predicate is also handed to the store
    and the oversampling is dropped; the application-layer filter still runs.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        index_store: IndexStore,
        retriever_config: Optional[dict] = None,
    ):
        self.embeddings = embeddings
        self.index_store = index_store
        self.retriever_config = retriever_config or {}

        self.top_k = self.retriever_config.get("top_k", 4)
        self.oversample_factor = self.retriever_config.get("oversample_factor", 4)
        self.min_candidates = self.retriever_config.get("min_candidates", 15)
        self.trust_native_filter = self.retriever_config.get("trust_native_filter", False)

        log.info(
            "RetrieverWrapper initialized",
            top_k=self.top_k,
            oversample_factor=self.oversample_factor,
            min_candidates=self.min_candidates,
            trust_native_filter=self.trust_native_filter,
        )

    def candidate_count(self, k: int) -> int:
        if self.trust_native_filter:
            return k
        return max(k * self.oversample_factor, self.min_candidates)

    @staticmethod
    def _keep(payload: dict, session_id: str, source_filter: Optional[str]) -> bool:
        if payload.get("tenant_id") != session_id:
            return False
        if source_filter and payload.get("source_name") != source_filter:
            return False
        return True

    def embed_query(self, query: str) -> List[float]:
        return self.embeddings.embed_query(query)

    def search(
        self,
        session_id: str,
        query_embedding: List[float],
        source_filter: Optional[str] = None,
        k: Optional[int] = None,
    ) -> List[RetrievedChunk]:
        """
        Search + filter + truncate for an already embedded query.
        """
        k = k or self.top_k
        fetch = self.candidate_count(k)

        predicate = None
        if self.trust_native_filter:
            predicate = lambda payload: self._keep(payload, session_id, source_filter)  # noqa: E731

        hits = self.index_store.search(query_embedding, fetch, predicate)

        kept: List[RetrievedChunk] = []
        skipped = 0
        for content, payload, _ in hits:
            if not self._keep(payload, session_id, source_filter):
                continue
            try:
                metadata = ChunkMetadata(**payload)
            except ValidationError as e:
                # skipped one at a time; the rest of the hits still count
                skipped += 1
                log.warning("Skipping chunk with invalid payload", error=str(e))
                continue
            kept.append(RetrievedChunk(content=content, metadata=metadata))
            if len(kept) == k:
                break

        log.info(
            "Retrieved chunks",
            session_id=session_id,
            candidates=len(hits),
            kept=len(kept),
            skipped=skipped,
            source_filter=source_filter,
        )
        return kept

    async def retrieve(
        self,
        session_id: str,
        query: str,
        source_filter: Optional[str] = None,
        k: Optional[int] = None,
    ) -> List[RetrievedChunk]:
        """
        Embed the query and return up to k chunks visible to this session.
        Fewer (or zero) results is a valid outcome. Embedding and index
        errors propagate to the caller.
        """
        query_embedding = await run_sync(self.embed_query, query)
        return await run_sync(self.search, session_id, query_embedding, source_filter, k)
