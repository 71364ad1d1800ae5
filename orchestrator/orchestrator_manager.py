# orchestrator/orchestrator_manager.py
from __future__ import annotations

import os
import threading
from typing import Optional

from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.redis_cache.redis_client import RedisSessionStore
from session_rag.src.document_chat.generation import GenerationStreamer
from session_rag.src.document_chat.orchestrator import Orchestrator
from session_rag.src.document_chat.retrieval import RetrieverWrapper
from session_rag.src.document_ingestion.chunker import Chunker
from session_rag.src.document_ingestion.data_ingestion import DataIngestor
from session_rag.src.session.quota import QuotaManager
from session_rag.utils.config_loader import load_config
from session_rag.utils.model_loader import ModelLoader
from session_rag.vectorstore.faiss_store import FaissIndexStore


def build_orchestrator(config: Optional[dict] = None) -> Orchestrator:
    """
    Wire every component from config + environment.
    ModelLoader raises Misconfigured first when credentials are missing.
    """
    config = config or load_config()
    model_loader = ModelLoader(config)
    embeddings = model_loader.load_embeddings()

    session_cfg = config.get("session", {})
    session_store = RedisSessionStore(
        default_tokens=session_cfg.get("default_quota", 10),
        ttl=session_cfg.get("ttl_seconds", 86400),
    )

    index_dir = os.getenv("FAISS_INDEX_DIR") or config.get("vector_store", {}).get(
        "index_dir", "faiss_index/shared"
    )
    index_store = FaissIndexStore(index_dir, embeddings)

    return Orchestrator(
        ingestor=DataIngestor(
            embeddings, index_store, session_store, Chunker.from_config(config)
        ),
        retriever=RetrieverWrapper(embeddings, index_store, config.get("retriever", {})),
        quota=QuotaManager(session_store),
        streamer=GenerationStreamer(model_loader),
        session_store=session_store,
    )


class OrchestratorManager:
    """
    Holds the process-wide Orchestrator.

    It is built lazily on first use, so a missing credential surfaces as a
    request error and a later request can succeed once the env is fixed.
    """

    def __init__(self):
        self._orchestrator: Optional[Orchestrator] = None
        self._lock = threading.Lock()

    def get_orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            with self._lock:
                if self._orchestrator is None:
                    log.info("Creating Orchestrator")
                    self._orchestrator = build_orchestrator()
        return self._orchestrator

    def set_orchestrator(self, orchestrator: Optional[Orchestrator]) -> None:
        self._orchestrator = orchestrator


orchestrator_manager = OrchestratorManager()
