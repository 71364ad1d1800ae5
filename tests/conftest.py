"""
Shared test fixtures and fakes for the whole suite.

Provides: deterministic embedder, in-memory session store, scripted chat
model, and fully wired Orchestrator instances over a temp FAISS index.
Dependencies: pytest, pytest-asyncio, langchain-core, faiss-cpu
"""

import asyncio
import hashlib
import math
import re
import threading
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessageChunk

from api.deps import get_orchestrator
from api.main import app
from orchestrator.orchestrator_manager import orchestrator_manager
from session_rag.redis_cache.redis_client import QUOTA_EXHAUSTED, SessionStore
from session_rag.schemas import SourceMetadata
from session_rag.src.document_chat.generation import GenerationStreamer
from session_rag.src.document_chat.orchestrator import Orchestrator
from session_rag.src.document_chat.retrieval import RetrieverWrapper
from session_rag.src.document_ingestion.chunker import Chunker
from session_rag.src.document_ingestion.data_ingestion import DataIngestor
from session_rag.src.session.quota import QuotaManager
from session_rag.vectorstore.faiss_store import FaissIndexStore

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class KeywordEmbeddings(Embeddings):
    """Bag-of-words hashed into a fixed-size, L2-normalised vector."""

    def __init__(self, dim: int = 512):
        self.dim = dim
        self.document_calls = 0
        self.query_calls = 0

    def _embed(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for word in _TOKEN_RE.findall(text.lower()):
            idx = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dim
            vec[idx] += 1.0
        norm = math.sqrt(sum(v * v for v in vec)) or 1.0
        return [v / norm for v in vec]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.document_calls += 1
        return [self._embed(t) for t in texts]

    def embed_query(self, text: str) -> List[float]:
        self.query_calls += 1
        return self._embed(text)


class FailingEmbeddings(KeywordEmbeddings):
    def embed_documents(self, texts):
        raise RuntimeError("embedding backend unavailable")


class InMemorySessionStore(SessionStore):
    """
    SessionStore over plain dicts. The lock stands in for Redis executing
    each command / script atomically.
    """

    def __init__(self, default_tokens: int = 10, ttl: int = 86400):
        self.default_tokens = default_tokens
        self.ttl = ttl
        self.tokens = {}
        self.files = {}
        self.calls = []
        self._lock = threading.Lock()

    def get_tokens(self, session_id):
        with self._lock:
            self.calls.append(("get_tokens", session_id))
            return self.tokens.setdefault(session_id, self.default_tokens)

    def consume_token(self, session_id):
        with self._lock:
            self.calls.append(("consume_token", session_id))
            current = self.tokens.setdefault(session_id, self.default_tokens)
            if current <= 0:
                return QUOTA_EXHAUSTED
            self.tokens[session_id] = current - 1
            return current - 1

    def reset_tokens(self, session_id):
        with self._lock:
            self.tokens[session_id] = self.default_tokens

    def add_source(self, session_id, source: SourceMetadata):
        with self._lock:
            self.files.setdefault(session_id, []).append(source.model_dump_json())

    def list_sources(self, session_id):
        with self._lock:
            return [
                SourceMetadata.model_validate_json(s)
                for s in self.files.get(session_id, [])
            ]

    def remove_source(self, session_id, name):
        with self._lock:
            entries = self.files.get(session_id, [])
            for i, raw in enumerate(entries):
                if SourceMetadata.model_validate_json(raw).name == name:
                    del entries[i]
                    return True
            return False

    def clear(self, session_id):
        with self._lock:
            self.tokens.pop(session_id, None)
            self.files.pop(session_id, None)


class FakeChatModel:
    """
    Scripted streaming chat model.

    - tokens: streamed in order
    - error / fail_after: raise error before the token at that index
    - hang: after the last token, wait forever (until cancelled)
    """

    def __init__(
        self,
        tokens=None,
        error: Optional[Exception] = None,
        fail_after: Optional[int] = None,
        hang: bool = False,
    ):
        self.tokens = list(tokens or ["From your documents:", " the", " answer."])
        self.error = error
        self.fail_after = fail_after
        self.hang = hang
        self.calls = []
        self.closed = False

    async def astream(self, messages):
        self.calls.append(messages)
        try:
            for i, token in enumerate(self.tokens):
                if self.error is not None and i == (self.fail_after or 0):
                    raise self.error
                yield AIMessageChunk(content=token)
                await asyncio.sleep(0)
            if self.error is not None and (self.fail_after or 0) >= len(self.tokens):
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed = True


class FakeModelLoader:
    def __init__(self, llm: Optional[FakeChatModel] = None):
        self.llm = llm or FakeChatModel()
        self.allowed = ["gemini-2.5-flash-lite", "gemini-2.5-flash"]
        self.loaded = []

    def resolve_model(self, requested=None):
        return requested if requested in self.allowed else self.allowed[0]

    def load_llm(self, model_name=None):
        self.loaded.append(model_name)
        return self.llm


@pytest.fixture
def embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture
def index_store(tmp_path, embeddings) -> FaissIndexStore:
    return FaissIndexStore(tmp_path / "faiss_index", embeddings)


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def chunker() -> Chunker:
    return Chunker(chunk_size=1000, chunk_overlap=200)


@pytest.fixture
def ingestor(embeddings, index_store, session_store, chunker) -> DataIngestor:
    return DataIngestor(embeddings, index_store, session_store, chunker)


@pytest.fixture
def retriever(embeddings, index_store) -> RetrieverWrapper:
    return RetrieverWrapper(
        embeddings, index_store, {"top_k": 4, "oversample_factor": 4, "min_candidates": 15}
    )


@pytest.fixture
def chat_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture
def model_loader(chat_model) -> FakeModelLoader:
    return FakeModelLoader(chat_model)


@pytest.fixture
def streamer(model_loader) -> GenerationStreamer:
    return GenerationStreamer(model_loader)


@pytest.fixture
def orchestrator(ingestor, retriever, session_store, streamer) -> Orchestrator:
    return Orchestrator(
        ingestor=ingestor,
        retriever=retriever,
        quota=QuotaManager(session_store),
        streamer=streamer,
        session_store=session_store,
    )


@pytest.fixture
def client(orchestrator) -> TestClient:
    """TestClient over the real app with the Orchestrator swapped for the test one."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    orchestrator_manager.set_orchestrator(orchestrator)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    orchestrator_manager.set_orchestrator(None)


def filler_words(n: int, vocabulary=("lorem", "ipsum", "dolor", "sit", "amet", "consectetur")) -> str:
    words = [vocabulary[i % len(vocabulary)] for i in range(n)]
    # break into lines of 15 words so the splitter has line boundaries
    return "\n".join(" ".join(words[i:i + 15]) for i in range(0, n, 15))
