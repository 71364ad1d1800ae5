from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from langchain_community.vectorstores import FAISS
from langchain_core.embeddings import Embeddings

from session_rag.logger import GLOBAL_LOGGER as log

Payload = Dict[str, Any]
PayloadPredicate = Callable[[Payload], bool]
# (content, payload, score) in store ranking order
SearchHit = Tuple[str, Payload, float]


class IndexStore(ABC):
    """
    Minimal vector index contract: insert, similarity search, scan and
    delete by id. Payload filtering offered by a backend is optional and
    never relied upon for tenant isolation.
    """

    @abstractmethod
    def add(
        self,
        texts: Sequence[str],
        vectors: Sequence[Sequence[float]],
        payloads: Sequence[Payload],
    ) -> List[str]:
        ...

    @abstractmethod
    def search(
        self,
        vector: Sequence[float],
        k: int,
        predicate: Optional[PayloadPredicate] = None,
    ) -> List[SearchHit]:
        ...

    @abstractmethod
    def scan(self) -> Iterator[Tuple[str, Payload]]:
        ...

    @abstractmethod
    def delete(self, ids: Sequence[str]) -> int:
        ...

    def delete_where(self, predicate: PayloadPredicate) -> int:
        """
        Linear scan over every stored payload, deleting the matches.
        Payload fields are not assumed to be indexable by the backend.
        """
        ids = [point_id for point_id, payload in self.scan() if predicate(payload)]
        log.info("Index scan complete", matched=len(ids))
        if not ids:
            return 0
        return self.delete(ids)


class FaissIndexStore(IndexStore):
    """
    One FAISS index shared by every session, persisted under index_dir.

    - the index is created lazily on first insert (dimension comes from the
      first vectors)
    - every write is saved to disk
    - mutations and reads are serialised with a lock since FAISS is shared
      across worker threads
    """

    def __init__(self, index_dir: str | Path, embeddings: Embeddings):
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.emb = embeddings
        self._lock = threading.RLock()
        self.vs: Optional[FAISS] = None

        if self._exists():
            log.info("Loading existing FAISS index | index_dir=%s", str(self.index_dir))
            self.vs = FAISS.load_local(
                str(self.index_dir), self.emb, allow_dangerous_deserialization=True
            )

    def _exists(self) -> bool:
        return (self.index_dir / "index.faiss").exists() and (
            self.index_dir / "index.pkl"
        ).exists()

    def _save(self) -> None:
        if self.vs is not None:
            self.vs.save_local(str(self.index_dir))

    def __len__(self) -> int:
        with self._lock:
            return 0 if self.vs is None else len(self.vs.index_to_docstore_id)

    def add(self, texts, vectors, payloads) -> List[str]:
        if not (len(texts) == len(vectors) == len(payloads)):
            raise ValueError("texts, vectors and payloads must have equal length")
        if not texts:
            return []

        ids = [uuid.uuid4().hex for _ in texts]
        text_embeddings = list(zip(texts, [list(v) for v in vectors]))

        with self._lock:
            if self.vs is None:
                log.info("Creating new FAISS index | index_dir=%s", str(self.index_dir))
                self.vs = FAISS.from_embeddings(
                    text_embeddings,
                    embedding=self.emb,
                    metadatas=list(payloads),
                    ids=ids,
                )
            else:
                self.vs.add_embeddings(
                    text_embeddings=text_embeddings,
                    metadatas=list(payloads),
                    ids=ids,
                )
            self._save()

        log.info("Upserted vectors", count=len(ids))
        return ids

    def search(self, vector, k, predicate=None) -> List[SearchHit]:
        with self._lock:
            if self.vs is None:
                return []
            kwargs: Dict[str, Any] = {"k": k}
            if predicate is not None:
                kwargs.update({"filter": predicate, "fetch_k": max(k * 4, 20)})
            docs_with_scores = self.vs.similarity_search_with_score_by_vector(
                list(vector), **kwargs
            )

        return [
            (doc.page_content, dict(doc.metadata or {}), float(score))
            for doc, score in docs_with_scores
        ]

    def scan(self) -> Iterator[Tuple[str, Payload]]:
        with self._lock:
            if self.vs is None:
                return iter(())
            rows = []
            for point_id in list(self.vs.index_to_docstore_id.values()):
                doc = self.vs.docstore.search(point_id)
                if hasattr(doc, "metadata"):
                    rows.append((point_id, dict(doc.metadata or {})))
        return iter(rows)

    def delete(self, ids) -> int:
        ids = list(ids)
        if not ids:
            return 0
        with self._lock:
            if self.vs is None:
                return 0
            known = set(self.vs.index_to_docstore_id.values())
            present = [i for i in ids if i in known]
            if not present:
                return 0
            self.vs.delete(present)
            self._save()

        log.info("Deleted vectors", count=len(present))
        return len(present)
