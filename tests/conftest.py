"""
Shared fixtures and in-memory fakes for the collaborator protocols.

The fakes honour the same contracts as the MongoDB / OpenAI / filesystem
adapters (upsert by id, compare-and-set status updates, FileNotFoundError on
missing blobs) so the ingestion and retrieval core can be exercised offline.
"""

import hashlib
from typing import Any, Dict, List, Optional

import pytest

from knowledge_rag.models import IndexedVector, ProcessingStatus, SearchHit


class FakeObjectStore:
    def __init__(self) -> None:
        self.blobs: Dict[str, bytes] = {}

    async def put(self, path: str, data: bytes) -> None:
        self.blobs[path] = data

    async def get(self, path: str) -> bytes:
        if path not in self.blobs:
            raise FileNotFoundError(path)
        return self.blobs[path]

    async def exists(self, path: str) -> bool:
        return path in self.blobs


class FakeQueue:
    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    async def enqueue(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)


class FakeStatusStore:
    """Compare-and-set status store mirroring DocumentStatusStore semantics."""

    def __init__(self) -> None:
        self.statuses: Dict[str, ProcessingStatus] = {}
        self.errors: Dict[str, Optional[str]] = {}
        self.writes: List[ProcessingStatus] = []

    async def register(
        self, document_id: str, knowledge_base_id: str, agent_id: str, name: str = ""
    ) -> None:
        self.statuses.setdefault(document_id, ProcessingStatus.PENDING)

    async def get_status(self, document_id: str) -> Optional[ProcessingStatus]:
        return self.statuses.get(document_id)

    async def set_status(
        self, document_id: str, status: ProcessingStatus, error: Optional[str] = None
    ) -> bool:
        current = self.statuses.get(document_id)
        if current is None or current not in ProcessingStatus.sources_for(status):
            return current is status
        self.statuses[document_id] = status
        self.errors[document_id] = error if status is ProcessingStatus.FAILED else None
        self.writes.append(status)
        return True


class FakeVectorIndex:
    """Upserts by chunk id; ``search`` returns scripted hits per query vector."""

    def __init__(self) -> None:
        self.records: Dict[str, IndexedVector] = {}
        self.search_calls: List[Dict[str, Any]] = []
        self.scripted_hits: List[SearchHit] = []
        # ints are returned in order; exceptions are raised
        self.count_sequence: Optional[List[Any]] = None

    async def upsert(self, vectors: List[IndexedVector]) -> List[str]:
        for vector in vectors:
            self.records[vector.chunk_id] = vector
        return [v.chunk_id for v in vectors]

    async def search(
        self,
        query_vector: List[float],
        filters: Dict[str, Any],
        top_k: int,
        num_candidates: Optional[int] = None,
    ) -> List[SearchHit]:
        self.search_calls.append(
            {"vector": query_vector, "filters": filters, "top_k": top_k, "num_candidates": num_candidates}
        )
        return self.scripted_hits[:top_k]

    async def count(self, filters: Dict[str, Any]) -> int:
        if self.count_sequence:
            value = self.count_sequence.pop(0)
            if isinstance(value, Exception):
                raise value
            return value
        return sum(
            1
            for record in self.records.values()
            if all(getattr(record, key) == value for key, value in filters.items())
        )

    async def delete(self, filters: Dict[str, Any]) -> int:
        doomed = [
            chunk_id
            for chunk_id, record in self.records.items()
            if all(getattr(record, key) == value for key, value in filters.items())
        ]
        for chunk_id in doomed:
            del self.records[chunk_id]
        return len(doomed)


class FakeEmbeddingAPI:
    """Deterministic 8-dimensional vectors derived from the text hash."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.fail_on: set = set()

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if text in self.fail_on:
            from knowledge_rag.exceptions import RateLimitedError

            raise RateLimitedError(f"rate limited: {text[:20]}")
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255 for b in digest[:8]]


class FakeChatAPI:
    def __init__(self, reply: str = "", error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, messages: List[Dict[str, str]], temperature: float) -> str:
        self.calls.append({"messages": messages, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return self.reply


class PlainTextExtractor:
    def extract(self, data: bytes, content_type: str, filename: str) -> str:
        return data.decode("utf-8")


def make_hit(
    chunk_id: str,
    document_id: str = "doc-1",
    score: float = 0.8,
    content: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> SearchHit:
    return SearchHit(
        chunk_id=chunk_id,
        document_id=document_id,
        knowledge_base_id="kb-1",
        content=content or f"content of {chunk_id}",
        score=score,
        metadata=metadata or {},
    )


@pytest.fixture
def object_store() -> FakeObjectStore:
    """Provide in-memory object store."""
    return FakeObjectStore()


@pytest.fixture
def queue() -> FakeQueue:
    """Provide recording queue."""
    return FakeQueue()


@pytest.fixture
def status_store() -> FakeStatusStore:
    """Provide compare-and-set status store."""
    return FakeStatusStore()


@pytest.fixture
def vector_index() -> FakeVectorIndex:
    """Provide in-memory vector index."""
    return FakeVectorIndex()


@pytest.fixture
def embedding_api() -> FakeEmbeddingAPI:
    """Provide deterministic embedding API."""
    return FakeEmbeddingAPI()


@pytest.fixture
def text_extractor() -> PlainTextExtractor:
    """Provide UTF-8 text extractor."""
    return PlainTextExtractor()
