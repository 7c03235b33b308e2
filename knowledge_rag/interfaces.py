"""
Collaborator interfaces

The ingestion and retrieval core only talks to these protocols; concrete
adapters (MongoDB, OpenAI, local filesystem) are injected by the pipeline
and replaced by fakes in tests.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

from knowledge_rag.models import IndexedVector, ProcessingStatus, SearchHit


@runtime_checkable
class TextExtractor(Protocol):
    def extract(self, data: bytes, content_type: str, filename: str) -> str: ...


@runtime_checkable
class ObjectStore(Protocol):
    async def put(self, path: str, data: bytes) -> None: ...
    
    async def get(self, path: str) -> bytes: ...
    
    async def exists(self, path: str) -> bool: ...


MessageHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


@runtime_checkable
class Queue(Protocol):
    """At-least-once queue; consumers must tolerate redelivery"""
    
    async def enqueue(self, message: Dict[str, Any]) -> None: ...


@runtime_checkable
class VectorIndex(Protocol):
    async def upsert(self, vectors: List[IndexedVector]) -> List[str]: ...
    
    async def search(
        self,
        query_vector: List[float],
        filters: Dict[str, Any],
        top_k: int,
        num_candidates: Optional[int] = None
    ) -> List[SearchHit]: ...
    
    async def count(self, filters: Dict[str, Any]) -> int: ...
    
    async def delete(self, filters: Dict[str, Any]) -> int: ...


@runtime_checkable
class EmbeddingAPI(Protocol):
    async def embed(self, text: str) -> List[float]: ...


@runtime_checkable
class ChatAPI(Protocol):
    async def complete(self, messages: List[Dict[str, str]], temperature: float) -> str: ...


@runtime_checkable
class MetadataStore(Protocol):
    async def get_status(self, document_id: str) -> Optional[ProcessingStatus]: ...
    
    async def set_status(
        self,
        document_id: str,
        status: ProcessingStatus,
        error: Optional[str] = None
    ) -> bool: ...
    
    async def register(
        self,
        document_id: str,
        knowledge_base_id: str,
        agent_id: str,
        name: str = ""
    ) -> None: ...
