"""
Data model for ingestion and retrieval

Persisted and queued shapes (ingestion metadata, queue messages) serialize
with camelCase keys so blobs and messages keep the platform's wire layout;
Python code works with the snake_case attribute names.
"""
import math
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


TOKENS_PER_WORD = 1.33


def estimate_token_count(text: str) -> int:
    """Approximate token count as ``ceil(words * 1.33)``"""
    return math.ceil(len(text.split()) * TOKENS_PER_WORD)


def chunk_id_for(document_id: str, position: int) -> str:
    return f"{document_id}_chunk_{position}"


class WireModel(BaseModel):
    """Base for shapes that cross a storage or queue boundary"""
    
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    
    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProcessingStatus(str, Enum):
    """
    Document processing state machine
    
    Forward transitions only, except FAILED which is reachable from every
    state and never left. VECTORIZED is the terminal success state.
    """
    
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    VECTORIZED = "vectorized"
    FAILED = "failed"
    
    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.VECTORIZED, ProcessingStatus.FAILED)
    
    def can_transition_to(self, target: "ProcessingStatus") -> bool:
        if self is ProcessingStatus.FAILED:
            return False
        if target is ProcessingStatus.FAILED:
            return True
        if self is ProcessingStatus.VECTORIZED:
            return False
        return _STATUS_ORDER.index(target) > _STATUS_ORDER.index(self)
    
    @classmethod
    def sources_for(cls, target: "ProcessingStatus") -> List["ProcessingStatus"]:
        """States from which ``target`` may legally be entered"""
        return [status for status in cls if status.can_transition_to(target)]


_STATUS_ORDER = [
    ProcessingStatus.PENDING,
    ProcessingStatus.PROCESSING,
    ProcessingStatus.PROCESSED,
    ProcessingStatus.VECTORIZED,
]


class SearchType(str, Enum):
    SIMPLE = "simple"
    COMPARATIVE = "comparative"
    SUPERLATIVE = "superlative"
    ANALYTICAL = "analytical"
    LIST_ALL = "list_all"


class Complexity(str, Enum):
    SIMPLE = "simple"
    COMPLEX = "complex"


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

class DocumentChunk(WireModel):
    """Immutable segment of a document's normalized text"""
    
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)
    
    id: str
    document_id: str
    knowledge_base_id: str
    content: str
    position: int
    token_count: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChunkSummary(WireModel):
    id: str
    position: int
    token_count: int


class IngestionMetadata(WireModel):
    """
    Per-document record written once after chunking
    
    ``chunk_count`` is the number of vectors the completion check expects.
    """
    
    document_id: str
    knowledge_base_id: str
    agent_id: str
    chunk_count: int = 0
    chunk_size: int
    chunk_overlap: int
    chunks: List[ChunkSummary] = Field(default_factory=list)
    
    @classmethod
    def from_chunks(
        cls,
        chunks: List[DocumentChunk],
        document_id: str,
        knowledge_base_id: str,
        agent_id: str,
        chunk_size: int,
        chunk_overlap: int
    ) -> "IngestionMetadata":
        return cls(
            document_id=document_id,
            knowledge_base_id=knowledge_base_id,
            agent_id=agent_id,
            chunk_count=len(chunks),
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            chunks=[
                ChunkSummary(id=c.id, position=c.position, token_count=c.token_count)
                for c in chunks
            ],
        )


class IndexedVector(BaseModel):
    """One vector index record; upserted by chunk id"""
    
    chunk_id: str
    document_id: str
    knowledge_base_id: str
    content: str
    vector: List[float]
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EmbeddingResult(BaseModel):
    chunk_id: str
    document_id: str
    knowledge_base_id: str
    success: bool
    vector: Optional[List[float]] = None
    error: Optional[str] = None


class ProcessingResult(BaseModel):
    document_id: str
    knowledge_base_id: str
    status: ProcessingStatus
    chunks: List[DocumentChunk] = Field(default_factory=list)
    error: Optional[str] = None


class DocumentProcessingMessage(WireModel):
    """Queued request to extract and chunk one uploaded document"""
    
    kind: Literal["process_document"] = "process_document"
    document_id: str
    knowledge_base_id: str
    agent_id: str
    storage_path: str
    original_name: str = ""
    content_type: str = "text/plain"


class ChunkEmbeddingMessage(WireModel):
    """Queued request to embed and index one chunk"""
    
    kind: Literal["embed_chunk"] = "embed_chunk"
    chunk_id: str
    document_id: str
    knowledge_base_id: str
    agent_id: str
    content: str
    position: int
    token_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    
    @classmethod
    def from_chunk(cls, chunk: DocumentChunk, agent_id: str) -> "ChunkEmbeddingMessage":
        return cls(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            knowledge_base_id=chunk.knowledge_base_id,
            agent_id=agent_id,
            content=chunk.content,
            position=chunk.position,
            token_count=chunk.token_count,
            metadata=dict(chunk.metadata),
        )
    
    def to_chunk(self) -> DocumentChunk:
        return DocumentChunk(
            id=self.chunk_id,
            document_id=self.document_id,
            knowledge_base_id=self.knowledge_base_id,
            content=self.content,
            position=self.position,
            token_count=self.token_count or estimate_token_count(self.content),
            metadata=dict(self.metadata),
        )


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

class QueryUnderstanding(BaseModel):
    """Per-query analysis; never persisted"""
    
    intents: Set[str] = Field(default_factory=set)
    entities: List[str] = Field(default_factory=list)
    modifiers: List[str] = Field(default_factory=list)
    requires_calculation: bool = False
    complexity: Complexity = Complexity.SIMPLE
    language: str = "es"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    search_type: SearchType = SearchType.SIMPLE
    suggested_queries: List[str] = Field(default_factory=list)
    
    @property
    def is_superlative(self) -> bool:
        return (
            self.search_type is SearchType.SUPERLATIVE
            or SearchType.SUPERLATIVE.value in self.intents
        )
    
    @property
    def is_comparative(self) -> bool:
        return self.search_type is SearchType.COMPARATIVE
    
    @property
    def is_list_intent(self) -> bool:
        return (
            self.search_type is SearchType.LIST_ALL
            or SearchType.LIST_ALL.value in self.intents
            or "lista" in self.modifiers
        )


class WeightedQuery(BaseModel):
    text: str
    weight: float
    tag: str


class SearchHit(BaseModel):
    """One match returned by the vector index"""
    
    chunk_id: str
    document_id: str
    knowledge_base_id: str = ""
    content: str = ""
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ScoredChunk(BaseModel):
    """A hit paired with its re-ranking score; the hit itself is left untouched"""
    
    model_config = ConfigDict(frozen=True)
    
    hit: SearchHit
    base_similarity: float
    adjusted_score: float
    
    @property
    def chunk_id(self) -> str:
        return self.hit.chunk_id
    
    @property
    def document_id(self) -> str:
        return self.hit.document_id
    
    @property
    def content(self) -> str:
        return self.hit.content
    
    @property
    def metadata(self) -> Dict[str, Any]:
        return self.hit.metadata


class SearchResultItem(BaseModel):
    chunk_id: str
    document_id: str
    content: str
    similarity: float
    relevance_score: int
    excerpt: str = ""
    query_tag: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RankedResults(BaseModel):
    query: str
    knowledge_base_id: str
    understanding: Optional[QueryUnderstanding] = None
    results: List[SearchResultItem] = Field(default_factory=list)
    total_results: int = 0
