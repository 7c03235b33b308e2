"""
RAG Pipeline

Facade wiring the ingestion stages and the retrieval orchestrator around one
set of collaborators: submit documents, drive the ingestion queue, poll a
document's status and search a knowledge base.
"""
import uuid
from pathlib import PurePath
from typing import List
from loguru import logger

from knowledge_rag.chat_service import ChatService
from knowledge_rag.chunking import ParagraphChunker
from knowledge_rag.document_processor import DocumentProcessor, document_prefix
from knowledge_rag.embedding_service import EmbeddingService
from knowledge_rag.exceptions import EmptyInputError
from knowledge_rag.indexer import EmbeddingIndexer
from knowledge_rag.interfaces import (
    ChatAPI,
    EmbeddingAPI,
    MetadataStore,
    ObjectStore,
    TextExtractor,
    VectorIndex,
)
from knowledge_rag.metadata_store import DocumentStatusStore
from knowledge_rag.models import (
    DocumentProcessingMessage,
    ProcessingStatus,
    RankedResults,
    SearchResultItem,
)
from knowledge_rag.query_understanding import LLMQueryClassifier, QueryUnderstandingService
from knowledge_rag.reranker import Reranker
from knowledge_rag.retriever import RetrievalOrchestrator, format_context
from knowledge_rag.storage import InMemoryQueue, LocalObjectStore
from knowledge_rag.text_extractor import DocumentTextExtractor
from knowledge_rag.vector_store import VectorStore
from knowledge_rag.worker import IngestionWorker


class RAGPipeline:
    """
    Complete RAG pipeline for knowledge base documents
    
    Orchestrates:
    1. Document submission (blob upload, PENDING status, processing message)
    2. Extraction, chunking and chunk persistence
    3. Per-chunk embedding, vector upsert and completion tracking
    4. Intent-aware search with fan-out and re-ranking
    
    Every collaborator can be injected; missing ones are built from
    ``rag_config`` (MongoDB Atlas, OpenAI, local filesystem, in-memory queue).
    """
    
    def __init__(
        self,
        object_store: ObjectStore | None = None,
        queue: InMemoryQueue | None = None,
        status_store: MetadataStore | None = None,
        vector_index: VectorIndex | None = None,
        embedding_api: EmbeddingAPI | None = None,
        chat_api: ChatAPI | None = None,
        text_extractor: TextExtractor | None = None,
        chunker: ParagraphChunker | None = None,
        use_llm_analysis: bool = True
    ):
        """
        Initialize RAG pipeline with optional custom components
        
        Args:
            object_store: Blob store for uploads, chunks and metadata
            queue: Ingestion queue carrying both message kinds
            status_store: Document status store
            vector_index: Vector index for chunk embeddings
            embedding_api: Embedding provider
            chat_api: Chat model for query analysis
            text_extractor: Document text extractor
            chunker: Paragraph chunker
            use_llm_analysis: Analyse queries with the chat model before
                falling back to heuristics
        """
        self.object_store = object_store or LocalObjectStore()
        self.queue = queue or InMemoryQueue(name="ingestion")
        self.status_store = status_store or DocumentStatusStore()
        self.vector_index = vector_index or VectorStore()
        self.embedding_api = embedding_api or EmbeddingService()
        
        llm_classifier = None
        if use_llm_analysis:
            llm_classifier = LLMQueryClassifier(chat_api or ChatService())
        
        self.processor = DocumentProcessor(
            object_store=self.object_store,
            embedding_queue=self.queue,
            status_store=self.status_store,
            text_extractor=text_extractor or DocumentTextExtractor(),
            chunker=chunker
        )
        self.indexer = EmbeddingIndexer(
            embedding_api=self.embedding_api,
            vector_index=self.vector_index,
            object_store=self.object_store,
            status_store=self.status_store
        )
        self.worker = IngestionWorker(self.processor, self.indexer)
        self.retriever = RetrievalOrchestrator(
            embedding_api=self.embedding_api,
            vector_index=self.vector_index,
            understanding_service=QueryUnderstandingService(llm_classifier=llm_classifier),
            reranker=Reranker()
        )
        
        logger.info(f"Initialized RAGPipeline (LLM query analysis: {use_llm_analysis})")
    
    async def submit_document(
        self,
        data: bytes,
        filename: str,
        knowledge_base_id: str,
        agent_id: str,
        content_type: str = "text/plain",
        document_id: str | None = None
    ) -> str:
        """
        Store an uploaded document and queue it for processing
        
        Args:
            data: Raw document bytes
            filename: Original file name
            knowledge_base_id: Target knowledge base
            agent_id: Owning agent
            content_type: MIME type of the upload
            document_id: Explicit id (generated when omitted)
            
        Returns:
            The document id
        """
        if not data:
            raise EmptyInputError(f"Uploaded document {filename} is empty")
        
        document_id = document_id or uuid.uuid4().hex
        name = PurePath(filename).name or "document"
        storage_path = f"{document_prefix(agent_id, knowledge_base_id, document_id)}/source/{name}"
        
        try:
            await self.object_store.put(storage_path, data)
            await self.status_store.register(document_id, knowledge_base_id, agent_id, name)
            message = DocumentProcessingMessage(
                document_id=document_id,
                knowledge_base_id=knowledge_base_id,
                agent_id=agent_id,
                storage_path=storage_path,
                original_name=name,
                content_type=content_type
            )
            await self.queue.enqueue(message.to_wire())
        except Exception as e:
            logger.error(f"Error submitting document {name}: {str(e)}")
            raise
        
        logger.info(f"Submitted document {document_id} ({name}) to knowledge base {knowledge_base_id}")
        return document_id
    
    async def process_pending(self) -> int:
        """Drain the ingestion queue; returns the number of handled deliveries"""
        return await self.worker.run(self.queue)
    
    async def search(
        self,
        query: str,
        knowledge_base_id: str,
        limit: int | None = None,
        threshold: float | None = None
    ) -> RankedResults:
        return await self.retriever.search(query, knowledge_base_id, limit=limit, threshold=threshold)
    
    async def get_document_status(self, document_id: str) -> ProcessingStatus | None:
        return await self.status_store.get_status(document_id)
    
    async def delete_document(self, document_id: str) -> int:
        """
        Remove every indexed vector of a document
        
        Args:
            document_id: Document to remove
            
        Returns:
            Number of vectors deleted
        """
        try:
            deleted = await self.vector_index.delete({"document_id": document_id})
            logger.info(f"Deleted {deleted} vectors for document {document_id}")
            return deleted
        except Exception as e:
            logger.error(f"Error deleting document {document_id}: {str(e)}")
            raise
    
    @staticmethod
    def format_context(results: RankedResults | List[SearchResultItem]) -> str:
        return format_context(results)
