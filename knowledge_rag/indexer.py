"""
Embedding indexer

Second ingestion stage, one queue message per chunk: embed the chunk,
upsert its vector, then check whether the whole document is indexed.
Chunks of a document are processed independently and possibly
concurrently, so the completion check is idempotent and only ever moves
the status forward.
"""
import asyncio
import json
from loguru import logger

from knowledge_rag.config import rag_config
from knowledge_rag.document_processor import metadata_blob_path
from knowledge_rag.exceptions import MetadataNotFoundError, truncate_error
from knowledge_rag.interfaces import EmbeddingAPI, MetadataStore, ObjectStore, VectorIndex
from knowledge_rag.models import (
    ChunkEmbeddingMessage,
    DocumentChunk,
    EmbeddingResult,
    IndexedVector,
    IngestionMetadata,
    ProcessingStatus,
)


EMPTY_CONTENT_PLACEHOLDER = "[empty content]"


class EmbeddingIndexer:
    """
    Embed chunks into the vector index and track document completion
    
    Per-chunk failures are reported in the returned ``EmbeddingResult`` and
    never touch the document status; the caller decides whether to retry.
    """
    
    def __init__(
        self,
        embedding_api: EmbeddingAPI,
        vector_index: VectorIndex,
        object_store: ObjectStore,
        status_store: MetadataStore,
        max_attempts: int | None = None,
        retry_delay: float | None = None
    ):
        """
        Initialize the indexer
        
        Args:
            embedding_api: Text embedding provider
            vector_index: Vector index to upsert into
            object_store: Blob store holding ``metadata.json``
            status_store: Document status store
            max_attempts: Completion check polls (default from config)
            retry_delay: Seconds between polls (default from config)
        """
        self.embedding_api = embedding_api
        self.vector_index = vector_index
        self.object_store = object_store
        self.status_store = status_store
        self.max_attempts = max_attempts if max_attempts is not None else rag_config.completion_max_attempts
        self.retry_delay = retry_delay if retry_delay is not None else rag_config.completion_retry_delay
    
    async def embed_and_index(self, chunk: DocumentChunk) -> EmbeddingResult:
        """
        Embed one chunk and upsert it into the vector index
        
        Args:
            chunk: Chunk to index
            
        Returns:
            Result with the vector on success or the error message on failure
        """
        logger.info(f"Generating embedding for chunk {chunk.id} of document {chunk.document_id}")
        
        try:
            text = chunk.content if chunk.content.strip() else EMPTY_CONTENT_PLACEHOLDER
            vector = await self.embedding_api.embed(text)
            
            await self.vector_index.upsert([
                IndexedVector(
                    chunk_id=chunk.id,
                    document_id=chunk.document_id,
                    knowledge_base_id=chunk.knowledge_base_id,
                    content=chunk.content,
                    vector=vector,
                    metadata={
                        **chunk.metadata,
                        "position": chunk.position,
                        "token_count": chunk.token_count
                    }
                )
            ])
        except Exception as e:
            logger.error(f"Error indexing chunk {chunk.id}: {str(e)}")
            return EmbeddingResult(
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                knowledge_base_id=chunk.knowledge_base_id,
                success=False,
                error=truncate_error(e)
            )
        
        return EmbeddingResult(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            knowledge_base_id=chunk.knowledge_base_id,
            success=True,
            vector=vector
        )
    
    async def check_completion(
        self,
        document_id: str,
        knowledge_base_id: str,
        agent_id: str
    ) -> ProcessingStatus | None:
        """
        Mark the document VECTORIZED once every expected chunk is indexed
        
        The index may lag behind recent writes, so the count is polled a
        bounded number of times; if it never reaches the expected total the
        status is left alone and a later chunk's check picks it up.
        
        Args:
            document_id: Document to check
            knowledge_base_id: Owning knowledge base
            agent_id: Owning agent (part of the metadata blob path)
            
        Returns:
            The document status after the check, None if unknown
        """
        current = await self.status_store.get_status(document_id)
        if current is not None and current.is_terminal:
            logger.debug(f"Document {document_id} already {current.value}; skipping completion check")
            return current
        
        try:
            metadata = await self._load_metadata(agent_id, knowledge_base_id, document_id)
        except Exception as e:
            logger.error(f"Error reading ingestion metadata for document {document_id}: {str(e)}")
            await self.status_store.set_status(
                document_id,
                ProcessingStatus.FAILED,
                truncate_error(f"Error reading ingestion metadata: {e}")
            )
            return ProcessingStatus.FAILED
        
        expected = metadata.chunk_count
        if expected <= 0:
            logger.warning(f"Document {document_id} has no chunks in its metadata; marking as failed")
            await self.status_store.set_status(
                document_id,
                ProcessingStatus.FAILED,
                "Document has no processed chunks according to its ingestion metadata"
            )
            return ProcessingStatus.FAILED
        
        for attempt in range(1, self.max_attempts + 1):
            try:
                indexed = await self.vector_index.count({"document_id": document_id})
            except Exception as e:
                logger.warning(
                    f"Document {document_id}: attempt {attempt}: error counting indexed chunks: {str(e)}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)
                continue
            logger.debug(
                f"Document {document_id}: attempt {attempt}: {indexed}/{expected} chunks indexed"
            )
            if indexed >= expected:
                await self.status_store.set_status(document_id, ProcessingStatus.VECTORIZED)
                logger.info(f"Document {document_id} fully vectorized ({indexed}/{expected})")
                return ProcessingStatus.VECTORIZED
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_delay)
        
        logger.info(f"Document {document_id} not fully vectorized yet; deferring to a later check")
        return current
    
    async def handle_message(self, message: ChunkEmbeddingMessage) -> EmbeddingResult:
        """
        Queue entry point for one chunk
        
        Args:
            message: Chunk embedding request
            
        Returns:
            The chunk's embedding result; completion is only checked on success
        """
        result = await self.embed_and_index(message.to_chunk())
        if result.success:
            try:
                await self.check_completion(
                    message.document_id, message.knowledge_base_id, message.agent_id
                )
            except Exception as e:
                # completion is re-checked by the next chunk of the document
                logger.error(f"Error checking completion of document {message.document_id}: {str(e)}")
        return result
    
    async def _load_metadata(self, agent_id: str, knowledge_base_id: str, document_id: str) -> IngestionMetadata:
        path = metadata_blob_path(agent_id, knowledge_base_id, document_id)
        try:
            raw = await self.object_store.get(path)
        except FileNotFoundError as e:
            raise MetadataNotFoundError(f"Ingestion metadata not found at {path}") from e
        return IngestionMetadata.model_validate(json.loads(raw.decode("utf-8")))
