"""
Document processing

First ingestion stage: turns one uploaded document into chunks, persists
them with the document's ingestion metadata and fans the chunks out to the
embedding queue. Re-running it for the same message rewrites the same
blobs and enqueues the same chunk ids.
"""
import json
from typing import List
from loguru import logger

from knowledge_rag.chunking import ParagraphChunker
from knowledge_rag.exceptions import ExtractionError, truncate_error
from knowledge_rag.interfaces import MetadataStore, ObjectStore, Queue, TextExtractor
from knowledge_rag.models import (
    ChunkEmbeddingMessage,
    DocumentChunk,
    DocumentProcessingMessage,
    IngestionMetadata,
    ProcessingResult,
    ProcessingStatus,
)
from knowledge_rag.text_analysis import block_metadata, normalize_text


METADATA_FILENAME = "metadata.json"


def document_prefix(agent_id: str, knowledge_base_id: str, document_id: str) -> str:
    return f"{agent_id}/{knowledge_base_id}/{document_id}"


def chunk_blob_path(agent_id: str, knowledge_base_id: str, document_id: str, chunk_id: str) -> str:
    return f"{document_prefix(agent_id, knowledge_base_id, document_id)}/{chunk_id}.txt"


def metadata_blob_path(agent_id: str, knowledge_base_id: str, document_id: str) -> str:
    return f"{document_prefix(agent_id, knowledge_base_id, document_id)}/{METADATA_FILENAME}"


class DocumentProcessor:
    """
    Extract, normalize, chunk, persist and enqueue one document
    
    Any failure is document-fatal: the status moves to FAILED with the
    (truncated) reason and the error is re-raised to the queue consumer.
    """
    
    def __init__(
        self,
        object_store: ObjectStore,
        embedding_queue: Queue,
        status_store: MetadataStore,
        text_extractor: TextExtractor,
        chunker: ParagraphChunker | None = None
    ):
        self.object_store = object_store
        self.embedding_queue = embedding_queue
        self.status_store = status_store
        self.text_extractor = text_extractor
        self.chunker = chunker or ParagraphChunker()
    
    async def process(self, message: DocumentProcessingMessage) -> ProcessingResult:
        """
        Process a queued document
        
        Args:
            message: Document processing request
            
        Returns:
            Result with the PROCESSED status and the chunks produced
        """
        document_id = message.document_id
        logger.info(
            f"Processing document {document_id} for knowledge base {message.knowledge_base_id}"
        )
        
        try:
            if not await self.status_store.set_status(document_id, ProcessingStatus.PROCESSING):
                current = await self.status_store.get_status(document_id)
                if current is not None and current.is_terminal:
                    logger.info(f"Document {document_id} already {current.value}; skipping")
                    return ProcessingResult(
                        document_id=document_id,
                        knowledge_base_id=message.knowledge_base_id,
                        status=current
                    )
            
            data = await self.object_store.get(message.storage_path)
            text = self.text_extractor.extract(data, message.content_type, message.original_name)
            if not text or not text.strip():
                raise ExtractionError(f"No text could be extracted from document {document_id}")
            
            text = normalize_text(text)
            chunks = self.chunker.chunk(
                text,
                document_id=document_id,
                knowledge_base_id=message.knowledge_base_id,
                normalize=False
            )
            chunks = [
                chunk.model_copy(update={"metadata": {**chunk.metadata, **block_metadata(chunk.content)}})
                for chunk in chunks
            ]
            
            await self._save_chunks(chunks, message)
            await self.status_store.set_status(document_id, ProcessingStatus.PROCESSED)
            await self._enqueue_chunks(chunks, message.agent_id)
            
            logger.info(f"Document {document_id} processed into {len(chunks)} chunks")
            return ProcessingResult(
                document_id=document_id,
                knowledge_base_id=message.knowledge_base_id,
                status=ProcessingStatus.PROCESSED,
                chunks=chunks
            )
        except Exception as e:
            logger.error(f"Error processing document {document_id}: {str(e)}")
            await self._mark_failed(document_id, e)
            raise
    
    async def _mark_failed(self, document_id: str, error: Exception) -> None:
        try:
            await self.status_store.set_status(
                document_id, ProcessingStatus.FAILED, truncate_error(error)
            )
        except Exception as status_error:
            # the processing error is re-raised by the caller
            logger.error(
                f"Error marking document {document_id} as failed: {str(status_error)}"
            )
    
    async def _save_chunks(self, chunks: List[DocumentChunk], message: DocumentProcessingMessage) -> None:
        for chunk in chunks:
            path = chunk_blob_path(
                message.agent_id, message.knowledge_base_id, message.document_id, chunk.id
            )
            await self.object_store.put(path, chunk.content.encode("utf-8"))
        
        metadata = IngestionMetadata.from_chunks(
            chunks,
            document_id=message.document_id,
            knowledge_base_id=message.knowledge_base_id,
            agent_id=message.agent_id,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap
        )
        await self.object_store.put(
            metadata_blob_path(message.agent_id, message.knowledge_base_id, message.document_id),
            json.dumps(metadata.to_wire(), indent=2).encode("utf-8")
        )
        logger.debug(f"Saved {len(chunks)} chunks and metadata for document {message.document_id}")
    
    async def _enqueue_chunks(self, chunks: List[DocumentChunk], agent_id: str) -> None:
        for chunk in chunks:
            await self.embedding_queue.enqueue(
                ChunkEmbeddingMessage.from_chunk(chunk, agent_id).to_wire()
            )
        logger.debug(f"Enqueued {len(chunks)} chunks for embedding")
