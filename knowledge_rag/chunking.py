"""
Paragraph Chunking

Splits normalized document text into bounded, overlapping chunks. Paragraphs
are never split: a chunk grows paragraph by paragraph until the next one
would push it past ``chunk_size``, then the tail of the emitted chunk seeds
the next one so neighbouring chunks share context.
"""
from typing import List
from loguru import logger

from knowledge_rag.config import rag_config
from knowledge_rag.exceptions import EmptyInputError
from knowledge_rag.models import DocumentChunk, chunk_id_for, estimate_token_count
from knowledge_rag.text_analysis import normalize_text, split_paragraphs


PARAGRAPH_SEPARATOR = "\n\n"


class ParagraphChunker:
    """
    Deterministic paragraph-granular chunker
    
    The same text and parameters always yield identical chunk boundaries
    and ids, so re-running ingestion after a redelivered message overwrites
    rather than duplicates.
    """
    
    def __init__(self, chunk_size: int | None = None, chunk_overlap: int | None = None):
        """
        Initialize the chunker
        
        Args:
            chunk_size: Target maximum chunk length in characters (default from config)
            chunk_overlap: Characters of the previous chunk carried into the next (default from config)
        """
        self.chunk_size = chunk_size if chunk_size is not None else rag_config.chunk_size
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else rag_config.chunk_overlap
        
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {self.chunk_overlap}"
            )
        
        logger.info(
            f"Initialized ParagraphChunker with chunk_size={self.chunk_size}, "
            f"overlap={self.chunk_overlap}"
        )
    
    def chunk(
        self,
        text: str,
        document_id: str,
        knowledge_base_id: str,
        normalize: bool = True
    ) -> List[DocumentChunk]:
        """
        Chunk text into overlapping segments
        
        Args:
            text: Document text
            document_id: Owning document
            knowledge_base_id: Owning knowledge base
            normalize: Apply text normalization first
            
        Returns:
            Chunks ordered by position
            
        Raises:
            EmptyInputError: When the text holds no paragraphs
        """
        if normalize:
            text = normalize_text(text)
        
        paragraphs = split_paragraphs(text)
        if not paragraphs:
            raise EmptyInputError(f"Document {document_id} has no text to chunk")
        
        chunks: List[DocumentChunk] = []
        buffer = ""
        
        for paragraph in paragraphs:
            if buffer and len(buffer) + len(paragraph) > self.chunk_size:
                emitted = self._emit(chunks, buffer, document_id, knowledge_base_id)
                # seed with the tail of the emitted content
                overlap = emitted[-self.chunk_overlap:] if self.chunk_overlap and emitted else ""
                buffer = f"{overlap}{PARAGRAPH_SEPARATOR}{paragraph}" if overlap else paragraph
            else:
                buffer = f"{buffer}{PARAGRAPH_SEPARATOR}{paragraph}" if buffer else paragraph
        
        self._emit(chunks, buffer, document_id, knowledge_base_id)
        
        if not chunks:
            raise EmptyInputError(f"Document {document_id} produced no chunks")
        
        logger.info(
            f"Chunked document {document_id} into {len(chunks)} chunks "
            f"(knowledge base {knowledge_base_id})"
        )
        return chunks
    
    def _emit(
        self,
        chunks: List[DocumentChunk],
        buffer: str,
        document_id: str,
        knowledge_base_id: str
    ) -> str:
        content = buffer.strip()
        if not content:
            return content
        
        position = len(chunks)
        chunks.append(
            DocumentChunk(
                id=chunk_id_for(document_id, position),
                document_id=document_id,
                knowledge_base_id=knowledge_base_id,
                content=content,
                position=position,
                token_count=estimate_token_count(content),
            )
        )
        return content
