"""
Knowledge base RAG pipeline using LlamaIndex with MongoDB Vector Search

This package turns uploaded documents into overlapping paragraph chunks,
embeds and indexes them chunk by chunk with idempotent completion tracking,
and serves intent-aware semantic search over a knowledge base.

Features:
- Paragraph chunking with character overlap
- Queue-driven, at-least-once ingestion (process document, embed chunk)
- Document status tracking (pending → processing → processed → vectorized)
- LLM query understanding with heuristic fallback
- Weighted multi-query fan-out, re-ranking and diversification
"""

from knowledge_rag.pipeline import RAGPipeline
from knowledge_rag.retriever import RetrievalOrchestrator, format_context
from knowledge_rag.reranker import Reranker
from knowledge_rag.query_understanding import (
    HeuristicQueryClassifier,
    LLMQueryClassifier,
    QueryUnderstandingService,
)
from knowledge_rag.chunking import ParagraphChunker
from knowledge_rag.document_processor import DocumentProcessor
from knowledge_rag.indexer import EmbeddingIndexer
from knowledge_rag.worker import IngestionWorker
from knowledge_rag.models import ProcessingStatus

__all__ = [
    "RAGPipeline",
    "RetrievalOrchestrator",
    "format_context",
    "Reranker",
    "HeuristicQueryClassifier",
    "LLMQueryClassifier",
    "QueryUnderstandingService",
    "ParagraphChunker",
    "DocumentProcessor",
    "EmbeddingIndexer",
    "IngestionWorker",
    "ProcessingStatus"
]
