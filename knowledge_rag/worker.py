"""
Ingestion queue worker

Decodes raw queue payloads and dispatches them to the document processor or
the embedding indexer. Delivery is at-least-once; both handlers are
idempotent, so redelivered messages are safe.
"""
import base64
import binascii
import json
from typing import Any, Dict, Union
from loguru import logger
from pydantic import ValidationError

from knowledge_rag.document_processor import DocumentProcessor
from knowledge_rag.exceptions import EmbeddingError
from knowledge_rag.indexer import EmbeddingIndexer
from knowledge_rag.models import ChunkEmbeddingMessage, DocumentProcessingMessage
from knowledge_rag.storage import InMemoryQueue


RawMessage = Union[Dict[str, Any], str, bytes]


class InvalidMessageError(ValueError):
    """Payload that can never be processed, however often it is redelivered"""


def decode_message(raw: RawMessage) -> Dict[str, Any]:
    """
    Decode a queue payload into a dict
    
    Accepts a dict, a JSON string, or base64-encoded JSON (as some brokers
    deliver message bodies).
    
    Raises:
        InvalidMessageError: Payload is not a JSON object
    """
    if isinstance(raw, dict):
        return raw
    
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    text = text.strip()
    
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        try:
            payload = json.loads(base64.b64decode(text, validate=True).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidMessageError(f"Message is neither JSON nor base64 JSON: {str(e)}") from e
    
    if not isinstance(payload, dict):
        raise InvalidMessageError("Message payload is not a JSON object")
    return payload


def parse_message(raw: RawMessage) -> Union[DocumentProcessingMessage, ChunkEmbeddingMessage]:
    payload = decode_message(raw)
    kind = payload.get("kind")
    try:
        if kind == "process_document":
            return DocumentProcessingMessage.model_validate(payload)
        if kind == "embed_chunk":
            return ChunkEmbeddingMessage.model_validate(payload)
    except ValidationError as e:
        raise InvalidMessageError(f"Invalid {kind} message: {str(e)}") from e
    raise InvalidMessageError(f"Unknown message kind: {kind!r}")


class IngestionWorker:
    """Routes ingestion messages to their handler"""
    
    def __init__(self, processor: DocumentProcessor, indexer: EmbeddingIndexer):
        self.processor = processor
        self.indexer = indexer
    
    async def on_message(self, raw: RawMessage) -> bool:
        """
        Handle one delivery
        
        Args:
            raw: Queue payload
            
        Returns:
            True when handled, False when the message was invalid and dropped
            
        Raises:
            EmbeddingError: The chunk failed to embed or index; redeliver it
        """
        try:
            message = parse_message(raw)
        except InvalidMessageError as e:
            logger.error(f"Dropping invalid message: {str(e)}")
            return False
        
        if isinstance(message, DocumentProcessingMessage):
            await self.processor.process(message)
            return True
        
        result = await self.indexer.handle_message(message)
        if not result.success:
            raise EmbeddingError(f"Chunk {result.chunk_id} failed: {result.error}")
        return True
    
    async def run(self, queue: InMemoryQueue, stop_when_empty: bool = True) -> int:
        """Consume ``queue`` until it drains; returns the number of handled deliveries"""
        logger.info(f"Worker consuming queue {queue.name}")
        return await queue.consume(self.on_message, stop_when_empty=stop_when_empty)
