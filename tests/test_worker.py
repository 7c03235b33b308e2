"""
Test suite for IngestionWorker.

Tests payload decoding (dict, JSON, base64 JSON), dispatch by message kind,
dropping of invalid messages and redelivery of failed chunks.
"""

import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge_rag.exceptions import EmbeddingError
from knowledge_rag.models import (
    ChunkEmbeddingMessage,
    DocumentProcessingMessage,
    EmbeddingResult,
    ProcessingResult,
    ProcessingStatus,
)
from knowledge_rag.storage import InMemoryQueue
from knowledge_rag.worker import IngestionWorker, InvalidMessageError, decode_message


PROCESS_MESSAGE = DocumentProcessingMessage(
    document_id="doc-1",
    knowledge_base_id="kb-1",
    agent_id="agent-1",
    storage_path="agent-1/kb-1/doc-1/source/a.txt",
    original_name="a.txt",
).to_wire()

CHUNK_MESSAGE = ChunkEmbeddingMessage(
    chunk_id="doc-1_chunk_0",
    document_id="doc-1",
    knowledge_base_id="kb-1",
    agent_id="agent-1",
    content="hola",
    position=0,
    token_count=2,
).to_wire()


def embedding_result(success: bool) -> EmbeddingResult:
    return EmbeddingResult(
        chunk_id="doc-1_chunk_0",
        document_id="doc-1",
        knowledge_base_id="kb-1",
        success=success,
        error=None if success else "rate limited",
    )


@pytest.fixture
def processor() -> MagicMock:
    """Provide mock DocumentProcessor."""
    processor = MagicMock()
    processor.process = AsyncMock(
        return_value=ProcessingResult(
            document_id="doc-1", knowledge_base_id="kb-1", status=ProcessingStatus.PROCESSED
        )
    )
    return processor


@pytest.fixture
def indexer() -> MagicMock:
    """Provide mock EmbeddingIndexer."""
    indexer = MagicMock()
    indexer.handle_message = AsyncMock(return_value=embedding_result(True))
    return indexer


@pytest.fixture
def worker(processor: MagicMock, indexer: MagicMock) -> IngestionWorker:
    """Provide worker over mocked handlers."""
    return IngestionWorker(processor, indexer)


class TestDecodeMessage:
    """Test suite for decode_message."""

    def test_dict_passthrough(self) -> None:
        assert decode_message({"kind": "x"}) == {"kind": "x"}

    def test_json_bytes(self) -> None:
        assert decode_message(json.dumps(CHUNK_MESSAGE).encode("utf-8")) == CHUNK_MESSAGE

    def test_base64_json(self) -> None:
        encoded = base64.b64encode(json.dumps(PROCESS_MESSAGE).encode("utf-8")).decode("ascii")

        assert decode_message(encoded) == PROCESS_MESSAGE

    def test_garbage_rejected(self) -> None:
        with pytest.raises(InvalidMessageError):
            decode_message("definitely not json")

    def test_non_object_rejected(self) -> None:
        with pytest.raises(InvalidMessageError):
            decode_message("[1, 2, 3]")


class TestIngestionWorker:
    """Test suite for IngestionWorker.on_message."""

    async def test_dispatches_document_processing(self, worker, processor, indexer) -> None:
        assert await worker.on_message(PROCESS_MESSAGE) is True

        message = processor.process.call_args.args[0]
        assert isinstance(message, DocumentProcessingMessage)
        assert message.storage_path == "agent-1/kb-1/doc-1/source/a.txt"
        indexer.handle_message.assert_not_called()

    async def test_dispatches_chunk_embedding(self, worker, processor, indexer) -> None:
        assert await worker.on_message(json.dumps(CHUNK_MESSAGE)) is True

        message = indexer.handle_message.call_args.args[0]
        assert isinstance(message, ChunkEmbeddingMessage)
        assert message.chunk_id == "doc-1_chunk_0"
        processor.process.assert_not_called()

    @pytest.mark.parametrize(
        "raw",
        [
            "{broken",
            {"kind": "unknown"},
            {"kind": "embed_chunk", "chunkId": "only-an-id"},
        ],
    )
    async def test_invalid_messages_dropped(self, worker, processor, indexer, raw) -> None:
        """Test invalid payloads are dropped instead of redelivered forever."""
        assert await worker.on_message(raw) is False

        processor.process.assert_not_called()
        indexer.handle_message.assert_not_called()

    async def test_failed_chunk_raises_for_redelivery(self, worker, indexer) -> None:
        indexer.handle_message.return_value = embedding_result(False)

        with pytest.raises(EmbeddingError):
            await worker.on_message(CHUNK_MESSAGE)

    async def test_processing_errors_propagate(self, worker, processor) -> None:
        processor.process.side_effect = RuntimeError("extraction failed")

        with pytest.raises(RuntimeError):
            await worker.on_message(PROCESS_MESSAGE)

    async def test_run_drains_queue(self, worker, processor, indexer) -> None:
        queue = InMemoryQueue()
        await queue.enqueue(PROCESS_MESSAGE)
        await queue.enqueue(CHUNK_MESSAGE)

        handled = await worker.run(queue)

        assert handled == 2
        processor.process.assert_awaited_once()
        indexer.handle_message.assert_awaited_once()
