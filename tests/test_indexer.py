"""
Test suite for EmbeddingIndexer.

Tests per-chunk embedding and upsert, failure isolation, and the bounded
polling completion check that moves a document to VECTORIZED.
"""

import asyncio
import json
from typing import List

import pytest

from knowledge_rag.document_processor import metadata_blob_path
from knowledge_rag.exceptions import VectorStoreError
from knowledge_rag.indexer import EMPTY_CONTENT_PLACEHOLDER, EmbeddingIndexer
from knowledge_rag.models import (
    ChunkEmbeddingMessage,
    DocumentChunk,
    IngestionMetadata,
    ProcessingStatus,
)


def make_chunks(count: int, document_id: str = "doc-1") -> List[DocumentChunk]:
    return [
        DocumentChunk(
            id=f"{document_id}_chunk_{i}",
            document_id=document_id,
            knowledge_base_id="kb-1",
            content=f"chunk number {i} about pricing",
            position=i,
            token_count=6,
        )
        for i in range(count)
    ]


async def seed_metadata(object_store, chunks: List[DocumentChunk], chunk_count: int | None = None) -> None:
    metadata = IngestionMetadata.from_chunks(
        chunks, document_id="doc-1", knowledge_base_id="kb-1", agent_id="agent-1",
        chunk_size=1000, chunk_overlap=200,
    ).to_wire()
    if chunk_count is not None:
        metadata["chunkCount"] = chunk_count
    await object_store.put(
        metadata_blob_path("agent-1", "kb-1", "doc-1"), json.dumps(metadata).encode("utf-8")
    )


@pytest.fixture
def indexer(embedding_api, vector_index, object_store, status_store) -> EmbeddingIndexer:
    """Provide indexer that polls without delay."""
    return EmbeddingIndexer(
        embedding_api=embedding_api,
        vector_index=vector_index,
        object_store=object_store,
        status_store=status_store,
        max_attempts=3,
        retry_delay=0,
    )


class TestEmbedAndIndex:
    """Test suite for EmbeddingIndexer.embed_and_index."""

    async def test_success_upserts_vector(self, indexer, vector_index) -> None:
        """Test a chunk is embedded and stored under its id."""
        chunk = make_chunks(1)[0]

        result = await indexer.embed_and_index(chunk)

        assert result.success
        assert result.vector and len(result.vector) == 8
        record = vector_index.records[chunk.id]
        assert record.document_id == "doc-1"
        assert record.knowledge_base_id == "kb-1"
        assert record.content == chunk.content

    async def test_reindexing_overwrites(self, indexer, vector_index) -> None:
        """Test indexing the same chunk twice keeps one vector."""
        chunk = make_chunks(1)[0]

        await indexer.embed_and_index(chunk)
        await indexer.embed_and_index(chunk)

        assert len(vector_index.records) == 1

    async def test_block_tags_reach_vector_metadata(self, indexer, vector_index) -> None:
        """Test chunk block tags are stored alongside position and token count."""
        chunk = make_chunks(1)[0].model_copy(
            update={"metadata": {"blockType": "table", "isPriceTable": True}}
        )

        await indexer.embed_and_index(chunk)

        assert vector_index.records[chunk.id].metadata == {
            "blockType": "table",
            "isPriceTable": True,
            "position": 0,
            "token_count": 6,
        }

    async def test_failure_is_recorded_not_raised(
        self, indexer, embedding_api, vector_index, status_store
    ) -> None:
        """Test a rate-limited chunk reports failure and leaves the status alone."""
        chunk = make_chunks(1)[0]
        embedding_api.fail_on.add(chunk.content)
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED

        result = await indexer.embed_and_index(chunk)

        assert not result.success
        assert "rate limited" in result.error
        assert vector_index.records == {}
        assert status_store.statuses["doc-1"] is ProcessingStatus.PROCESSED

    async def test_empty_content_uses_placeholder(self, indexer, embedding_api, vector_index) -> None:
        """Test blank chunks embed a placeholder but keep empty content."""
        chunk = make_chunks(1)[0].model_copy(update={"content": ""})

        result = await indexer.embed_and_index(chunk)

        assert result.success
        assert embedding_api.calls == [EMPTY_CONTENT_PLACEHOLDER]
        assert vector_index.records[chunk.id].content == ""


class TestCheckCompletion:
    """Test suite for EmbeddingIndexer.check_completion."""

    async def test_all_chunks_indexed_vectorizes(
        self, indexer, object_store, status_store
    ) -> None:
        """Test chunkCount=3 with 3 vectors indexed becomes VECTORIZED."""
        chunks = make_chunks(3)
        await seed_metadata(object_store, chunks)
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED
        for chunk in chunks:
            await indexer.embed_and_index(chunk)

        status = await indexer.check_completion("doc-1", "kb-1", "agent-1")

        assert status is ProcessingStatus.VECTORIZED
        assert status_store.statuses["doc-1"] is ProcessingStatus.VECTORIZED

    async def test_partial_index_stays_processed(
        self, indexer, object_store, status_store, vector_index
    ) -> None:
        """Test 2 of 3 indexed after every attempt leaves the document PROCESSED."""
        await seed_metadata(object_store, make_chunks(3))
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED
        vector_index.count_sequence = [2, 2, 2]

        status = await indexer.check_completion("doc-1", "kb-1", "agent-1")

        assert status is ProcessingStatus.PROCESSED
        assert status_store.statuses["doc-1"] is ProcessingStatus.PROCESSED
        assert vector_index.count_sequence == []

    async def test_eventually_consistent_count(
        self, indexer, object_store, status_store, vector_index
    ) -> None:
        """Test a count that catches up on a later attempt vectorizes."""
        await seed_metadata(object_store, make_chunks(3))
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED
        vector_index.count_sequence = [2, 3]

        status = await indexer.check_completion("doc-1", "kb-1", "agent-1")

        assert status is ProcessingStatus.VECTORIZED

    async def test_count_error_retried_on_next_attempt(
        self, indexer, object_store, status_store, vector_index
    ) -> None:
        """Test a transient count error does not end the polling loop."""
        await seed_metadata(object_store, make_chunks(3))
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED
        vector_index.count_sequence = [VectorStoreError("connection reset"), 3]

        status = await indexer.check_completion("doc-1", "kb-1", "agent-1")

        assert status is ProcessingStatus.VECTORIZED
        assert status_store.statuses["doc-1"] is ProcessingStatus.VECTORIZED
        assert vector_index.count_sequence == []

    async def test_count_errors_on_every_attempt_defer(
        self, indexer, object_store, status_store, vector_index
    ) -> None:
        """Test persistent count errors leave the document PROCESSED for a later check."""
        await seed_metadata(object_store, make_chunks(3))
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED
        vector_index.count_sequence = [VectorStoreError("down")] * 3

        status = await indexer.check_completion("doc-1", "kb-1", "agent-1")

        assert status is ProcessingStatus.PROCESSED
        assert vector_index.count_sequence == []

    async def test_zero_chunk_count_fails(self, indexer, object_store, status_store) -> None:
        """Test chunkCount=0 marks the document FAILED, never VECTORIZED."""
        await seed_metadata(object_store, make_chunks(3), chunk_count=0)
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED

        status = await indexer.check_completion("doc-1", "kb-1", "agent-1")

        assert status is ProcessingStatus.FAILED
        assert status_store.statuses["doc-1"] is ProcessingStatus.FAILED
        assert status_store.errors["doc-1"]

    async def test_missing_metadata_fails(self, indexer, status_store) -> None:
        """Test missing metadata.json marks the document FAILED."""
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED

        status = await indexer.check_completion("doc-1", "kb-1", "agent-1")

        assert status is ProcessingStatus.FAILED
        assert "not found" in status_store.errors["doc-1"]

    @pytest.mark.parametrize("terminal", [ProcessingStatus.VECTORIZED, ProcessingStatus.FAILED])
    async def test_terminal_status_short_circuits(
        self, indexer, status_store, vector_index, terminal
    ) -> None:
        """Test terminal documents skip the index scan entirely."""
        status_store.statuses["doc-1"] = terminal
        vector_index.count_sequence = [99]

        status = await indexer.check_completion("doc-1", "kb-1", "agent-1")

        assert status is terminal
        assert vector_index.count_sequence == [99]


class TestHandleMessage:
    """Test suite for the per-chunk queue entry point."""

    async def test_concurrent_chunks_vectorize_once(
        self, indexer, object_store, status_store
    ) -> None:
        """Test concurrently completing chunks transition the document exactly once."""
        chunks = make_chunks(3)
        await seed_metadata(object_store, chunks)
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED
        messages = [ChunkEmbeddingMessage.from_chunk(c, agent_id="agent-1") for c in chunks]

        results = await asyncio.gather(*(indexer.handle_message(m) for m in messages))

        assert all(r.success for r in results)
        assert status_store.statuses["doc-1"] is ProcessingStatus.VECTORIZED
        assert status_store.writes.count(ProcessingStatus.VECTORIZED) == 1

    async def test_failed_chunk_skips_completion(
        self, indexer, object_store, status_store, embedding_api
    ) -> None:
        """Test a failed chunk does not trigger a completion check."""
        chunks = make_chunks(1)
        await seed_metadata(object_store, chunks)
        status_store.statuses["doc-1"] = ProcessingStatus.PROCESSED
        embedding_api.fail_on.add(chunks[0].content)

        result = await indexer.handle_message(ChunkEmbeddingMessage.from_chunk(chunks[0], "agent-1"))

        assert not result.success
        assert status_store.statuses["doc-1"] is ProcessingStatus.PROCESSED
