"""
MongoDB Vector Store Integration

Stores one vector per chunk in MongoDB Atlas and serves filtered
``$vectorSearch`` queries. Records are keyed by chunk id and written with
upserts, so re-embedding a chunk after a redelivered message overwrites
the previous vector instead of appending a duplicate.
"""
import asyncio
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from loguru import logger
import pymongo
from pymongo import MongoClient, ReplaceOne
from pymongo.errors import PyMongoError
from pymongo.operations import SearchIndexModel

from knowledge_rag.config import rag_config
from knowledge_rag.exceptions import VectorStoreError
from knowledge_rag.models import IndexedVector, SearchHit


EMBEDDING_KEY = "embedding"
TEXT_KEY = "text"
METADATA_KEY = "metadata"
FILTER_FIELDS = ("knowledge_base_id", "document_id")


class VectorStore:
    """
    MongoDB Atlas Vector Store with knowledge base / document filtering
    
    Each record looks like ``{_id, id, text, embedding, metadata: {chunk_id,
    document_id, knowledge_base_id, timestamp, ...}}``; filters given as
    plain keys are applied to the ``metadata`` sub-document.
    """
    
    def __init__(
        self,
        mongodb_uri: str | None = None,
        db_name: str | None = None,
        collection_name: str | None = None,
        index_name: str | None = None,
        client: MongoClient | None = None
    ):
        """
        Initialize MongoDB vector store
        
        Args:
            mongodb_uri: MongoDB connection URI (default from config)
            db_name: Database name (default from config)
            collection_name: Collection name (default from config)
            index_name: Vector search index name (default from config)
            client: Pre-built client, mainly for tests
        """
        self.mongodb_uri = mongodb_uri or rag_config.mongodb_uri
        self.db_name = db_name or rag_config.mongodb_db_name
        self.collection_name = collection_name or rag_config.vector_collection_name
        self.index_name = index_name or rag_config.vector_index_name
        
        # Initialize MongoDB client
        self.client = client or MongoClient(self.mongodb_uri)
        self.db = self.client[self.db_name]
        self.collection = self.db[self.collection_name]
        
        # Create indexes for efficient filtering
        self._create_indexes()
        
        logger.info(
            f"Initialized VectorStore: db={self.db_name}, "
            f"collection={self.collection_name}, index={self.index_name}"
        )
    
    def _create_indexes(self):
        """Create indexes for knowledge base and document filtering"""
        try:
            self.collection.create_index([
                ("metadata.knowledge_base_id", pymongo.ASCENDING),
                ("metadata.document_id", pymongo.ASCENDING)
            ])
            self.collection.create_index([
                ("metadata.document_id", pymongo.ASCENDING)
            ])
            
            logger.info("Created MongoDB indexes for filtering")
        except Exception as e:
            logger.warning(f"Error creating indexes (may already exist): {str(e)}")
    
    @staticmethod
    def _metadata_filter(filters: Dict[str, Any]) -> Dict[str, Any]:
        return {f"{METADATA_KEY}.{key}": value for key, value in filters.items()}
    
    @staticmethod
    def _to_record(vector: IndexedVector, timestamp: str) -> Dict[str, Any]:
        metadata = dict(vector.metadata)
        metadata.update({
            "chunk_id": vector.chunk_id,
            "document_id": vector.document_id,
            "knowledge_base_id": vector.knowledge_base_id,
            "timestamp": timestamp
        })
        return {
            "_id": vector.chunk_id,
            "id": vector.chunk_id,
            TEXT_KEY: vector.content,
            EMBEDDING_KEY: vector.vector,
            METADATA_KEY: metadata
        }
    
    def upsert_sync(self, vectors: List[IndexedVector]) -> List[str]:
        """
        Insert or replace vectors keyed by chunk id
        
        Args:
            vectors: Vectors to write
            
        Returns:
            Chunk ids written
        """
        if not vectors:
            return []
        
        timestamp = datetime.now(timezone.utc).isoformat()
        operations = [
            ReplaceOne({"_id": v.chunk_id}, self._to_record(v, timestamp), upsert=True)
            for v in vectors
        ]
        
        try:
            result = self.collection.bulk_write(operations, ordered=False)
        except PyMongoError as e:
            logger.error(f"Error upserting vectors: {str(e)}")
            raise VectorStoreError(f"Error upserting vectors: {e}") from e
        
        logger.debug(
            f"Upserted {len(vectors)} vectors "
            f"(inserted={result.upserted_count}, replaced={result.modified_count})"
        )
        return [v.chunk_id for v in vectors]
    
    def search_sync(
        self,
        query_vector: List[float],
        filters: Dict[str, Any],
        top_k: int,
        num_candidates: Optional[int] = None
    ) -> List[SearchHit]:
        """
        Approximate nearest-neighbour search with metadata filtering
        
        Args:
            query_vector: Query embedding
            filters: Equality filters on metadata keys
            top_k: Number of hits to return
            num_candidates: ANN search width (defaults to ``top_k * 10``)
            
        Returns:
            Hits ordered by descending native score
        """
        num_candidates = max(num_candidates or top_k * 10, top_k)
        vector_search: Dict[str, Any] = {
            "index": self.index_name,
            "path": EMBEDDING_KEY,
            "queryVector": query_vector,
            "numCandidates": num_candidates,
            "limit": top_k
        }
        if filters:
            vector_search["filter"] = {
                key: {"$eq": value} for key, value in self._metadata_filter(filters).items()
            }
        
        pipeline = [
            {"$vectorSearch": vector_search},
            {"$project": {
                "_id": 0,
                "id": 1,
                TEXT_KEY: 1,
                METADATA_KEY: 1,
                "score": {"$meta": "vectorSearchScore"}
            }}
        ]
        
        try:
            records = list(self.collection.aggregate(pipeline))
        except PyMongoError as e:
            logger.error(f"Error querying vector store: {str(e)}")
            raise VectorStoreError(f"Error querying vector store: {e}") from e
        
        hits = []
        for record in records:
            metadata = dict(record.get(METADATA_KEY) or {})
            hits.append(SearchHit(
                chunk_id=metadata.pop("chunk_id", record.get("id", "")),
                document_id=metadata.pop("document_id", ""),
                knowledge_base_id=metadata.pop("knowledge_base_id", ""),
                content=record.get(TEXT_KEY, ""),
                score=float(record.get("score", 0.0)),
                metadata=metadata
            ))
        
        logger.debug(f"Vector search returned {len(hits)} hits for filters {filters}")
        return hits
    
    def count_sync(self, filters: Dict[str, Any]) -> int:
        try:
            return self.collection.count_documents(self._metadata_filter(filters))
        except PyMongoError as e:
            logger.error(f"Error counting vectors: {str(e)}")
            raise VectorStoreError(f"Error counting vectors: {e}") from e
    
    def delete_sync(self, filters: Dict[str, Any]) -> int:
        """
        Delete all vectors matching the filters
        
        Returns:
            Number of vectors deleted
        """
        if not filters:
            raise ValueError("Refusing to delete vectors without a filter")
        try:
            result = self.collection.delete_many(self._metadata_filter(filters))
        except PyMongoError as e:
            logger.error(f"Error deleting vectors: {str(e)}")
            raise VectorStoreError(f"Error deleting vectors: {e}") from e
        
        logger.info(f"Deleted {result.deleted_count} vectors for filters {filters}")
        return result.deleted_count
    
    async def upsert(self, vectors: List[IndexedVector]) -> List[str]:
        return await asyncio.to_thread(self.upsert_sync, vectors)
    
    async def search(
        self,
        query_vector: List[float],
        filters: Dict[str, Any],
        top_k: int,
        num_candidates: Optional[int] = None
    ) -> List[SearchHit]:
        return await asyncio.to_thread(self.search_sync, query_vector, filters, top_k, num_candidates)
    
    async def count(self, filters: Dict[str, Any]) -> int:
        return await asyncio.to_thread(self.count_sync, filters)
    
    async def delete(self, filters: Dict[str, Any]) -> int:
        return await asyncio.to_thread(self.delete_sync, filters)
    
    def ensure_vector_search_index(self, dimensions: int | None = None) -> bool:
        """
        Create the Atlas vector search index if it does not exist yet
        
        Args:
            dimensions: Embedding dimensions (default from config)
            
        Returns:
            True if the index was created, False if it already existed
        """
        dimensions = dimensions or rag_config.embedding_dimensions
        try:
            existing = {index.get("name") for index in self.collection.list_search_indexes()}
            if self.index_name in existing:
                logger.info(f"Vector search index '{self.index_name}' exists")
                return False
            
            fields: List[Dict[str, Any]] = [{
                "type": "vector",
                "path": EMBEDDING_KEY,
                "numDimensions": dimensions,
                "similarity": "cosine"
            }]
            fields.extend(
                {"type": "filter", "path": f"{METADATA_KEY}.{field}"} for field in FILTER_FIELDS
            )
            self.collection.create_search_index(SearchIndexModel(
                definition={"fields": fields},
                name=self.index_name,
                type="vectorSearch"
            ))
            logger.info(f"Created vector search index '{self.index_name}'")
            return True
        except PyMongoError as e:
            logger.error(f"Error ensuring vector search index: {str(e)}")
            raise VectorStoreError(f"Error ensuring vector search index: {e}") from e
