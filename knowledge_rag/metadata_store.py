"""
Document status store

Tracks each document's ``ProcessingStatus`` in MongoDB. Status changes are
conditional updates that only match documents currently in a state the
target may be entered from, so concurrent completion checks can race
without moving a document backwards or out of FAILED.
"""
import asyncio
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from loguru import logger
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from knowledge_rag.config import rag_config
from knowledge_rag.exceptions import KnowledgeRAGError, truncate_error
from knowledge_rag.models import ProcessingStatus


class DocumentStatusStore:
    """MongoDB-backed document status tracking"""
    
    def __init__(
        self,
        mongodb_uri: str | None = None,
        db_name: str | None = None,
        collection_name: str | None = None,
        client: MongoClient | None = None
    ):
        """
        Initialize the status store
        
        Args:
            mongodb_uri: MongoDB connection URI (default from config)
            db_name: Database name (default from config)
            collection_name: Documents collection (default from config)
            client: Pre-built client, mainly for tests
        """
        self.client = client or MongoClient(mongodb_uri or rag_config.mongodb_uri)
        self.collection = self.client[db_name or rag_config.mongodb_db_name][
            collection_name or rag_config.documents_collection_name
        ]
        logger.info(f"Initialized DocumentStatusStore on collection {self.collection.name}")
    
    def register_sync(
        self,
        document_id: str,
        knowledge_base_id: str,
        agent_id: str,
        name: str = ""
    ) -> None:
        """Create the document record in PENDING unless it already exists"""
        now = datetime.now(timezone.utc)
        try:
            self.collection.update_one(
                {"_id": document_id},
                {"$setOnInsert": {
                    "knowledge_base_id": knowledge_base_id,
                    "agent_id": agent_id,
                    "name": name,
                    "processing_status": ProcessingStatus.PENDING.value,
                    "processing_error": None,
                    "created_at": now,
                    "updated_at": now
                }},
                upsert=True
            )
        except PyMongoError as e:
            logger.error(f"Error registering document {document_id}: {str(e)}")
            raise KnowledgeRAGError(f"Error registering document: {e}") from e
    
    def get_sync(self, document_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.collection.find_one({"_id": document_id})
        except PyMongoError as e:
            logger.error(f"Error reading document {document_id}: {str(e)}")
            raise KnowledgeRAGError(f"Error reading document status: {e}") from e
    
    def get_status_sync(self, document_id: str) -> Optional[ProcessingStatus]:
        record = self.get_sync(document_id)
        if not record or not record.get("processing_status"):
            return None
        return ProcessingStatus(record["processing_status"])
    
    def set_status_sync(
        self,
        document_id: str,
        status: ProcessingStatus,
        error: Optional[str] = None
    ) -> bool:
        """
        Move a document to ``status`` if the state machine allows it
        
        Args:
            document_id: Document to update
            status: Target status
            error: Failure reason, stored only with FAILED (truncated)
            
        Returns:
            True if the document is in ``status`` afterwards
        """
        update: Dict[str, Any] = {
            "processing_status": status.value,
            "updated_at": datetime.now(timezone.utc)
        }
        if status is ProcessingStatus.FAILED:
            update["processing_error"] = truncate_error(error or "Unknown processing error")
        else:
            update["processing_error"] = None
        
        allowed_sources = [s.value for s in ProcessingStatus.sources_for(status)]
        try:
            result = self.collection.update_one(
                {"_id": document_id, "processing_status": {"$in": allowed_sources}},
                {"$set": update}
            )
        except PyMongoError as e:
            logger.error(f"Error updating status of document {document_id}: {str(e)}")
            raise KnowledgeRAGError(f"Error updating document status: {e}") from e
        
        if result.matched_count:
            logger.debug(f"Document {document_id} status updated to {status.value}")
            return True
        
        current = self.get_status_sync(document_id)
        if current is status:
            return True
        if current is None:
            logger.warning(f"Document {document_id} not found; status {status.value} not recorded")
        else:
            logger.info(
                f"Document {document_id} stays {current.value}; "
                f"transition to {status.value} not allowed"
            )
        return False
    
    async def register(
        self,
        document_id: str,
        knowledge_base_id: str,
        agent_id: str,
        name: str = ""
    ) -> None:
        await asyncio.to_thread(self.register_sync, document_id, knowledge_base_id, agent_id, name)
    
    async def get_status(self, document_id: str) -> Optional[ProcessingStatus]:
        return await asyncio.to_thread(self.get_status_sync, document_id)
    
    async def set_status(
        self,
        document_id: str,
        status: ProcessingStatus,
        error: Optional[str] = None
    ) -> bool:
        return await asyncio.to_thread(self.set_status_sync, document_id, status, error)
