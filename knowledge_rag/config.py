"""
Configuration for the knowledge base RAG pipeline
"""
import os
from pydantic import Field
from pydantic_settings import BaseSettings


class RAGConfig(BaseSettings):
    """Configuration for ingestion and retrieval"""
    
    # MongoDB Configuration
    mongodb_uri: str = Field(default=os.getenv("MONGODB_URI", "mongodb://localhost:27017"))
    mongodb_db_name: str = Field(default=os.getenv("MONGODB_DB_NAME", "knowledge"))
    vector_collection_name: str = Field(default="chunk_vectors")
    vector_index_name: str = Field(default="vector_search_index")
    documents_collection_name: str = Field(default="documents")
    
    # OpenAI Configuration
    openai_api_key: str = Field(default=os.getenv("OPENAI_API_KEY", ""))
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimensions: int = Field(default=1536)  # text-embedding-3-small default
    embedding_max_chars: int = Field(default=8000)
    chat_model: str = Field(default="gpt-4o-mini")
    analysis_temperature: float = Field(default=0.1)
    
    # Chunking Configuration (characters)
    chunk_size: int = Field(default=1000)
    chunk_overlap: int = Field(default=200)
    
    # Retrieval Configuration
    top_k_results: int = Field(default=5)
    similarity_threshold: float = Field(default=0.7)
    search_timeout_seconds: float = Field(default=10.0)
    # Multiplier applied to the native index score before clamping to 0..1
    similarity_score_scale: float = Field(default=1.0)
    
    # Completion check Configuration
    completion_max_attempts: int = Field(default=3)
    completion_retry_delay: float = Field(default=1.0)  # seconds
    
    # Storage Configuration
    object_store_root: str = Field(default=os.getenv("OBJECT_STORE_ROOT", "./data/processed-documents"))
    
    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_serialize: bool = Field(default=False)
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields from environment


# Global config instance
rag_config = RAGConfig()
