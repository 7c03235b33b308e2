"""
OpenAI Embedding Service

Wrapper for OpenAI embeddings API using LlamaIndex's embedding interface.
Transient provider failures are retried in-process; rate limiting is
surfaced immediately as ``RateLimitedError`` so the chunk's queue message
is redelivered later instead of holding a worker.
"""
from typing import List
from loguru import logger
import openai
from llama_index.embeddings.openai import OpenAIEmbedding
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from knowledge_rag.config import rag_config
from knowledge_rag.exceptions import EmbeddingServiceError, RateLimitedError


class EmbeddingService:
    """
    Service for generating embeddings using OpenAI models
    
    Uses LlamaIndex's OpenAIEmbedding wrapper with retry logic
    for reliability.
    """
    
    def __init__(
        self,
        model_name: str | None = None,
        api_key: str | None = None,
        max_chars: int | None = None
    ):
        """
        Initialize the embedding service
        
        Args:
            model_name: OpenAI embedding model (default from config)
            api_key: OpenAI API key (default from config/env)
            max_chars: Input longer than this is truncated before embedding
        """
        self.model_name = model_name or rag_config.embedding_model
        self.api_key = api_key or rag_config.openai_api_key
        self.max_chars = max_chars or rag_config.embedding_max_chars
        
        if not self.api_key:
            raise ValueError("OpenAI API key not configured")
        
        # Provider-side retries disabled: tenacity and queue redelivery own retrying
        self.embed_model = OpenAIEmbedding(
            model=self.model_name,
            api_key=self.api_key,
            max_retries=0
        )
        
        logger.info(f"Initialized EmbeddingService with model: {self.model_name}")
    
    @retry(
        retry=retry_if_exception_type(EmbeddingServiceError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True
    )
    async def embed(self, text: str) -> List[float]:
        """
        Generate embedding for a single text
        
        Args:
            text: Text to embed
            
        Returns:
            List of float values representing the embedding vector
            
        Raises:
            RateLimitedError: Provider quota exceeded
            EmbeddingServiceError: Any other provider failure or an empty vector
        """
        try:
            embedding = await self.embed_model.aget_text_embedding(text[: self.max_chars])
        except openai.RateLimitError as e:
            logger.warning(f"Embedding rate limited: {str(e)}")
            raise RateLimitedError(f"Embedding quota exceeded: {e}") from e
        except Exception as e:
            logger.error(f"Error generating embedding: {str(e)}")
            raise EmbeddingServiceError(f"Error generating embedding: {e}") from e
        
        if not embedding:
            raise EmbeddingServiceError("Embedding provider returned an empty vector")
        return embedding
