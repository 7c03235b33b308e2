"""
OpenAI Chat Service

Thin chat-completion adapter over LlamaIndex's OpenAI LLM, used by the
LLM-backed query classifier.
"""
from typing import Dict, List
from loguru import logger
from llama_index.core.llms import ChatMessage
from llama_index.llms.openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from knowledge_rag.config import rag_config


class ChatService:
    """Chat completions through LlamaIndex's OpenAI wrapper"""
    
    def __init__(self, model_name: str | None = None, api_key: str | None = None):
        """
        Initialize the chat service
        
        Args:
            model_name: OpenAI chat model (default from config)
            api_key: OpenAI API key (default from config/env)
        """
        self.model_name = model_name or rag_config.chat_model
        self.api_key = api_key or rag_config.openai_api_key
        
        if not self.api_key:
            raise ValueError("OpenAI API key not configured")
        
        self.llm = OpenAI(
            model=self.model_name,
            api_key=self.api_key,
            temperature=rag_config.analysis_temperature,
            max_retries=0
        )
        
        logger.info(f"Initialized ChatService with model: {self.model_name}")
    
    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True
    )
    async def complete(self, messages: List[Dict[str, str]], temperature: float) -> str:
        """
        Generate a chat completion
        
        Args:
            messages: ``{"role", "content"}`` dicts, roles system/user/assistant
            temperature: Sampling temperature
            
        Returns:
            The assistant message text (empty string when absent)
        """
        chat_messages = [
            ChatMessage(role=message["role"], content=message["content"])
            for message in messages
        ]
        try:
            response = await self.llm.achat(chat_messages, temperature=temperature)
        except Exception as e:
            logger.error(f"Error generating chat completion: {str(e)}")
            raise
        
        return response.message.content or ""
