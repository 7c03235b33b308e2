"""
Local object store and in-process queue

Filesystem and ``asyncio.Queue`` backed implementations of the ObjectStore
and Queue interfaces, for single-process deployments and local runs.
"""
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Tuple
from loguru import logger

from knowledge_rag.config import rag_config
from knowledge_rag.interfaces import MessageHandler


class LocalObjectStore:
    """Blob storage rooted at a local directory; paths use ``/`` separators"""
    
    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or rag_config.object_store_root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized LocalObjectStore at {self.root}")
    
    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if not target.is_relative_to(self.root):
            raise ValueError(f"Path escapes object store root: {path}")
        return target
    
    def _put(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so readers never see a partial blob
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)
    
    async def put(self, path: str, data: bytes) -> None:
        await asyncio.to_thread(self._put, path, data)
    
    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"Object not found: {path}")
        return await asyncio.to_thread(target.read_bytes)
    
    async def exists(self, path: str) -> bool:
        return self._resolve(path).exists()


class InMemoryQueue:
    """
    At-least-once queue for a single process
    
    A message whose handler raises is put back until it has been delivered
    ``max_deliveries`` times, then parked in ``dead_letters``.
    """
    
    def __init__(self, name: str = "default", max_deliveries: int = 5):
        self.name = name
        self.max_deliveries = max_deliveries
        self._queue: asyncio.Queue[Tuple[Dict[str, Any], int]] = asyncio.Queue()
        self.dead_letters: List[Dict[str, Any]] = []
    
    async def enqueue(self, message: Dict[str, Any]) -> None:
        # round-trip through JSON so in-process delivery matches a real broker
        await self._queue.put((json.loads(json.dumps(message)), 0))
    
    def qsize(self) -> int:
        return self._queue.qsize()
    
    async def consume(self, handler: MessageHandler, stop_when_empty: bool = True) -> int:
        """
        Deliver messages to ``handler``
        
        Args:
            handler: Async callback receiving the decoded message
            stop_when_empty: Return once the queue drains instead of waiting
            
        Returns:
            Number of successfully handled deliveries
        """
        handled = 0
        while True:
            if stop_when_empty and self._queue.empty():
                return handled
            message, deliveries = await self._queue.get()
            try:
                await handler(message)
                handled += 1
            except Exception as e:
                deliveries += 1
                if deliveries >= self.max_deliveries:
                    logger.error(
                        f"Queue {self.name}: dropping message after {deliveries} deliveries: {str(e)}"
                    )
                    self.dead_letters.append(message)
                else:
                    logger.warning(
                        f"Queue {self.name}: delivery {deliveries} failed, requeueing: {str(e)}"
                    )
                    await self._queue.put((message, deliveries))
            finally:
                self._queue.task_done()
