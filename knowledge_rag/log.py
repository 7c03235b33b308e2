"""
Logging setup

All modules log through loguru's shared ``logger``; this only swaps the
default stderr sink for one honouring the configured level and format.
"""
import sys

from loguru import logger

from knowledge_rag.config import rag_config


def configure_logging(level: str | None = None, serialize: bool | None = None) -> None:
    """
    Replace loguru's default sink
    
    Args:
        level: Minimum level to emit (default from config)
        serialize: Emit JSON records instead of text (default from config)
    """
    level = level or rag_config.log_level
    serialize = rag_config.log_serialize if serialize is None else serialize
    
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), serialize=serialize, enqueue=False)
    logger.debug(f"Logging configured: level={level}, serialize={serialize}")
