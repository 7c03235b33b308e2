"""
Exceptions raised by the ingestion and retrieval pipeline
"""

MAX_ERROR_LENGTH = 1024


class KnowledgeRAGError(Exception):
    """Base class for all pipeline errors"""


class EmptyInputError(KnowledgeRAGError):
    """Raised when normalized text contains no paragraphs to chunk"""


class ExtractionError(KnowledgeRAGError):
    """Raised when text cannot be extracted from an uploaded document"""


class UnsupportedFormatError(ExtractionError):
    """Raised when a document's format is not recognised"""


class EmbeddingError(KnowledgeRAGError):
    """Raised when an embedding cannot be generated"""


class RateLimitedError(EmbeddingError):
    """Raised when the embedding provider rejects a request for quota reasons"""


class EmbeddingServiceError(EmbeddingError):
    """Raised for any other embedding provider failure"""


class VectorStoreError(KnowledgeRAGError):
    """Raised when the vector index rejects a read or write"""


class MetadataNotFoundError(KnowledgeRAGError):
    """Raised when a document's ingestion metadata blob is missing"""


class SearchError(KnowledgeRAGError):
    """Raised when every fan-out sub-query of a search fails"""


def truncate_error(error: BaseException | str, limit: int = MAX_ERROR_LENGTH) -> str:
    """Render an error as a message no longer than ``limit`` characters"""
    message = str(error) if str(error) else type(error).__name__
    return message[:limit]
