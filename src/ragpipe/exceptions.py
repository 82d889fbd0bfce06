"""
RAG pipeline exceptions.
"""

from typing import Any, Optional


class RagError(Exception):
    """Base exception for RAG pipeline errors."""

    def __init__(
        self,
        message: str,
        operation: str = "rag",
        context: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.operation = operation
        self.context = context or {}
        super().__init__(self.message)


class InvalidInputError(RagError):
    """Raised when a request is rejected before any work is scheduled."""

    def __init__(self, message: str, operation: str = "validation"):
        super().__init__(message, operation=operation)


class IndexingError(RagError):
    """Raised when a document cannot be indexed."""

    def __init__(self, message: str, source: str):
        self.source = source
        super().__init__(message, operation="indexing", context={"source": source})


class EmbeddingError(RagError):
    """Raised when one or more embeddings fail to generate."""

    def __init__(self, message: str, failed_indexes: Optional[list[int]] = None):
        self.failed_indexes = failed_indexes or []
        super().__init__(
            message,
            operation="embedding",
            context={"failed_indexes": self.failed_indexes},
        )


class TransientError(RagError):
    """Raised by collaborators for failures that are worth retrying."""

    def __init__(self, message: str, operation: str = "collaborator"):
        super().__init__(message, operation=operation)


class RetryExhaustedError(RagError):
    """Raised when a transient failure persists through every retry."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"'{operation}' failed after {attempts} attempts: {last_error}",
            operation=operation,
            context={"attempts": attempts},
        )


class ServiceUnavailableError(RagError):
    """Raised when a circuit breaker is open and rejects the call."""

    def __init__(self, operation: str, retry_after: float = 0.0):
        self.retry_after = retry_after
        super().__init__(
            f"Service temporarily unavailable for {operation}",
            operation=operation,
            context={"retry_after": retry_after},
        )


class DimensionMismatchError(RagError, ValueError):
    """Raised when an embedding is missing or its length differs from the store's dimension."""

    def __init__(self, expected: Optional[int], actual: Optional[int], message: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message or f"Embedding dimension mismatch: expected {expected}, got {actual}",
            operation="vectorstore",
        )

    @classmethod
    def missing(cls, chunk_id: str, expected: Optional[int]) -> "DimensionMismatchError":
        """Error for a chunk stored without an embedding."""
        return cls(expected, None, f"Chunk {chunk_id} has no embedding")
