"""ragpipe: retrieval-augmented question answering over in-memory documents.

This package provides:
- Document chunking (paragraph, markdown-aware, code-aware)
- An in-memory vector store with exact cosine top-K search
- A bounded cache for embeddings and query results
- Retry with backoff and circuit breakers around model calls
- The RAG engine that ties indexing and querying together
- A batch runner for many documents or questions at once

Example:
    ```python
    from ragpipe import RagEngine, FakeEmbedding, StaticGenerator

    engine = RagEngine(embedding=FakeEmbedding(), generator=StaticGenerator())

    await engine.index_document("intro.txt", "Python is a programming language.")
    result = await engine.query("What is Python?")
    print(result.answer)
    ```

Built from a settings file:
    ```python
    from ragpipe import BatchProcessor, RagEngine, load_settings

    settings = load_settings("ragpipe.yaml")
    engine = RagEngine.from_settings(settings)  # OpenAI models from settings.openai
    batch = BatchProcessor.from_settings(engine, settings)
    result = await batch.index_directory("docs/")
    ```
"""

__version__ = "0.1.0"

# Data structures
from .document import DocumentChunk, IndexingResult, RagResult, RetrievalResult

# Base classes
from .base import BaseChunker, BaseEmbedding, BaseGenerator, BaseVectorStore

# Errors
from .exceptions import (
    DimensionMismatchError,
    EmbeddingError,
    IndexingError,
    InvalidInputError,
    RagError,
    RetryExhaustedError,
    ServiceUnavailableError,
    TransientError,
)

# Chunking strategies
from .chunking import (
    CodeChunker,
    DocumentMetadata,
    MarkdownChunker,
    ParagraphChunker,
    chunker_for_extension,
    extract_metadata,
)

# Storage and caching
from .vectorstore import MemoryVectorStore, VectorStoreStats, cosine_similarity
from .cache import CacheService, CacheStats, generate_cache_key

# Resilience
from .resilience import (
    CircuitBreaker,
    CircuitState,
    ResilienceService,
    RetryPolicy,
    is_transient_error,
)

# Collaborators
from .embeddings import DummyEmbedding, FakeEmbedding, LocalEmbedding, OpenAIEmbedding
from .generators import OpenAIGenerator, StaticGenerator

# Engine
from .logger import LogMetrics, RagLogger
from .engine import NO_RELEVANT_INFORMATION, QUERY_FAILED_MESSAGE, RagEngine, build_prompt
from .batch import BatchIndexingResult, BatchProcessor, BatchProgress, BatchQueryResult

# Configuration
from .utils.config import RagPipelineSettings, load_settings

__all__ = [
    "__version__",
    # Data structures
    "DocumentChunk",
    "RetrievalResult",
    "RagResult",
    "IndexingResult",
    # Base classes
    "BaseEmbedding",
    "BaseGenerator",
    "BaseChunker",
    "BaseVectorStore",
    # Errors
    "RagError",
    "InvalidInputError",
    "IndexingError",
    "EmbeddingError",
    "TransientError",
    "RetryExhaustedError",
    "ServiceUnavailableError",
    "DimensionMismatchError",
    # Chunking
    "ParagraphChunker",
    "MarkdownChunker",
    "CodeChunker",
    "DocumentMetadata",
    "extract_metadata",
    "chunker_for_extension",
    # Storage and caching
    "MemoryVectorStore",
    "VectorStoreStats",
    "cosine_similarity",
    "CacheService",
    "CacheStats",
    "generate_cache_key",
    # Resilience
    "RetryPolicy",
    "CircuitBreaker",
    "CircuitState",
    "ResilienceService",
    "is_transient_error",
    # Collaborators
    "DummyEmbedding",
    "FakeEmbedding",
    "OpenAIEmbedding",
    "LocalEmbedding",
    "StaticGenerator",
    "OpenAIGenerator",
    # Engine
    "RagEngine",
    "build_prompt",
    "NO_RELEVANT_INFORMATION",
    "QUERY_FAILED_MESSAGE",
    "RagLogger",
    "LogMetrics",
    "BatchProcessor",
    "BatchProgress",
    "BatchIndexingResult",
    "BatchQueryResult",
    # Configuration
    "RagPipelineSettings",
    "load_settings",
]
