"""Chunk and result data structures for the RAG pipeline."""

import uuid
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class DocumentChunk(BaseModel):
    """A chunk of a source document.

    Chunks are created by a chunker, get their embedding from the engine
    during indexing, and are stored in the vector store.

    Attributes:
        id: Unique identifier, generated at creation
        source: Name of the document the chunk was cut from
        content: The text content of the chunk
        chunk_index: Zero-based position of the chunk within its source
        embedding: Embedding vector, None until computed
        metadata: String metadata (chunk length, creation time, chunker tags)
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source: str
    content: str
    chunk_index: int = 0
    embedding: Optional[list[float]] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Chunk content cannot be blank")
        return value

    def __repr__(self) -> str:
        content_preview = self.content[:30] + "..." if len(self.content) > 30 else self.content
        return (
            f"DocumentChunk(id={self.id!r}, source={self.source!r}, "
            f"index={self.chunk_index}, content={content_preview!r})"
        )


class RetrievalResult(BaseModel):
    """A chunk returned by a similarity search, with its score.

    Attributes:
        chunk_id: ID of the matching chunk
        source: Source document of the chunk
        content: Chunk text
        chunk_index: Position of the chunk in its source
        metadata: Chunk metadata
        similarity: Cosine similarity to the query (higher is better)
    """

    chunk_id: str
    source: str
    content: str
    chunk_index: int = 0
    metadata: dict[str, str] = Field(default_factory=dict)
    similarity: float

    @classmethod
    def from_chunk(cls, chunk: DocumentChunk, similarity: float) -> "RetrievalResult":
        return cls(
            chunk_id=chunk.id,
            source=chunk.source,
            content=chunk.content,
            chunk_index=chunk.chunk_index,
            metadata=dict(chunk.metadata),
            similarity=similarity,
        )

    def __repr__(self) -> str:
        return f"RetrievalResult(source={self.source!r}, similarity={self.similarity:.4f})"


class RagResult(BaseModel):
    """Outcome of a single query.

    Attributes:
        query: The question that was asked
        answer: Generated answer (or a fixed message for empty/failed queries)
        retrieved_chunks: Chunks used as context, highest similarity first
        success: Whether the query completed without error
        error: Raw error message when success is False
        processing_time_ms: Wall time spent on the query
        from_cache: Whether the result was served from the query cache
    """

    query: str
    answer: str = ""
    retrieved_chunks: list[RetrievalResult] = Field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    processing_time_ms: float = 0.0
    from_cache: bool = False


class IndexingResult(BaseModel):
    """Outcome of indexing a single document."""

    source: str
    chunks_created: int = 0
    processing_time_ms: float = 0.0
    success: bool = True
    error: Optional[str] = None
