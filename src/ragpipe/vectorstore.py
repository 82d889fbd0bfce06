"""In-memory vector store."""

import logging
import math
import threading
from typing import Optional

from pydantic import BaseModel, Field

from .base import BaseVectorStore
from .document import DocumentChunk, RetrievalResult
from .exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Returns 0.0 when either vector has zero magnitude.
    """
    if len(a) != len(b):
        raise ValueError("Vectors must have the same dimension")

    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


class VectorStoreStats(BaseModel):
    """Snapshot of vector store contents."""

    total_chunks: int = 0
    unique_sources: int = 0
    chunks_by_source: dict[str, int] = Field(default_factory=dict)
    memory_usage_bytes: int = 0


class MemoryVectorStore(BaseVectorStore):
    """Thread-safe in-memory vector store with exact cosine search.

    Chunks are kept in insertion order and grouped by source. Every chunk
    must carry an embedding of the store's dimension; the dimension is
    either given up front or taken from the first inserted chunk, and
    mismatched chunks are rejected at insert time so search never has to
    skip candidates.

    Search is a linear scan, suitable for up to tens of thousands of chunks.
    """

    def __init__(self, dimension: Optional[int] = None) -> None:
        """Initialize the memory vector store.

        Args:
            dimension: Fixed embedding dimension (inferred on first insert if None)
        """
        self._configured_dimension = dimension
        self._dimension = dimension
        self._chunks: dict[str, DocumentChunk] = {}
        self._sources: dict[str, dict[str, None]] = {}
        self._lock = threading.RLock()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    async def add(self, chunk: DocumentChunk) -> None:
        """Insert or replace a single chunk."""
        await self.add_many([chunk])

    async def add_many(self, chunks: list[DocumentChunk]) -> list[str]:
        """Insert or replace chunks.

        The whole batch is validated before anything is stored.

        Raises:
            DimensionMismatchError: If an embedding is missing or has the wrong length
        """
        if not chunks:
            return []

        with self._lock:
            dimension = self._dimension
            for chunk in chunks:
                if chunk.embedding is None:
                    raise DimensionMismatchError.missing(chunk.id, dimension)
                if dimension is None:
                    dimension = len(chunk.embedding)
                if len(chunk.embedding) != dimension:
                    raise DimensionMismatchError(dimension, len(chunk.embedding))

            self._dimension = dimension
            for chunk in chunks:
                previous = self._chunks.get(chunk.id)
                if previous is not None and previous.source != chunk.source:
                    self._unlink_source(previous)
                self._chunks[chunk.id] = chunk
                self._sources.setdefault(chunk.source, {})[chunk.id] = None

        logger.debug(f"Added {len(chunks)} chunks to memory store")
        return [chunk.id for chunk in chunks]

    async def search(
        self,
        query_embedding: list[float],
        k: int = 5,
    ) -> list[RetrievalResult]:
        """Search for similar chunks using cosine similarity.

        Results are ordered by descending similarity; ties keep insertion order.

        Raises:
            DimensionMismatchError: If the query vector has the wrong length
        """
        with self._lock:
            if not self._chunks or k <= 0:
                return []
            if len(query_embedding) != self._dimension:
                raise DimensionMismatchError(self._dimension, len(query_embedding))
            snapshot = list(self._chunks.values())

        scored = [
            (chunk, cosine_similarity(query_embedding, chunk.embedding))
            for chunk in snapshot
        ]
        # list.sort is stable, so equal scores stay in insertion order
        scored.sort(key=lambda item: item[1], reverse=True)

        return [RetrievalResult.from_chunk(chunk, score) for chunk, score in scored[:k]]

    async def remove(self, chunk_id: str) -> bool:
        """Remove a chunk by ID."""
        with self._lock:
            chunk = self._chunks.pop(chunk_id, None)
            if chunk is None:
                return False
            self._unlink_source(chunk)
            return True

    async def remove_source(self, source: str) -> bool:
        """Remove every chunk that belongs to a source."""
        with self._lock:
            ids = self._sources.pop(source, {})
            for chunk_id in ids:
                self._chunks.pop(chunk_id, None)

        if ids:
            logger.debug(f"Removed {len(ids)} chunks of '{source}'")
        return bool(ids)

    async def get(self, chunk_id: str) -> Optional[DocumentChunk]:
        """Get a chunk by its ID."""
        with self._lock:
            return self._chunks.get(chunk_id)

    async def get_chunks_by_source(self, source: str) -> list[DocumentChunk]:
        """Get the chunks of a source ordered by chunk index."""
        with self._lock:
            chunks = [self._chunks[i] for i in self._sources.get(source, {})]
        return sorted(chunks, key=lambda c: c.chunk_index)

    async def list_sources(self) -> list[str]:
        """Return the distinct sources, sorted."""
        with self._lock:
            return sorted(self._sources)

    async def count(self) -> int:
        """Return the number of chunks."""
        with self._lock:
            return len(self._chunks)

    async def clear(self) -> None:
        """Remove all chunks."""
        with self._lock:
            self._chunks.clear()
            self._sources.clear()
            self._dimension = self._configured_dimension

    async def get_stats(self) -> VectorStoreStats:
        """Return chunk counts per source and a rough memory estimate."""
        with self._lock:
            chunks_by_source = {source: len(ids) for source, ids in self._sources.items()}
            memory = sum(
                len(c.content) * 2 + len(c.embedding or []) * 4 + 1024
                for c in self._chunks.values()
            )
            total = len(self._chunks)

        return VectorStoreStats(
            total_chunks=total,
            unique_sources=len(chunks_by_source),
            chunks_by_source=chunks_by_source,
            memory_usage_bytes=memory,
        )

    def _unlink_source(self, chunk: DocumentChunk) -> None:
        ids = self._sources.get(chunk.source)
        if ids is None:
            return
        ids.pop(chunk.id, None)
        if not ids:
            del self._sources[chunk.source]
