"""Interfaces the retrieval engine is written against."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .document import DocumentChunk, RetrievalResult


class BaseEmbedding(ABC):
    """Turns text into fixed-length float vectors.

    Failures that a retry may fix should be raised as ``TransientError``,
    ``TimeoutError`` or ``ConnectionError``. Anything else is treated as
    permanent.
    """

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Return the vector for a search query."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector this model produces."""


class BaseGenerator(ABC):
    """Produces answer text from a prompt that already contains its context."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        ...


class BaseChunker(ABC):
    """Splits one document's text into ordered chunks."""

    @abstractmethod
    def chunk(self, source: str, content: str) -> list["DocumentChunk"]:
        """
        Args:
            source: Document name, stored on every chunk
            content: Full document text

        Returns:
            Chunks numbered 0..n-1 in document order
        """


class BaseVectorStore(ABC):
    """Storage and nearest-neighbour search over embedded chunks.

    Callers only depend on these methods, so the in-memory scan can be
    replaced by an approximate index without touching the engine.
    """

    @abstractmethod
    async def add(self, chunk: "DocumentChunk") -> None:
        """Store a chunk, replacing any chunk with the same ID."""

    @abstractmethod
    async def add_many(self, chunks: list["DocumentChunk"]) -> list[str]:
        """Store several chunks at once and return their IDs.

        Either every chunk is stored or none is.
        """

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        k: int = 5,
    ) -> list["RetrievalResult"]:
        """Return at most ``k`` chunks, most similar first."""

    @abstractmethod
    async def remove(self, chunk_id: str) -> bool:
        """Delete one chunk. False when the ID was unknown."""

    @abstractmethod
    async def remove_source(self, source: str) -> bool:
        """Delete all chunks of a document. False when it had none."""

    @abstractmethod
    async def get(self, chunk_id: str) -> Optional["DocumentChunk"]:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Drop every stored chunk."""
