"""RAG engine: indexing and question answering over the vector store."""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

from .base import BaseChunker, BaseEmbedding, BaseGenerator
from .cache import CacheService, CacheStats, generate_cache_key
from .chunking import ParagraphChunker
from .document import DocumentChunk, IndexingResult, RagResult, RetrievalResult
from .embeddings import OpenAIEmbedding
from .exceptions import EmbeddingError, IndexingError, InvalidInputError
from .generators import OpenAIGenerator
from .logger import RagLogger
from .resilience import ResilienceService
from .vectorstore import MemoryVectorStore, VectorStoreStats

if TYPE_CHECKING:
    from .utils.config import RagPipelineSettings

logger = logging.getLogger(__name__)

NO_RELEVANT_INFORMATION = "I couldn't find any relevant information to answer your question."
QUERY_FAILED_MESSAGE = "An error occurred while processing your query."
NO_ANSWER_GENERATED = "No answer generated."

GENERATE_OPERATION = "generate_answer"

PROMPT_TEMPLATE = """You are a helpful AI assistant that answers questions based on the provided context.

Context:
{context}

Question: {query}

Instructions:
- Answer the question based solely on the context provided above
- If the context doesn't contain enough information to answer the question, clearly state that
- Be concise, accurate, and professional
- When relevant, reference which source(s) your answer comes from
- If the answer requires information not in the context, explain what information is missing

Answer:"""


def format_context(results: list[RetrievalResult]) -> str:
    """Render retrieved chunks as a context block, one entry per chunk."""
    return "\n\n".join(
        f"[Source: {r.source} | Relevance: {r.similarity:.2f}]\n{r.content}"
        for r in results
    )


def build_prompt(query: str, results: list[RetrievalResult]) -> str:
    """Build the generation prompt for a query and its retrieved chunks."""
    return PROMPT_TEMPLATE.format(context=format_context(results), query=query)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class RagEngine:
    """Index documents and answer questions about them.

    Indexing chunks a document, embeds every chunk (through the embedding
    cache and the retry policy) and stores the chunks. Querying embeds the
    question, searches the store, drops results below the similarity
    threshold and asks the generator for an answer grounded in the rest.

    Both operations report failures through their result objects instead
    of raising.

    Example:
        ```python
        engine = RagEngine(embedding=FakeEmbedding(), generator=StaticGenerator())

        await engine.index_document("intro.txt", "Python is a programming language.")
        result = await engine.query("What is Python?", similarity_threshold=0.0)
        print(result.answer)
        ```
    """

    def __init__(
        self,
        embedding: BaseEmbedding,
        generator: BaseGenerator,
        vectorstore: Optional[MemoryVectorStore] = None,
        chunker: Optional[BaseChunker] = None,
        cache: Optional[CacheService] = None,
        resilience: Optional[ResilienceService] = None,
        rag_logger: Optional[RagLogger] = None,
        top_k: int = 3,
        similarity_threshold: float = 0.7,
        max_concurrent_embeddings: int = 8,
        embedding_cache_ttl: float = 60 * 60.0,
        query_cache_ttl: float = 30 * 60.0,
        structure_aware: bool = False,
    ):
        """Initialize the engine.

        Args:
            embedding: Embedding model for chunks and queries
            generator: Answer generator
            vectorstore: Chunk store (default: empty MemoryVectorStore)
            chunker: Document chunker (default: ParagraphChunker)
            cache: Embedding and query cache (None disables caching)
            resilience: Retry and circuit breaker wrappers
            rag_logger: Event sink (default: RagLogger)
            top_k: Default number of chunks to retrieve
            similarity_threshold: Default minimum similarity for a chunk to be used
            max_concurrent_embeddings: Embedding calls in flight per document
            embedding_cache_ttl: Seconds an embedding stays cached
            query_cache_ttl: Seconds a query result stays cached
            structure_aware: Pick chunkers by file type in batch directory indexing
        """
        if max_concurrent_embeddings < 1:
            raise ValueError("max_concurrent_embeddings must be at least 1")

        self.embedding = embedding
        self.generator = generator
        self.vectorstore = vectorstore if vectorstore is not None else MemoryVectorStore()
        self.chunker = chunker or ParagraphChunker()
        self.cache = cache
        self.resilience = resilience or ResilienceService()
        self.rag_logger = rag_logger or RagLogger()
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold
        self.max_concurrent_embeddings = max_concurrent_embeddings
        self.embedding_cache_ttl = embedding_cache_ttl
        self.query_cache_ttl = query_cache_ttl
        self.structure_aware = structure_aware

    @classmethod
    def from_settings(
        cls,
        settings: "RagPipelineSettings",
        embedding: Optional[BaseEmbedding] = None,
        generator: Optional[BaseGenerator] = None,
        rag_logger: Optional[RagLogger] = None,
    ) -> "RagEngine":
        """Build an engine and its components from pipeline settings.

        Without an explicit embedding or generator, the OpenAI ones are
        configured from the ``openai`` settings section.
        """
        if embedding is None:
            embedding = OpenAIEmbedding.from_settings(settings.openai)
        if generator is None:
            generator = OpenAIGenerator.from_settings(settings.openai)

        rag = settings.rag
        cache = None
        if settings.cache.enabled:
            cache = CacheService(max_size=settings.cache.max_cache_size)

        return cls(
            embedding=embedding,
            generator=generator,
            vectorstore=MemoryVectorStore(),
            chunker=ParagraphChunker(rag.chunk_size, rag.chunk_overlap),
            cache=cache,
            resilience=ResilienceService(
                max_attempts=settings.resilience.max_attempts,
                base_delay=settings.resilience.base_delay_seconds,
                failure_threshold=settings.resilience.failure_threshold,
                recovery_timeout=settings.resilience.recovery_timeout_seconds,
            ),
            rag_logger=rag_logger or RagLogger(enable_metrics=settings.logging.enable_metrics),
            top_k=rag.top_k,
            similarity_threshold=rag.similarity_threshold,
            max_concurrent_embeddings=rag.max_concurrent_embeddings,
            embedding_cache_ttl=settings.cache.embedding_cache_minutes * 60,
            query_cache_ttl=settings.cache.query_cache_minutes * 60,
            structure_aware=rag.structure_aware,
        )

    async def index_document(
        self,
        source: str,
        content: str,
        chunker: Optional[BaseChunker] = None,
    ) -> IndexingResult:
        """Chunk, embed and store a document.

        Nothing is stored unless every chunk was embedded.

        Args:
            source: Document name
            content: Document text
            chunker: Chunker to use instead of the engine's default

        Returns:
            IndexingResult; on failure success is False and error is set
        """
        start = time.perf_counter()

        try:
            if not source or not source.strip():
                raise InvalidInputError("Source cannot be empty")
            if not content or not content.strip():
                raise InvalidInputError("Content cannot be empty")

            chunks = (chunker or self.chunker).chunk(source, content)
            if not chunks:
                raise IndexingError("No chunks generated from document", source)

            await self._embed_chunks(chunks)
            await self.vectorstore.add_many(chunks)

            elapsed = _elapsed_ms(start)
            self.rag_logger.log_indexing(source, len(chunks), elapsed)
            return IndexingResult(
                source=source,
                chunks_created=len(chunks),
                processing_time_ms=elapsed,
            )

        except Exception as e:
            self.rag_logger.log_error("index_document", e, {"source": source})
            return IndexingResult(
                source=source,
                processing_time_ms=_elapsed_ms(start),
                success=False,
                error=str(e),
            )

    async def query(
        self,
        query: str,
        top_k: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> RagResult:
        """Answer a question from the indexed documents.

        Args:
            query: The question
            top_k: Chunks to retrieve (default: engine's top_k)
            similarity_threshold: Minimum similarity (default: engine's threshold)

        Returns:
            RagResult; never raises
        """
        start = time.perf_counter()
        top_k = self.top_k if top_k is None else top_k
        threshold = self.similarity_threshold if similarity_threshold is None else similarity_threshold

        try:
            if not query or not query.strip():
                raise InvalidInputError("Query cannot be empty")

            cache_key = generate_cache_key("query", query, top_k)
            if self.cache is not None:
                cached = await self.cache.get(cache_key)
                if cached is not None:
                    result = cached.model_copy(deep=True)
                    result.from_cache = True
                    result.processing_time_ms = _elapsed_ms(start)
                    logger.debug(f"Query cache hit: {query[:50]}")
                    self.rag_logger.log_query(
                        query, len(result.retrieved_chunks), result.processing_time_ms
                    )
                    return result

            query_embedding = await self.resilience.execute_with_retry(
                lambda: self.embedding.embed_query(query),
                "embed_query",
            )

            candidates = await self.vectorstore.search(query_embedding, top_k)
            retrieved = [r for r in candidates if r.similarity >= threshold]

            if not retrieved:
                elapsed = _elapsed_ms(start)
                self.rag_logger.log_query(query, 0, elapsed)
                return RagResult(
                    query=query,
                    answer=NO_RELEVANT_INFORMATION,
                    processing_time_ms=elapsed,
                )

            prompt = build_prompt(query, retrieved)
            answer = await self.resilience.execute_with_circuit_breaker(
                lambda: self.generator.generate(prompt),
                GENERATE_OPERATION,
            )
            if not answer or not answer.strip():
                answer = NO_ANSWER_GENERATED

            result = RagResult(
                query=query,
                answer=answer,
                retrieved_chunks=retrieved,
                processing_time_ms=_elapsed_ms(start),
            )

            if self.cache is not None:
                await self.cache.set(cache_key, result.model_copy(deep=True), ttl=self.query_cache_ttl)

            self.rag_logger.log_query(query, len(retrieved), result.processing_time_ms)
            return result

        except Exception as e:
            self.rag_logger.log_error("query", e, {"query": query})
            return RagResult(
                query=query,
                answer=QUERY_FAILED_MESSAGE,
                success=False,
                error=str(e),
                processing_time_ms=_elapsed_ms(start),
            )

    async def remove_document(self, source: str) -> bool:
        """Remove every chunk of a document. Returns False if none existed or on error."""
        try:
            removed = await self.vectorstore.remove_source(source)
        except Exception as e:
            self.rag_logger.log_error("remove_document", e, {"source": source})
            return False

        if removed:
            logger.info(f"Removed document '{source}'")
        return removed

    async def clear_index(self) -> None:
        """Remove all chunks and empty the cache."""
        await self.vectorstore.clear()
        if self.cache is not None:
            await self.cache.clear()
        self.rag_logger.log_info("Index cleared")

    async def get_stats(self) -> VectorStoreStats:
        return await self.vectorstore.get_stats()

    async def list_sources(self) -> list[str]:
        return await self.vectorstore.list_sources()

    async def count_chunks(self) -> int:
        """Return the number of indexed chunks."""
        return await self.vectorstore.count()

    async def get_cache_stats(self) -> Optional[CacheStats]:
        """Return cache counters, or None when caching is disabled."""
        if self.cache is None:
            return None
        return await self.cache.get_stats()

    async def _embed_chunks(self, chunks: list[DocumentChunk]) -> None:
        """Attach an embedding to every chunk, several at a time.

        Raises:
            EmbeddingError: If any chunk failed, listing the failed chunk indexes
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_embeddings)

        async def embed_chunk(chunk: DocumentChunk) -> None:
            async with semaphore:
                chunk.embedding = await self._get_embedding(chunk.content)

        results = await asyncio.gather(
            *(embed_chunk(chunk) for chunk in chunks),
            return_exceptions=True,
        )

        errors = [(c.chunk_index, r) for c, r in zip(chunks, results) if isinstance(r, BaseException)]
        if errors:
            failed_indexes = [index for index, _ in errors]
            first_error = errors[0][1]
            raise EmbeddingError(
                f"Failed to embed {len(errors)} of {len(chunks)} chunks: {first_error}",
                failed_indexes,
            ) from first_error

    async def _get_embedding(self, text: str) -> list[float]:
        cache_key = generate_cache_key("embedding", text)
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return list(cached)

        async def embed() -> list[float]:
            embeddings = await self.embedding.embed_documents([text])
            return embeddings[0]

        embedding = await self.resilience.execute_with_retry(embed, "embed_chunk")

        if self.cache is not None:
            await self.cache.set(cache_key, list(embedding), ttl=self.embedding_cache_ttl)
        return embedding
