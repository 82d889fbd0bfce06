"""Parallel batch indexing and querying."""

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar, Union

from pydantic import BaseModel, Field, computed_field

from .chunking import chunker_for_extension
from .document import IndexingResult, RagResult
from .engine import RagEngine
from .exceptions import InvalidInputError

if TYPE_CHECKING:
    from .utils.config import RagPipelineSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BatchProgress(BaseModel):
    """Progress snapshot sent after each finished item."""

    completed: int
    total: int
    current_item: str = ""

    @computed_field
    @property
    def percent_complete(self) -> float:
        return self.completed / self.total * 100 if self.total else 0.0


class BatchIndexingResult(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[IndexingResult] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    cancelled: bool = False


class BatchQueryResult(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[RagResult] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    average_processing_time_ms: float = 0.0
    cancelled: bool = False


class BatchProcessor:
    """Run many index or query operations against one engine.

    At most ``max_parallelism`` items run at a time. Results keep the input
    order. Setting ``cancel_event`` stops new items from starting; items
    already running finish and their results are returned with
    ``cancelled=True``.

    Progress is reported by putting ``BatchProgress`` objects on an
    ``asyncio.Queue`` without waiting; updates that do not fit in a full queue are dropped.
    """

    def __init__(self, engine: RagEngine, max_parallelism: int = 4):
        """Initialize the batch processor.

        Args:
            engine: Engine that does the work
            max_parallelism: Items processed concurrently
        """
        if max_parallelism < 1:
            raise ValueError("max_parallelism must be at least 1")

        self.engine = engine
        self.max_parallelism = max_parallelism

    @classmethod
    def from_settings(cls, engine: RagEngine, settings: "RagPipelineSettings") -> "BatchProcessor":
        """Build a processor using the ``batch`` settings section."""
        return cls(engine, max_parallelism=settings.batch.max_parallelism)

    async def index_documents(
        self,
        documents: dict[str, str],
        progress: Optional["asyncio.Queue[BatchProgress]"] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchIndexingResult:
        """Index documents keyed by source name."""

        async def index(source: str) -> IndexingResult:
            return await self.engine.index_document(source, documents[source])

        return await self._index(list(documents), index, progress, cancel_event)

    async def index_directory(
        self,
        directory: Union[str, Path],
        pattern: str = "*.txt",
        progress: Optional["asyncio.Queue[BatchProgress]"] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchIndexingResult:
        """Index every file under a directory that matches a glob pattern.

        Files are searched recursively and indexed under their path relative
        to the directory. When the engine is structure aware, each file is
        chunked with the chunker for its extension.

        Raises:
            InvalidInputError: If the directory does not exist
        """
        root = Path(directory)
        if not root.is_dir():
            raise InvalidInputError(f"Directory not found: {directory}")

        files = {p.relative_to(root).as_posix(): p for p in sorted(root.rglob(pattern)) if p.is_file()}
        logger.info(f"Found {len(files)} files matching '{pattern}' in {root}")

        async def index(source: str) -> IndexingResult:
            path = files[source]
            loop = asyncio.get_running_loop()
            content = await loop.run_in_executor(None, lambda: path.read_text(encoding="utf-8"))

            chunker = None
            if self.engine.structure_aware:
                base = self.engine.chunker
                chunker = chunker_for_extension(
                    path.suffix,
                    getattr(base, "chunk_size", 500),
                    getattr(base, "overlap", 50),
                )
            return await self.engine.index_document(source, content, chunker=chunker)

        return await self._index(list(files), index, progress, cancel_event)

    async def query_batch(
        self,
        queries: list[str],
        top_k: Optional[int] = None,
        progress: Optional["asyncio.Queue[BatchProgress]"] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchQueryResult:
        """Answer many questions."""
        start = time.perf_counter()

        async def answer(index: int) -> RagResult:
            return await self.engine.query(queries[index], top_k=top_k)

        results, cancelled = await self._run(
            list(range(len(queries))),
            answer,
            label=lambda index: queries[index],
            progress=progress,
            cancel_event=cancel_event,
            on_error=lambda index, e: RagResult(
                query=queries[index], success=False, error=str(e)
            ),
        )

        succeeded = sum(1 for r in results if r.success)
        return BatchQueryResult(
            total=len(queries),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            average_processing_time_ms=(
                sum(r.processing_time_ms for r in results) / len(results) if results else 0.0
            ),
            cancelled=cancelled,
        )

    async def _index(
        self,
        sources: list[str],
        index: Callable[[str], Awaitable[IndexingResult]],
        progress: Optional["asyncio.Queue[BatchProgress]"],
        cancel_event: Optional[asyncio.Event],
    ) -> BatchIndexingResult:
        start = time.perf_counter()

        results, cancelled = await self._run(
            sources,
            index,
            label=lambda source: source,
            progress=progress,
            cancel_event=cancel_event,
            on_error=lambda source, e: IndexingResult(source=source, success=False, error=str(e)),
        )

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch indexed {succeeded}/{len(sources)} documents")
        return BatchIndexingResult(
            total=len(sources),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            cancelled=cancelled,
        )

    async def _run(
        self,
        items: list,
        work: Callable[..., Awaitable[T]],
        label: Callable[..., str],
        progress: Optional["asyncio.Queue[BatchProgress]"],
        cancel_event: Optional[asyncio.Event],
        on_error: Callable[..., T],
    ) -> tuple[list[T], bool]:
        """Run work over items with bounded parallelism.

        Returns:
            Results of the items that ran, in input order, and whether the
            batch was cancelled
        """
        semaphore = asyncio.Semaphore(self.max_parallelism)
        total = len(items)
        completed = 0
        cancelled = False

        async def run_one(item) -> Optional[T]:
            nonlocal completed, cancelled
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    return None

                try:
                    result = await work(item)
                except Exception as e:
                    logger.error(f"Batch item '{label(item)}' failed: {e}")
                    result = on_error(item, e)

                completed += 1
                if progress is not None:
                    try:
                        progress.put_nowait(BatchProgress(
                            completed=completed,
                            total=total,
                            current_item=label(item),
                        ))
                    except asyncio.QueueFull:
                        logger.debug(f"Progress queue full, dropped update for '{label(item)}'")
                return result

        outcomes = await asyncio.gather(*(run_one(item) for item in items))
        return [r for r in outcomes if r is not None], cancelled
