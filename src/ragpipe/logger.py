"""Structured event logging and in-process metrics for the RAG engine."""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate(text: str, max_length: int = 100) -> str:
    return text if len(text) <= max_length else text[:max_length] + "..."


def _format_context(context: Optional[dict[str, Any]]) -> str:
    if not context:
        return ""
    return json.dumps(context, default=str)


class QueryLog(BaseModel):
    query: str
    retrieved_chunks: int
    processing_time_ms: float
    timestamp: datetime = Field(default_factory=_utcnow)


class IndexingLog(BaseModel):
    source: str
    chunks: int
    processing_time_ms: float
    timestamp: datetime = Field(default_factory=_utcnow)


class ErrorLog(BaseModel):
    operation: str
    message: str
    error_type: str
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)


class LogMetrics(BaseModel):
    """Aggregated view of everything the logger has recorded."""

    total_queries: int = 0
    total_index_operations: int = 0
    total_errors: int = 0
    average_query_time_ms: float = 0.0
    average_index_time_ms: float = 0.0
    average_chunks_retrieved: float = 0.0
    recent_queries: list[QueryLog] = Field(default_factory=list)
    recent_errors: list[ErrorLog] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)


class RagLogger:
    """Observability sink for the engine.

    Each event is written to the standard ``logging`` logger and, when
    metrics are enabled, recorded in memory so ``get_metrics`` can report
    totals and averages. Logging must never break a query, so no method
    here raises.

    Example:
        ```python
        rag_logger = RagLogger()
        rag_logger.log_query("What is RAG?", retrieved_chunks=3, processing_time_ms=42.0)
        metrics = rag_logger.get_metrics()
        ```
    """

    def __init__(self, enable_metrics: bool = True, name: str = "ragpipe.events"):
        """Initialize the logger.

        Args:
            enable_metrics: Record events for get_metrics
            name: Name of the underlying logging logger
        """
        self.enable_metrics = enable_metrics
        self._log = logging.getLogger(name)
        self._queries: list[QueryLog] = []
        self._indexing: list[IndexingLog] = []
        self._errors: list[ErrorLog] = []
        self._lock = threading.Lock()

    def log_query(self, query: str, retrieved_chunks: int, processing_time_ms: float) -> None:
        try:
            if self.enable_metrics:
                entry = QueryLog(
                    query=query,
                    retrieved_chunks=retrieved_chunks,
                    processing_time_ms=processing_time_ms,
                )
                with self._lock:
                    self._queries.append(entry)

            self._log.info(
                f"Query processed: {_truncate(query)} | Chunks: {retrieved_chunks} "
                f"| Time: {processing_time_ms:.1f}ms"
            )
        except Exception as e:
            logger.warning(f"Failed to record query event: {e}")

    def log_indexing(self, source: str, chunks: int, processing_time_ms: float) -> None:
        try:
            if self.enable_metrics:
                entry = IndexingLog(
                    source=source,
                    chunks=chunks,
                    processing_time_ms=processing_time_ms,
                )
                with self._lock:
                    self._indexing.append(entry)

            self._log.info(
                f"Document indexed: {source} | Chunks: {chunks} "
                f"| Time: {processing_time_ms:.1f}ms"
            )
        except Exception as e:
            logger.warning(f"Failed to record indexing event: {e}")

    def log_error(
        self,
        operation: str,
        error: BaseException,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Record a failed operation with its exception and context."""
        try:
            if self.enable_metrics:
                entry = ErrorLog(
                    operation=operation,
                    message=str(error),
                    error_type=type(error).__name__,
                    context={k: str(v) for k, v in (context or {}).items()},
                )
                with self._lock:
                    self._errors.append(entry)

            self._log.error(
                f"Error in {operation}: {error} | Context: {_format_context(context) or '{}'}",
                exc_info=(type(error), error, error.__traceback__),
            )
        except Exception as e:
            logger.warning(f"Failed to record error event: {e}")

    def log_info(self, message: str, context: Optional[dict[str, Any]] = None) -> None:
        try:
            self._log.info(f"{message} {_format_context(context)}".rstrip())
        except Exception as e:
            logger.warning(f"Failed to log message: {e}")

    def log_warning(self, message: str, context: Optional[dict[str, Any]] = None) -> None:
        try:
            self._log.warning(f"{message} {_format_context(context)}".rstrip())
        except Exception as e:
            logger.warning(f"Failed to log message: {e}")

    def get_metrics(self) -> LogMetrics:
        """Summarize recorded events.

        Recent queries and errors are the last ten, newest first.
        """
        with self._lock:
            queries = list(self._queries)
            indexing = list(self._indexing)
            errors = list(self._errors)

        def average(values: list[float]) -> float:
            return sum(values) / len(values) if values else 0.0

        return LogMetrics(
            total_queries=len(queries),
            total_index_operations=len(indexing),
            total_errors=len(errors),
            average_query_time_ms=average([q.processing_time_ms for q in queries]),
            average_index_time_ms=average([i.processing_time_ms for i in indexing]),
            average_chunks_retrieved=average([q.retrieved_chunks for q in queries]),
            recent_queries=queries[-RECENT_LIMIT:][::-1],
            recent_errors=errors[-RECENT_LIMIT:][::-1],
        )

    def export_metrics(self, path: Union[str, Path]) -> bool:
        """Write current metrics to a JSON file.

        Returns:
            True if the file was written
        """
        try:
            Path(path).write_text(self.get_metrics().model_dump_json(indent=2), encoding="utf-8")
        except Exception as e:
            logger.warning(f"Failed to export metrics to {path}: {e}")
            return False
        return True

    def reset(self) -> None:
        """Forget all recorded events."""
        with self._lock:
            self._queries.clear()
            self._indexing.clear()
            self._errors.clear()
