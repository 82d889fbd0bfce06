"""Tests for the event logger and its metrics."""

import json
import logging

from ragpipe import RagLogger


class TestRagLogger:
    """Tests for RagLogger."""

    def test_empty_metrics(self):
        """Test metrics before any event."""
        metrics = RagLogger().get_metrics()

        assert metrics.total_queries == 0
        assert metrics.average_query_time_ms == 0.0
        assert metrics.recent_queries == []
        assert metrics.generated_at is not None

    def test_query_and_index_metrics(self):
        """Test totals and averages."""
        rag_logger = RagLogger()
        rag_logger.log_query("first", retrieved_chunks=2, processing_time_ms=10.0)
        rag_logger.log_query("second", retrieved_chunks=4, processing_time_ms=30.0)
        rag_logger.log_indexing("a.txt", chunks=5, processing_time_ms=100.0)

        metrics = rag_logger.get_metrics()
        assert metrics.total_queries == 2
        assert metrics.total_index_operations == 1
        assert metrics.average_query_time_ms == 20.0
        assert metrics.average_chunks_retrieved == 3.0
        assert metrics.average_index_time_ms == 100.0

    def test_recent_entries_newest_first(self):
        """Test only the last ten queries are kept in the summary."""
        rag_logger = RagLogger()
        for i in range(12):
            rag_logger.log_query(f"q{i}", retrieved_chunks=1, processing_time_ms=1.0)

        recent = rag_logger.get_metrics().recent_queries
        assert len(recent) == 10
        assert recent[0].query == "q11"
        assert recent[-1].query == "q2"

    def test_log_error(self, caplog):
        """Test errors are recorded with their context and logged."""
        rag_logger = RagLogger()

        with caplog.at_level(logging.ERROR, logger="ragpipe.events"):
            rag_logger.log_error("query", RuntimeError("boom"), {"query": "why?", "top_k": 3})

        metrics = rag_logger.get_metrics()
        assert metrics.total_errors == 1
        error = metrics.recent_errors[0]
        assert error.operation == "query"
        assert error.message == "boom"
        assert error.error_type == "RuntimeError"
        assert error.context == {"query": "why?", "top_k": "3"}
        assert "Error in query: boom" in caplog.text

    def test_info_and_warning(self, caplog):
        """Test plain messages are written with their context."""
        rag_logger = RagLogger()

        with caplog.at_level(logging.INFO, logger="ragpipe.events"):
            rag_logger.log_info("Index cleared")
            rag_logger.log_warning("Cache full", {"size": 10})

        assert "Index cleared" in caplog.text
        assert 'Cache full {"size": 10}' in caplog.text

    def test_metrics_disabled(self):
        """Test nothing is recorded when metrics are off."""
        rag_logger = RagLogger(enable_metrics=False)
        rag_logger.log_query("q", retrieved_chunks=1, processing_time_ms=1.0)
        rag_logger.log_error("query", RuntimeError("boom"))

        metrics = rag_logger.get_metrics()
        assert metrics.total_queries == 0
        assert metrics.total_errors == 0

    def test_export_metrics(self, tmp_path):
        """Test metrics are written as JSON."""
        rag_logger = RagLogger()
        rag_logger.log_query("What is RAG?", retrieved_chunks=3, processing_time_ms=12.5)
        path = tmp_path / "metrics.json"

        assert rag_logger.export_metrics(path) is True

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["total_queries"] == 1
        assert data["recent_queries"][0]["query"] == "What is RAG?"

    def test_export_failure_does_not_raise(self, tmp_path):
        """Test an unwritable path is reported, not raised."""
        rag_logger = RagLogger()
        assert rag_logger.export_metrics(tmp_path / "missing" / "metrics.json") is False

    def test_reset(self):
        """Test recorded events can be discarded."""
        rag_logger = RagLogger()
        rag_logger.log_indexing("a.txt", chunks=1, processing_time_ms=1.0)
        rag_logger.reset()

        assert rag_logger.get_metrics().total_index_operations == 0
