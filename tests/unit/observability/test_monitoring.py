"""
Observability Tests

Covers metric persistence to SQLite, span tracing and JSON log formatting.
"""

import json
import logging

import pytest

from semcache.observability import JSONFormatter, ObservabilityAdapter, configure_logging
from semcache.observability.monitoring import _trace_id_ctx


@pytest.fixture
async def adapter():
    obs = ObservabilityAdapter(
        enable_metrics=True,
        enable_tracing=True,
        metrics_db_path=":memory:",
        log_level="DEBUG",
        json_logs=False,
    )
    yield obs
    await obs.close()


class TestMetrics:
    """Test metric recording and persistence."""

    async def test_counter_persisted(self, adapter):
        """Test counters are written with the package prefix."""
        adapter.increment("semantic_cache.hit")
        adapter.increment("semantic_cache.hit", tags={"owner": "alice"})

        records = await adapter.get_metrics("semcache.semantic_cache.hit")

        assert len(records) == 2
        assert all(r["kind"] == "counter" for r in records)
        assert {json.dumps(r["tags"]) for r in records} == {"{}", '{"owner": "alice"}'}

    async def test_gauge_and_histogram(self, adapter):
        """Test gauge and histogram kinds are recorded."""
        adapter.gauge("semantic_cache.entries", 42)
        adapter.histogram("semantic_cache.similarity", 0.93)

        records = await adapter.get_metrics()
        kinds = {r["name"]: (r["kind"], r["value"]) for r in records}

        assert kinds["semcache.semantic_cache.entries"] == ("gauge", 42.0)
        assert kinds["semcache.semantic_cache.similarity"] == ("histogram", 0.93)

    async def test_disabled_metrics_not_stored(self):
        """Test nothing is written when metrics are disabled."""
        obs = ObservabilityAdapter(enable_metrics=False, metrics_db_path=":memory:", json_logs=False)
        obs.increment("semantic_cache.hit")

        assert await obs.get_metrics() == []
        await obs.close()

    async def test_clear_metrics(self, adapter):
        """Test clear_metrics empties the table."""
        adapter.increment("semantic_cache.miss")
        await adapter.clear_metrics()

        assert await adapter.get_metrics() == []

    def test_no_running_loop(self):
        """Test metrics from synchronous code are dropped without error."""
        obs = ObservabilityAdapter(metrics_db_path=":memory:", json_logs=False)
        obs.increment("semantic_cache.hit")
        assert obs._pending == set()


class TestTracing:
    """Test span tracing."""

    async def test_span_duration_recorded(self, adapter):
        """Test each span records its duration."""
        with adapter.trace("semantic_cache.get", tags={"owner": "alice"}):
            pass

        records = await adapter.get_metrics("semcache.span.duration")

        assert len(records) == 1
        assert records[0]["tags"] == {"owner": "alice", "span_name": "semantic_cache.get"}

    async def test_span_reraises(self, adapter):
        """Test exceptions inside a span propagate."""
        with pytest.raises(ValueError):
            with adapter.trace("semantic_cache.set"):
                raise ValueError("bad payload")

    def test_trace_ids(self, observability):
        """Test trace id generation sets the context variable."""
        token = _trace_id_ctx.set(None)
        try:
            trace_id = observability.generate_trace_id()
            assert observability.get_trace_id() == trace_id
        finally:
            _trace_id_ctx.reset(token)


class TestJSONFormatter:
    """Test structured log output."""

    def test_format_includes_extra_fields(self):
        """Test extra fields and standard keys are emitted."""
        record = logging.LogRecord(
            name="semcache.semantic_cache.cache",
            level=logging.INFO,
            pathname=__file__,
            lineno=10,
            msg="Semantic cache hit for query: %s",
            args=("revenue",),
            exc_info=None,
        )
        record.similarity = 0.93

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "semcache.semantic_cache.cache"
        assert data["message"] == "Semantic cache hit for query: revenue"
        assert data["similarity"] == 0.93
        assert data["timestamp"].endswith("Z")

    def test_format_exception(self):
        """Test exceptions are rendered into the payload."""
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            import sys

            record = logging.LogRecord("semcache", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in data["exception"]

    def test_configure_logging(self):
        """Test the package logger gets exactly one handler."""
        logger = configure_logging("WARNING", json_logs=True)
        configure_logging("WARNING", json_logs=True)

        assert logger.name == "semcache"
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
