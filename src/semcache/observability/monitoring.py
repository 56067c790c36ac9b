"""
semcache - Observability Monitoring

Metrics collection with SQLite persistence, span tracing and structured
JSON logging. Metric writes are fire-and-forget tasks on the running event
loop; when called from synchronous code with no loop running the sample is
only logged at debug level.
"""

import asyncio
import contextvars
import json
import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, select

from .database import MetricsDatabase
from .db_models import MetricKind, MetricRecord

# Trace ID context variable for span correlation
_trace_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

# Request ID context variable
_request_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)

ROOT_LOGGER = "semcache"
METRIC_PREFIX = "semcache"


class ObservabilityAdapter:
    """
    Observability adapter with SQLite persistence.

    Provides:
    - Metrics (counters, gauges, histograms) -> SQLite
    - Span tracing with trace IDs
    - Structured JSON logging
    """

    def __init__(
        self,
        enable_metrics: bool = True,
        enable_tracing: bool = True,
        metrics_db_path: str = "./data/metrics.db",
        log_level: str = "INFO",
        json_logs: bool = True,
    ):
        """
        Initialize observability adapter.

        Args:
            enable_metrics: Enable metrics collection
            enable_tracing: Enable span tracing
            metrics_db_path: Path to SQLite database (or ":memory:")
            log_level: Level for the package logger
            json_logs: Format package logs as JSON lines
        """
        self.enable_metrics = enable_metrics
        self.enable_tracing = enable_tracing

        self._db = MetricsDatabase(db_path=metrics_db_path)
        self._pending: set[asyncio.Task[None]] = set()

        self.logger = configure_logging(log_level, json_logs)

    def increment(
        self,
        metric: str,
        value: float = 1.0,
        tags: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Args:
            metric: Metric name (e.g., "semantic_cache.hit")
            value: Value to increment by
            tags: Optional metric tags/labels
        """
        self._record(MetricKind.COUNTER, metric, value, tags)

    def gauge(
        self,
        metric: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """
        Set a gauge metric.

        Args:
            metric: Metric name
            value: Current value
            tags: Optional metric tags
        """
        self._record(MetricKind.GAUGE, metric, value, tags)

    def histogram(
        self,
        metric: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """
        Record a histogram metric (latencies, similarity scores, sizes).

        Args:
            metric: Metric name
            value: Value to record
            tags: Optional metric tags
        """
        self._record(MetricKind.HISTOGRAM, metric, value, tags)

    def _record(
        self,
        kind: MetricKind,
        metric: str,
        value: float,
        tags: dict[str, str] | None,
    ) -> None:
        if not self.enable_metrics:
            return

        metric_name = f"{METRIC_PREFIX}.{metric}"
        tags = tags or {}

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug(
                f"No running loop, metric not persisted: {metric_name}",
                extra={"metric": metric_name, "value": value},
            )
            return

        # Fire and forget; keep a reference so the task is not collected early
        task = loop.create_task(self._store_metric(metric_name, kind, value, tags))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def event(self, name: str, payload: dict[str, Any]) -> None:
        """
        Record an event.

        Args:
            name: Event name
            payload: Event data
        """
        self.logger.info(
            f"Event: {name}",
            extra={
                "event_name": name,
                "event_payload": payload,
                "trace_id": self.get_trace_id(),
            },
        )

    @contextmanager
    def trace(self, span_name: str, tags: dict[str, str] | None = None) -> Generator[None, None, None]:
        """
        Context manager for tracing a span.

        Args:
            span_name: Name of the span
            tags: Optional span tags

        Example:
            with observability.trace("semantic_cache.get"):
                payload = await cache.get(query)
        """
        if not self.enable_tracing:
            yield
            return

        start_time = time.perf_counter()
        trace_id = self.get_trace_id()
        tags = tags or {}

        self.logger.debug(
            f"Span started: {span_name}",
            extra={"span_name": span_name, "trace_id": trace_id, "tags": tags},
        )

        try:
            yield
        except Exception as e:
            self.logger.error(
                f"Span error: {span_name}",
                extra={
                    "span_name": span_name,
                    "trace_id": trace_id,
                    "error": str(e),
                    "tags": tags,
                },
                exc_info=True,
            )
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.histogram("span.duration", duration_ms, tags={"span_name": span_name, **tags})

            self.logger.debug(
                f"Span completed: {span_name}",
                extra={
                    "span_name": span_name,
                    "trace_id": trace_id,
                    "duration_ms": round(duration_ms, 2),
                    "tags": tags,
                },
            )

    def get_trace_id(self) -> str | None:
        """Get current trace ID from context."""
        return _trace_id_ctx.get()

    def set_trace_id(self, trace_id: str) -> None:
        """Set trace ID in context."""
        _trace_id_ctx.set(trace_id)

    def generate_trace_id(self) -> str:
        """Generate a new trace ID and set it in context."""
        trace_id = str(uuid4())
        self.set_trace_id(trace_id)
        return trace_id

    def get_request_id(self) -> str | None:
        """Get current request ID from context."""
        return _request_id_ctx.get()

    def set_request_id(self, request_id: str) -> None:
        """Set request ID in context."""
        _request_id_ctx.set(request_id)

    async def flush(self) -> None:
        """Wait for all in-flight metric writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def get_metrics(
        self,
        metric_name: str | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """
        Get metrics from database, newest first.

        Args:
            metric_name: Optional filter by full metric name
            limit: Maximum number of records to return

        Returns:
            List of metric records as dictionaries
        """
        await self.flush()

        async with self._db.get_session() as session:
            query = select(MetricRecord).order_by(MetricRecord.timestamp.desc()).limit(limit)

            if metric_name:
                query = query.where(MetricRecord.name == metric_name)

            result = await session.execute(query)
            records = result.scalars().all()

            return [record.to_dict() for record in records]

    async def clear_metrics(self) -> None:
        """Clear all metrics from database (testing/reset)."""
        await self.flush()

        async with self._db.get_session() as session:
            await session.execute(delete(MetricRecord))
            await session.commit()

    async def close(self) -> None:
        """Flush pending writes and close database connections."""
        await self.flush()
        await self._db.close()

    async def _store_metric(
        self,
        name: str,
        kind: MetricKind,
        value: float,
        tags: dict[str, str],
    ) -> None:
        """Store metric to SQLite database."""
        try:
            record = MetricRecord.from_sample(
                name=name,
                kind=kind,
                value=value,
                tags=tags,
                timestamp=time.time(),
            )

            async with self._db.get_session() as session:
                session.add(record)
                await session.commit()

        except Exception as e:
            # Metrics must never break the cache path
            self.logger.error(f"Failed to store metric {name}: {e}")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    _RESERVED = frozenset(
        {
            "args",
            "msg",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "exc_info",
            "exc_text",
            "stack_info",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "taskName",
            "name",
            "message",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        trace_id = _trace_id_ctx.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        request_id = _request_id_ctx.get()
        if request_id:
            log_data["request_id"] = request_id

        # Fields passed via extra={...}
        for key, value in record.__dict__.items():
            if key not in log_data and not key.startswith("_") and key not in self._RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", json_logs: bool = True) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Log level name
        json_logs: Use JSONFormatter instead of a plain text format

    Returns:
        The configured "semcache" logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()

    handler = logging.StreamHandler()
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level.upper())

    return logger


# Global observability adapter instance (singleton)
_observability_adapter: ObservabilityAdapter | None = None


def get_observability() -> ObservabilityAdapter:
    """
    Get the global observability adapter instance.

    Returns:
        Global ObservabilityAdapter instance
    """
    global _observability_adapter

    if _observability_adapter is None:
        # Auto-initialize from config; imported here to avoid an import cycle
        from ..config import get_config

        config = get_config()
        _observability_adapter = ObservabilityAdapter(
            enable_metrics=config.observability.enable_metrics,
            enable_tracing=config.observability.enable_tracing,
            metrics_db_path=config.observability.metrics_db_path,
            log_level=str(config.log_level),
            json_logs=config.observability.json_logs,
        )

    return _observability_adapter


def initialize_observability(
    enable_metrics: bool = True,
    enable_tracing: bool = True,
    metrics_db_path: str = "./data/metrics.db",
    log_level: str = "INFO",
    json_logs: bool = True,
) -> ObservabilityAdapter:
    """
    Initialize the global observability adapter.

    Args:
        enable_metrics: Enable metrics collection
        enable_tracing: Enable span tracing
        metrics_db_path: Path to SQLite database
        log_level: Level for the package logger
        json_logs: Format package logs as JSON lines

    Returns:
        Initialized ObservabilityAdapter instance
    """
    global _observability_adapter

    _observability_adapter = ObservabilityAdapter(
        enable_metrics=enable_metrics,
        enable_tracing=enable_tracing,
        metrics_db_path=metrics_db_path,
        log_level=log_level,
        json_logs=json_logs,
    )

    return _observability_adapter


def reset_observability() -> None:
    """Drop the global adapter (tests)."""
    global _observability_adapter
    _observability_adapter = None
