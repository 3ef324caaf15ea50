"""CloudWatch custom metrics for every external call the agent makes.

Covers the CoverageX API, the Chatwoot API and the Anthropic completion
backend.  Data points are buffered in memory and pushed to CloudWatch by a
daemon thread every ``FLUSH_INTERVAL_SECONDS`` when ``METRICS_ENABLED`` is
``"true"``; otherwise they are only logged at DEBUG level.

Usage
-----
>>> from coverage_agent.services.metrics import metrics
>>> with metrics.track("coveragex", "get_makes"):
...     client.get_makes("2023")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "CoverageXAgent"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch limit per PutMetricData call


class MetricsClient:
    """Buffered CloudWatch publisher for ``ExternalAPI/*`` metrics."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_call(
        self,
        service: str,
        operation: str,
        latency_ms: float,
        *,
        error_type: str | None = None,
    ) -> None:
        """Record one external call; ``error_type`` marks it as failed."""
        now = datetime.now(UTC)
        service_dim = {"Name": "Service", "Value": service}
        status = "failure" if error_type else "success"

        points = [
            self._point(
                "ExternalAPI/RequestCount", now, 1, "Count",
                [service_dim, {"Name": "Status", "Value": status}],
            ),
            self._point(
                "ExternalAPI/Latency", now, latency_ms, "Milliseconds",
                [service_dim, {"Name": "Operation", "Value": operation}],
            ),
        ]
        if error_type:
            points.append(
                self._point(
                    "ExternalAPI/ErrorCount", now, 1, "Count",
                    [service_dim, {"Name": "ErrorType", "Value": error_type}],
                )
            )

        with self._lock:
            self._buffer.extend(points)
        logger.debug(
            "Metric: %s %s %s latency=%.1fms%s",
            service, operation, status, latency_ms,
            f" error={error_type}" if error_type else "",
        )

    @contextmanager
    def track(self, service: str, operation: str) -> Iterator[None]:
        """Time the enclosed block and record it; exceptions are re-raised."""
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.record_call(
                service, operation, (time.perf_counter() - t0) * 1000,
                error_type=type(exc).__name__,
            )
            raise
        self.record_call(service, operation, (time.perf_counter() - t0) * 1000)

    def flush(self) -> int:
        """Push the buffer to CloudWatch and return the number of points sent."""
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Dropping %d metric point(s): CloudWatch disabled", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            while sent < len(batch):
                chunk = batch[sent : sent + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
        except Exception:
            logger.exception("CloudWatch flush failed after %d of %d point(s)", sent, len(batch))
        else:
            logger.info("Flushed %d metric point(s) to CloudWatch", sent)
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    @staticmethod
    def _point(
        name: str,
        timestamp: datetime,
        value: float,
        unit: str,
        dimensions: list[dict[str, str]],
    ) -> dict[str, Any]:
        return {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": timestamp,
            "Value": value,
            "Unit": unit,
        }

    def _start_flush_thread(self) -> None:
        stop = threading.Event()

        def _run() -> None:
            while not stop.wait(FLUSH_INTERVAL_SECONDS):
                self.flush()

        def _shutdown() -> None:
            stop.set()
            self.flush()

        threading.Thread(target=_run, daemon=True, name="cloudwatch-flush").start()
        atexit.register(_shutdown)
        logger.info("CloudWatch flush every %ds to namespace %s", FLUSH_INTERVAL_SECONDS, NAMESPACE)


metrics = MetricsClient()
