"""Prometheus instruments for the order lifecycle, HTTP traffic and jobs.

A single ``metrics`` instance is shared by the API and the jobs runner;
``configure_metrics`` rebuilds its registry in place so modules that
imported the instance keep recording into the live one. When disabled,
every ``record_*`` call is a no-op.
"""

import logging
import time

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

# attribute name -> (instrument class, metric name, help text, label names)
INSTRUMENTS = {
    "order_transitions": (
        Counter,
        "order_transitions_total",
        "Order lifecycle events by event name and outcome.",
        ("event", "result"),
    ),
    "slot_claims": (Counter, "slot_claims_total", "Slot claim attempts by outcome.", ("result",)),
    "order_timeouts": (
        Counter,
        "order_timeout_resolutions_total",
        "Timeout resolver outcomes per scanned order.",
        ("result",),
    ),
    "order_auto_completions": (
        Counter,
        "order_auto_completions_total",
        "Auto-completion outcomes per scanned confirmed order.",
        ("result",),
    ),
    "outbox_depth": (Gauge, "outbox_queue_depth", "Notification outbox rows by status.", ("status",)),
    "http_5xx": (Counter, "http_5xx_total", "HTTP 5xx responses by method and route.", ("method", "path")),
    "http_latency": (
        Histogram,
        "http_request_latency_seconds",
        "HTTP request latency by method, route and status class.",
        ("method", "path", "status_class"),
    ),
    "job_heartbeat": (Gauge, "job_heartbeat_timestamp", "Last heartbeat timestamp per job.", ("job",)),
    "job_last_success": (
        Gauge,
        "job_last_success_timestamp",
        "Last successful run timestamp per job.",
        ("job",),
    ),
    "job_errors": (Counter, "job_errors_total", "Job failures by job and reason.", ("job", "reason")),
}


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        for attribute, (kind, name, documentation, labels) in INSTRUMENTS.items():
            instrument = kind(name, documentation, labels, registry=self.registry) if enabled else None
            setattr(self, attribute, instrument)

    def _labels(self, attribute: str, **labels: str):
        instrument = getattr(self, attribute, None)
        if not self.enabled or instrument is None:
            return None
        return instrument.labels(**{key: value or "unknown" for key, value in labels.items()})

    def record_order_transition(self, event: str, result: str) -> None:
        child = self._labels("order_transitions", event=event, result=result)
        if child is not None:
            child.inc()

    def record_slot_claim(self, result: str) -> None:
        child = self._labels("slot_claims", result=result)
        if child is not None:
            child.inc()

    def record_order_timeout(self, result: str, count: int = 1) -> None:
        child = self._labels("order_timeouts", result=result)
        if child is not None and count > 0:
            child.inc(count)

    def record_order_auto_completion(self, result: str, count: int = 1) -> None:
        child = self._labels("order_auto_completions", result=result)
        if child is not None and count > 0:
            child.inc(count)

    def set_outbox_depth(self, status: str, count: int) -> None:
        child = self._labels("outbox_depth", status=status)
        if child is not None:
            child.set(max(0, count))

    def record_http_5xx(self, method: str, path: str) -> None:
        child = self._labels("http_5xx", method=method, path=path)
        if child is not None:
            child.inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        child = self._labels("http_latency", method=method, path=path, status_class=status_class)
        if child is not None:
            child.observe(max(0.0, float(duration_seconds)))

    def record_job_heartbeat(self, job: str, timestamp: float | None = None) -> None:
        child = self._labels("job_heartbeat", job=job)
        if child is not None:
            child.set(timestamp if timestamp is not None else time.time())

    def record_job_success(self, job: str, timestamp: float | None = None) -> None:
        child = self._labels("job_last_success", job=job)
        if child is not None:
            child.set(timestamp if timestamp is not None else time.time())

    def record_job_error(self, job: str, reason: str) -> None:
        child = self._labels("job_errors", job=job, reason=reason)
        if child is not None:
            child.inc()

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
