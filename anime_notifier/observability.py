import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, push_to_gateway

from .config import Settings

# LogRecord attributes that are not user supplied extras
_RECORD_FIELDS = frozenset((
    "args", "msg", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "name", "taskName",
))


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "level": record.levelname,
            "time": int(record.created),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for k, v in record.__dict__.items():
            if k.startswith("_") or k in _RECORD_FIELDS:
                continue
            payload[k] = v
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(settings: Settings) -> None:
    level = settings.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    if settings.log_format == "json":
        for h in list(root.handlers):
            h.setFormatter(JsonFormatter())


@dataclass
class Metrics:
    registry: CollectorRegistry
    pushgateway: Optional[str]
    job: str
    reconcile_runs: Counter
    records_changed: Counter
    notifications_collected: Counter
    messages_published: Counter
    publish_failures: Counter
    operation_seconds: Histogram

    @classmethod
    def init(cls, settings: Settings) -> "Metrics":
        registry = CollectorRegistry()
        return cls(
            registry=registry,
            pushgateway=settings.metrics_pushgateway_url,
            job=settings.metrics_job_name,
            reconcile_runs=Counter(
                "anime_reconcile_runs_total", "Schedule reconciliations", labelnames=("status",), registry=registry
            ),
            records_changed=Counter(
                "anime_records_changed_total", "Anime records changed by reconciliation",
                labelnames=("action",), registry=registry
            ),
            notifications_collected=Counter(
                "anime_notifications_collected_total", "Notification events collected", registry=registry
            ),
            messages_published=Counter(
                "anime_messages_published_total", "Messages published to the bus", registry=registry
            ),
            publish_failures=Counter(
                "anime_publish_failures_total", "Failed bus publishes", registry=registry
            ),
            operation_seconds=Histogram(
                "anime_operation_seconds", "Duration of pipeline operations", labelnames=("operation",),
                buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30), registry=registry
            ),
        )

    def record_reconcile(self, status: str, changes: Optional[Dict[str, int]] = None) -> None:
        self.reconcile_runs.labels(status).inc()
        for action, count in (changes or {}).items():
            if count:
                self.records_changed.labels(action).inc(count)

    def push(self) -> None:
        if not self.pushgateway:
            return
        try:
            push_to_gateway(self.pushgateway, job=self.job, registry=self.registry)
        except OSError:
            logging.getLogger(__name__).debug("pushgateway failed", exc_info=True)

    # Lightweight timer context manager
    def timer(self, operation: str):
        class _T:
            def __init__(self, outer: Metrics):
                self.outer = outer
                self.start = 0.0
            def __enter__(self_inner):
                self_inner.start = time.perf_counter()
                return self_inner
            def __exit__(self_inner, exc_type, exc, tb):
                dur = max(0.0, time.perf_counter() - self_inner.start)
                self_inner.outer.operation_seconds.labels(operation).observe(dur)
        return _T(self)
