"""Observability helpers: logging, metrics, and health checks."""

from .logging_config import configure_logging
from .metrics import (
    increment_counter,
    set_gauge,
    observe_latency,
    record_event,
    get_counter_total,
    get_metrics_snapshot,
    get_recent_events,
)
from .health import check_database_health

__all__ = [
    "configure_logging",
    "increment_counter",
    "set_gauge",
    "observe_latency",
    "record_event",
    "get_counter_total",
    "get_metrics_snapshot",
    "get_recent_events",
    "check_database_health",
]
