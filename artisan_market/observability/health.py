from __future__ import annotations

from typing import Any, Dict, Iterable

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from artisan_market.database import engine
from artisan_market.observability.metrics import get_counter_total


def check_database_health() -> Dict[str, str]:
    """Attempt a lightweight DB query to ensure connectivity."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {"status": "UP"}
    except OperationalError as exc:
        return {"status": "DOWN", "detail": str(exc)}


def check_audit_health() -> Dict[str, Any]:
    """Audit writes are best effort; any dropped entry degrades health."""
    dropped = int(get_counter_total("admin_audit_dropped_total"))
    return {"status": "UP" if dropped == 0 else "DEGRADED", "dropped_entries": dropped}


def check_scheduler_health(schedulers: Iterable[Any], enabled: bool) -> Dict[str, Any]:
    jobs = {scheduler.job_id: scheduler.status() for scheduler in schedulers}
    if not enabled:
        status = "DISABLED"
    elif jobs and all(job["running"] for job in jobs.values()):
        status = "UP"
    else:
        status = "DOWN"
    return {"status": status, "jobs": jobs}
