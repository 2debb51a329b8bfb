"""
Admin Audit Log

Append-only record of every admin-initiated transition. Writing an entry is
best effort: ``log_admin_action`` never raises, so an audit outage can never
fail the business operation that triggered it. Dropped writes are logged and
counted instead (``dropped_count`` and the ``admin_audit_dropped_total``
metric), and the count is surfaced on ``/health``.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from artisan_market.config import Config
from artisan_market.database import SessionLocal
from artisan_market.identity import Identity, RequestMetadata
from artisan_market.models import AdminAuditEntry, as_utc, utc_now
from artisan_market.observability import increment_counter

AUDIT_DROPPED_METRIC = "admin_audit_dropped_total"


def to_json_safe(value: Any) -> Any:
    """Convert Decimals, datetimes and enums nested in ``value`` for a JSON column."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): to_json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(item) for item in value]
    return value


@dataclass
class AuditEntry:
    action: str
    target_type: str
    target_id: Any = None
    admin_id: Optional[int] = None
    admin_role: Optional[str] = None
    changes: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    metadata: RequestMetadata = field(default_factory=RequestMetadata)
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def for_identity(
        cls,
        identity: Identity,
        action: str,
        target_type: str,
        target_id: Any,
        metadata: Optional[RequestMetadata] = None,
        **kwargs: Any,
    ) -> "AuditEntry":
        return cls(
            action=action,
            target_type=target_type,
            target_id=target_id,
            admin_id=identity.user_id,
            admin_role=identity.role,
            metadata=metadata or RequestMetadata(),
            **kwargs,
        )


class AuditSink:
    """Destination for audit entries. ``write`` may raise; the log absorbs it."""

    def write(self, entry: AuditEntry) -> None:
        raise NotImplementedError


class SqlAlchemyAuditSink(AuditSink):
    """Writes each entry on its own session so a caller's rollback cannot drop it."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self.session_factory = session_factory

    def write(self, entry: AuditEntry) -> None:
        session = self.session_factory()
        try:
            session.add(
                AdminAuditEntry(
                    admin_id=entry.admin_id,
                    admin_role=entry.admin_role,
                    action=entry.action,
                    target_type=entry.target_type,
                    target_id=None if entry.target_id is None else str(entry.target_id),
                    changes=to_json_safe(entry.changes) if entry.changes is not None else None,
                    description=entry.description,
                    timestamp=entry.timestamp,
                    ip_address=entry.metadata.ip_address,
                    user_agent=(entry.metadata.user_agent or "")[:255] or None,
                    request_id=entry.metadata.request_id,
                    success=entry.success,
                    error_message=(entry.error_message or "")[:255] or None,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class AdminAuditLog:
    """Best-effort writer plus the paginated admin query over stored entries."""

    def __init__(
        self,
        db_session: Optional[Session] = None,
        sink: Optional[AuditSink] = None,
        page_size: Optional[int] = None,
    ) -> None:
        self.db = db_session
        self.sink = sink or SqlAlchemyAuditSink()
        self.page_size = page_size or Config.AUDIT_LOG_PAGE_SIZE
        self.dropped_count = 0
        self.logger = logging.getLogger(__name__)

    def log_admin_action(self, entry: AuditEntry) -> bool:
        try:
            self.sink.write(entry)
        except Exception:
            self.dropped_count += 1
            increment_counter(AUDIT_DROPPED_METRIC, labels={"action": entry.action})
            self.logger.exception(
                "Dropped admin audit entry %s for %s %s",
                entry.action,
                entry.target_type,
                entry.target_id,
                extra={"admin_id": entry.admin_id},
            )
            return False

        increment_counter("admin_audit_entries_total", labels={"action": entry.action})
        return True

    def query(
        self,
        filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Return one page of audit entries, newest first.

        Supported filters: ``admin_id``, ``action``, ``target_type``,
        ``target_id``, ``start_date`` and ``end_date`` (inclusive).
        """
        if self.db is None:
            raise RuntimeError("AdminAuditLog.query requires a database session")

        filters = filters or {}
        page = max(1, page)
        page_size = min(page_size or self.page_size, Config.AUDIT_LOG_MAX_PAGE_SIZE)

        query = self.db.query(AdminAuditEntry)
        if filters.get("admin_id") is not None:
            query = query.filter(AdminAuditEntry.admin_id == filters["admin_id"])
        if filters.get("action"):
            query = query.filter(AdminAuditEntry.action == filters["action"])
        if filters.get("target_type"):
            query = query.filter(AdminAuditEntry.target_type == filters["target_type"])
        if filters.get("target_id") is not None:
            query = query.filter(AdminAuditEntry.target_id == str(filters["target_id"]))
        if filters.get("start_date"):
            query = query.filter(AdminAuditEntry.timestamp >= filters["start_date"])
        if filters.get("end_date"):
            query = query.filter(AdminAuditEntry.timestamp <= filters["end_date"])

        total_count = query.count()
        entries = (
            query.order_by(AdminAuditEntry.timestamp.desc(), AdminAuditEntry.auditID.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )

        return {
            "entries": [serialize_audit_entry(entry) for entry in entries],
            "total_count": total_count,
            "page": page,
            "page_size": page_size,
            "total_pages": max(1, math.ceil(total_count / page_size)),
            "filters_applied": to_json_safe({key: value for key, value in filters.items() if value is not None}),
        }


def serialize_audit_entry(entry: AdminAuditEntry) -> Dict[str, Any]:
    timestamp = as_utc(entry.timestamp)
    return {
        "id": entry.auditID,
        "admin_id": entry.admin_id,
        "admin_role": entry.admin_role,
        "action": entry.action,
        "target_type": entry.target_type,
        "target_id": entry.target_id,
        "changes": entry.changes,
        "description": entry.description,
        "timestamp": timestamp.isoformat() if timestamp else None,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "request_id": entry.request_id,
        "success": entry.success,
        "error_message": entry.error_message,
    }
