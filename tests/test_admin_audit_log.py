from datetime import datetime, timedelta, timezone
from decimal import Decimal

from artisan_market.identity import RequestMetadata
from artisan_market.models import AdminAuditEntry, PromotionalFeatureStatus
from artisan_market.observability.metrics import get_counter_total
from artisan_market.services.admin_audit_log import (
    AdminAuditLog,
    AuditEntry,
    SqlAlchemyAuditSink,
    to_json_safe,
)

from conftest import ADMIN_ID, FailingSink

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _entry(action="promotional_feature_approved", admin_id=ADMIN_ID, target_id=1, offset_minutes=0, **kwargs):
    return AuditEntry(
        action=action,
        target_type="promotional_feature",
        target_id=target_id,
        admin_id=admin_id,
        admin_role="admin",
        timestamp=T0 + timedelta(minutes=offset_minutes),
        **kwargs,
    )


def test_failing_sink_never_raises():
    audit_log = AdminAuditLog(sink=FailingSink())

    assert audit_log.log_admin_action(_entry()) is False
    assert audit_log.log_admin_action(_entry(action="promotional_feature_rejected")) is False

    assert audit_log.dropped_count == 2
    assert get_counter_total("admin_audit_dropped_total") == 2
    assert get_counter_total("admin_audit_dropped_total", {"action": "promotional_feature_rejected"}) == 1


def test_database_sink_persists_json_safe_changes(db_session):
    audit_log = AdminAuditLog(db_session, sink=SqlAlchemyAuditSink())
    entry = _entry(
        changes={"after": {"price": Decimal("40.00"), "status": PromotionalFeatureStatus.ACTIVE, "end_date": T0}},
        metadata=RequestMetadata(ip_address="10.0.0.5", user_agent="pytest", request_id="req-1"),
    )

    assert audit_log.log_admin_action(entry) is True

    stored = db_session.query(AdminAuditEntry).one()
    assert stored.target_id == "1"
    assert stored.changes == {"after": {"price": 40.0, "status": "active", "end_date": T0.isoformat()}}
    assert stored.ip_address == "10.0.0.5"
    assert stored.request_id == "req-1"
    assert stored.success is True
    assert get_counter_total("admin_audit_entries_total") == 1


def test_query_pages_newest_first(db_session):
    audit_log = AdminAuditLog(db_session, sink=SqlAlchemyAuditSink())
    for minute in range(5):
        audit_log.log_admin_action(_entry(target_id=minute, offset_minutes=minute))

    first = audit_log.query(page=1, page_size=2)
    last = audit_log.query(page=3, page_size=2)

    assert first["total_count"] == 5
    assert first["total_pages"] == 3
    assert [entry["target_id"] for entry in first["entries"]] == ["4", "3"]
    assert [entry["target_id"] for entry in last["entries"]] == ["0"]


def test_query_filters_by_action_admin_and_date(db_session):
    audit_log = AdminAuditLog(db_session, sink=SqlAlchemyAuditSink())
    audit_log.log_admin_action(_entry(offset_minutes=0))
    audit_log.log_admin_action(_entry(action="promotional_feature_rejected", offset_minutes=10))
    audit_log.log_admin_action(_entry(admin_id=2, offset_minutes=20))
    audit_log.log_admin_action(_entry(offset_minutes=120))

    by_action = audit_log.query({"action": "promotional_feature_rejected"})
    by_admin = audit_log.query({"admin_id": 2})
    in_window = audit_log.query(
        {"admin_id": ADMIN_ID, "start_date": T0 + timedelta(minutes=5), "end_date": T0 + timedelta(hours=1)}
    )

    assert by_action["total_count"] == 1
    assert by_admin["entries"][0]["admin_id"] == 2
    assert [entry["action"] for entry in in_window["entries"]] == ["promotional_feature_rejected"]
    assert in_window["filters_applied"]["start_date"] == (T0 + timedelta(minutes=5)).isoformat()


def test_empty_result_still_has_one_page(db_session):
    result = AdminAuditLog(db_session, sink=SqlAlchemyAuditSink()).query({"action": "nothing"})
    assert result["entries"] == []
    assert result["total_pages"] == 1


def test_to_json_safe_handles_nested_values():
    assert to_json_safe({"amounts": (Decimal("1.50"), 2), 3: {PromotionalFeatureStatus.EXPIRED}}) == {
        "amounts": [1.5, 2],
        "3": ["expired"],
    }
