from __future__ import annotations

from flask import Blueprint, jsonify, request

from artisan_market.blueprints.common import audit_log, require_admin
from artisan_market.schemas import AuditLogQuery, validate_payload

audit_bp = Blueprint("audit", __name__)


@audit_bp.route("/api/admin/audit-log", methods=["GET"])
def api_admin_audit_log():
    require_admin()
    query = validate_payload(AuditLogQuery, request.args.to_dict())
    page = audit_log().query(query.filters(), page=query.page, page_size=query.page_size)
    return jsonify(page)
