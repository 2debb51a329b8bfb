from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, current_app, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from artisan_market.database import get_db
from artisan_market.exceptions import AuthenticationError, AuthorizationError, MarketplaceError
from artisan_market.identity import SELLER_ROLE, Identity, RequestMetadata
from artisan_market.observability import increment_counter
from artisan_market.services.admin_audit_log import AdminAuditLog

logger = logging.getLogger(__name__)


def current_identity() -> Optional[Identity]:
    """Identity written into the session by the external auth layer."""
    user_id = session.get("user_id")
    if user_id is None:
        return None
    return Identity(user_id=user_id, role=session.get("role") or SELLER_ROLE)


def require_identity() -> Identity:
    identity = current_identity()
    if identity is None:
        raise AuthenticationError("Not authenticated")
    return identity


def require_admin() -> Identity:
    identity = require_identity()
    if not identity.is_admin:
        raise AuthorizationError("Admin role required", role=identity.role)
    return identity


def request_metadata() -> RequestMetadata:
    return RequestMetadata(
        ip_address=request.headers.get("X-Forwarded-For", request.remote_addr),
        user_agent=request.headers.get("User-Agent"),
        request_id=getattr(g, "request_id", None),
    )


def json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def audit_log() -> AdminAuditLog:
    # AUDIT_SINK overrides the default database sink
    return AdminAuditLog(get_db(), sink=current_app.config.get("AUDIT_SINK"))


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(error: MarketplaceError):
        increment_counter(
            "domain_errors_total",
            labels={"code": error.code, "endpoint": request.endpoint or request.path},
        )
        log = logger.warning if error.http_status < 500 else logger.error
        log("%s: %s", error.code, error.message, extra={"details": error.to_dict()["error"]["details"]})
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        body = {
            "error": {
                "code": (error.name or "HTTP_ERROR").upper().replace(" ", "_"),
                "message": error.description,
                "details": {},
            }
        }
        return jsonify(body), error.code
