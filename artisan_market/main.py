# artisan_market/main.py
import atexit
import logging
import time

from flask import Flask, g, jsonify, request

from artisan_market.blueprints.audit import audit_bp
from artisan_market.blueprints.common import register_error_handlers, require_admin
from artisan_market.blueprints.inventory import inventory_bp
from artisan_market.blueprints.promotions import promotions_bp
from artisan_market.blueprints.wallet import wallet_bp
from artisan_market.config import Config
from artisan_market.database import Base, SessionLocal, close_db, engine
from artisan_market.observability import (
    check_database_health,
    configure_logging,
    get_metrics_snapshot,
    get_recent_events,
    increment_counter,
    observe_latency,
)
from artisan_market.observability.health import check_audit_health, check_scheduler_health
from artisan_market.observability.logging_config import ensure_request_id
from artisan_market.services.inventory_service import restorable_products_provider, restoration_persister
from artisan_market.services.scheduling import PromotionExpiryScheduler, RestorationScheduler

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
register_error_handlers(app)
app.register_blueprint(promotions_bp)
app.register_blueprint(wallet_bp)
app.register_blueprint(inventory_bp)
app.register_blueprint(audit_bp)

logger = logging.getLogger(__name__)


def init_database():
    """Initialize database tables"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.exception("Error initializing database: %s", e)


init_database()

# Scheduler instances live here; blueprints reach them through app.extensions
restoration_scheduler = RestorationScheduler(persist=restoration_persister(SessionLocal))
promotion_expiry_scheduler = PromotionExpiryScheduler(session_factory=SessionLocal)
app.extensions["artisan_market.schedulers"] = {
    "restoration": restoration_scheduler,
    "promotion_expiry": promotion_expiry_scheduler,
}


def _log_restored(products):
    logger.info("Restored inventory for %d products", len(products))


def start_background_jobs():
    restoration_scheduler.start(restorable_products_provider(SessionLocal), on_update=_log_restored)
    promotion_expiry_scheduler.start()


def stop_background_jobs():
    restoration_scheduler.stop()
    promotion_expiry_scheduler.stop()


if Config.SCHEDULERS_ENABLED:
    start_background_jobs()
    atexit.register(stop_background_jobs)


@app.before_request
def before_request_logging():
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    response.headers[Config.REQUEST_ID_HEADER] = g.get("request_id", "")
    if response.status_code >= 500:
        increment_counter(
            "http_errors_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    return response


@app.teardown_appcontext
def teardown_db(exception):
    close_db(exception)


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    audit_status = check_audit_health()
    scheduler_status = check_scheduler_health(
        app.extensions["artisan_market.schedulers"].values(),
        enabled=Config.SCHEDULERS_ENABLED,
    )
    if db_status.get("status") != "UP":
        overall = "DOWN"
    elif audit_status["status"] != "UP" or scheduler_status["status"] == "DOWN":
        overall = "DEGRADED"
    else:
        overall = "UP"
    status_code = 503 if overall == "DOWN" else 200
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status,
            "audit_log": audit_status,
            "schedulers": scheduler_status,
        }
    }), status_code


@app.route('/admin/metrics', methods=['GET'])
def admin_metrics():
    require_admin()
    snapshot = get_metrics_snapshot()
    event_name = request.args.get("event")
    if event_name:
        snapshot["events"] = get_recent_events(event_name)
    return jsonify(snapshot)
