from __future__ import annotations

from flask import Blueprint, jsonify, request

from artisan_market.blueprints.common import (
    audit_log,
    json_body,
    request_metadata,
    require_admin,
    require_identity,
)
from artisan_market.database import get_db
from artisan_market.schemas import (
    ActivePromotionsQuery,
    CancelPromotion,
    PricingUpdate,
    PromotionRequest,
    RejectPromotion,
    validate_payload,
)
from artisan_market.services.promotional_catalog import PromotionalCatalog, serialize_pricing
from artisan_market.services.promotional_feature_service import PromotionalFeatureService, serialize_feature
from artisan_market.services.revenue_recorder import RevenueRecorder, serialize_revenue

promotions_bp = Blueprint("promotions", __name__)


def _get_feature_service() -> PromotionalFeatureService:
    return PromotionalFeatureService(get_db(), audit_log=audit_log())


def _get_catalog() -> PromotionalCatalog:
    return PromotionalCatalog(get_db(), audit_log=audit_log())


# ---------------------------------------------
# Seller routes
# ---------------------------------------------
@promotions_bp.route("/api/promotions", methods=["POST"])
def api_create_promotion():
    identity = require_identity()
    payload = validate_payload(PromotionRequest, json_body())
    feature = _get_feature_service().create(
        seller_id=identity.user_id,
        product_id=payload.product_id,
        feature_type=payload.feature_type,
        duration_days=payload.duration_days,
        specifications=payload.specifications.model_dump(),
    )
    return jsonify({"success": True, "feature": serialize_feature(feature)}), 201


@promotions_bp.route("/api/promotions/mine", methods=["GET"])
def api_my_promotions():
    identity = require_identity()
    features = _get_feature_service().list_for_seller(identity.user_id)
    return jsonify({"features": [serialize_feature(feature) for feature in features]})


@promotions_bp.route("/api/promotions/<int:feature_id>/cancel", methods=["POST"])
def api_cancel_promotion(feature_id: int):
    identity = require_identity()
    payload = validate_payload(CancelPromotion, json_body())
    feature = _get_feature_service().cancel(feature_id, identity, payload.reason, request_metadata())
    return jsonify({"success": True, "feature": serialize_feature(feature)})


@promotions_bp.route("/api/products/<int:product_id>/promotions", methods=["GET"])
def api_product_promotions(product_id: int):
    require_identity()
    features = _get_feature_service().list_for_product(product_id)
    return jsonify({"product_id": product_id, "features": [serialize_feature(feature) for feature in features]})


@promotions_bp.route("/api/promotions/pricing", methods=["GET"])
def api_public_pricing():
    pricing = _get_catalog().list_pricing()
    return jsonify({"pricing": [serialize_pricing(row) for row in pricing]})


# ---------------------------------------------
# Admin routes
# ---------------------------------------------
@promotions_bp.route("/api/admin/promotions/pending", methods=["GET"])
def api_admin_pending():
    require_admin()
    features = _get_feature_service().list_pending()
    return jsonify({"features": [serialize_feature(feature) for feature in features]})


@promotions_bp.route("/api/admin/promotions/active", methods=["GET"])
def api_admin_active():
    require_admin()
    query = validate_payload(ActivePromotionsQuery, request.args.to_dict())
    page = _get_feature_service().list_active(page=query.page, page_size=query.page_size)
    page["features"] = [serialize_feature(feature) for feature in page["features"]]
    return jsonify(page)


@promotions_bp.route("/api/admin/promotions/<int:feature_id>/revenue", methods=["GET"])
def api_admin_feature_revenue(feature_id: int):
    require_admin()
    feature = _get_feature_service().get_feature(feature_id)
    records = RevenueRecorder(get_db()).list_for_feature(feature.featureID)
    return jsonify({"feature_id": feature.featureID, "revenue": [serialize_revenue(record) for record in records]})


@promotions_bp.route("/api/admin/promotions/<int:feature_id>/approve", methods=["POST"])
def api_admin_approve(feature_id: int):
    identity = require_admin()
    feature = _get_feature_service().approve(feature_id, identity, request_metadata())
    return jsonify({"success": True, "feature": serialize_feature(feature)})


@promotions_bp.route("/api/admin/promotions/<int:feature_id>/reject", methods=["POST"])
def api_admin_reject(feature_id: int):
    identity = require_admin()
    payload = validate_payload(RejectPromotion, json_body())
    feature = _get_feature_service().reject(feature_id, identity, payload.reason, request_metadata())
    return jsonify({"success": True, "feature": serialize_feature(feature)})


@promotions_bp.route("/api/admin/promotions/<int:feature_id>/cancel", methods=["POST"])
def api_admin_cancel(feature_id: int):
    identity = require_admin()
    payload = validate_payload(CancelPromotion, json_body())
    feature = _get_feature_service().cancel(feature_id, identity, payload.reason, request_metadata())
    return jsonify({"success": True, "feature": serialize_feature(feature)})


@promotions_bp.route("/api/admin/promotions/pricing", methods=["GET"])
def api_admin_pricing():
    require_admin()
    pricing = _get_catalog().list_pricing(include_inactive=True)
    return jsonify({"pricing": [serialize_pricing(row) for row in pricing]})


@promotions_bp.route("/api/admin/promotions/pricing", methods=["PUT"])
def api_admin_update_pricing():
    identity = require_admin()
    payload = validate_payload(PricingUpdate, json_body())
    pricing = _get_catalog().update_pricing(payload.model_dump(), identity, request_metadata())
    return jsonify({"success": True, "pricing": serialize_pricing(pricing)})


@promotions_bp.route("/api/admin/promotions/pricing/initialize", methods=["POST"])
def api_admin_initialize_pricing():
    identity = require_admin()
    created = _get_catalog().initialize_defaults(identity, request_metadata())
    return jsonify({"success": True, "created": [serialize_pricing(row) for row in created]}), 201 if created else 200
