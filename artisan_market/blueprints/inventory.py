from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify

from artisan_market.blueprints.common import json_body, require_identity
from artisan_market.database import SessionLocal, get_db
from artisan_market.exceptions import AuthorizationError
from artisan_market.schemas import InventoryUpdate, RestorationCheckRequest, validate_payload
from artisan_market.services.inventory_service import InventoryService, restoration_persister
from artisan_market.services.scheduling import RestorationScheduler

inventory_bp = Blueprint("inventory", __name__)


def _restoration_scheduler() -> RestorationScheduler:
    schedulers: Dict[str, Any] = current_app.extensions.get("artisan_market.schedulers", {})
    scheduler = schedulers.get("restoration")
    if scheduler is None:
        scheduler = RestorationScheduler(persist=restoration_persister(SessionLocal))
    return scheduler


@inventory_bp.route("/api/products/<int:product_id>/inventory", methods=["GET"])
def api_get_inventory(product_id: int):
    require_identity()
    return jsonify(InventoryService(get_db()).get_inventory(product_id))


@inventory_bp.route("/api/products/<int:product_id>/inventory", methods=["PUT"])
def api_update_inventory(product_id: int):
    identity = require_identity()
    payload = validate_payload(InventoryUpdate, json_body())
    summary = InventoryService(get_db()).update_inventory(product_id, identity, payload.field, payload.value)
    return jsonify({"success": True, "inventory": summary})


@inventory_bp.route("/api/inventory/restoration/check", methods=["POST"])
def api_restoration_check():
    identity = require_identity()
    payload = validate_payload(RestorationCheckRequest, json_body())
    service = InventoryService(get_db())

    if payload.product_ids is None:
        products = service.list_restorable_products()
    else:
        products = service.list_products(payload.product_ids)
    if not identity.is_admin:
        foreign = [product.productID for product in products if product.sellerID != identity.user_id]
        if foreign:
            raise AuthorizationError("Products belong to another seller", product_ids=foreign)

    result = _restoration_scheduler().manual_check(payload.product_ids, products)
    return jsonify({"success": True, "result": result.to_dict()})


@inventory_bp.route("/api/inventory/restoration/status", methods=["GET"])
def api_restoration_status():
    require_identity()
    products = InventoryService(get_db()).list_restorable_products()
    return jsonify(_restoration_scheduler().get_restoration_status(products))
