from __future__ import annotations

from flask import Blueprint, jsonify, request

from artisan_market.blueprints.common import json_body, require_identity
from artisan_market.database import get_db
from artisan_market.exceptions import NotFoundError
from artisan_market.schemas import WalletTopUp, validate_payload
from artisan_market.services.wallet_ledger import WalletLedger, serialize_transaction

wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/wallet")


@wallet_bp.route("/balance", methods=["GET"])
def api_wallet_balance():
    identity = require_identity()
    ledger = WalletLedger(get_db())
    try:
        balance = ledger.get_balance(identity.user_id)
    except NotFoundError:
        # No wallet yet reads as an empty one
        return jsonify({"seller_id": identity.user_id, "balance": 0.0, "has_wallet": False})
    return jsonify({"seller_id": identity.user_id, "balance": float(balance), "has_wallet": True})


@wallet_bp.route("/transactions", methods=["GET"])
def api_wallet_transactions():
    identity = require_identity()
    limit = min(max(request.args.get("limit", default=50, type=int), 1), 200)
    try:
        transactions = WalletLedger(get_db()).get_transactions(identity.user_id, limit=limit)
    except NotFoundError:
        transactions = []
    return jsonify({"transactions": [serialize_transaction(entry) for entry in transactions]})


@wallet_bp.route("/top-up", methods=["POST"])
def api_wallet_top_up():
    identity = require_identity()
    payload = validate_payload(WalletTopUp, json_body())
    ledger = WalletLedger(get_db())
    entry = ledger.credit(identity.user_id, payload.amount, reason=payload.reason or "Wallet top-up")
    return jsonify({"success": True, "transaction": serialize_transaction(entry), "balance": float(entry.balance_after)}), 201
