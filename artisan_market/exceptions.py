"""
Typed error hierarchy for the inventory and promotion engine.

Every error carries a machine-readable ``code``, the HTTP status the API layer
should answer with, and structured ``details`` so clients can react to the
type (prompt a wallet top-up, refresh a stale admin queue) instead of parsing
messages.

    MarketplaceError
    +-- ValidationError          bad field value/type, field not applicable
    +-- NotFoundError            missing product / feature / wallet / pricing
    +-- InsufficientFundsError   wallet balance below the debit amount
    +-- StaleStateError          transition attempted from the wrong state
    +-- AuthenticationError      no caller identity on the request
    +-- AuthorizationError       identity lacks the role for the action
    +-- PersistenceError         storage failure
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional


class MarketplaceError(Exception):
    code = "MARKETPLACE_ERROR"
    http_status = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": {key: _jsonable(value) for key, value in self.details.items()},
            }
        }


class ValidationError(MarketplaceError):
    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, **details: Any) -> None:
        super().__init__(message, errors=errors or [], **details)
        self.errors: List[Dict[str, Any]] = errors or []


class NotFoundError(MarketplaceError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class InsufficientFundsError(MarketplaceError):
    code = "INSUFFICIENT_FUNDS"
    http_status = 402

    def __init__(self, seller_id: int, balance: Decimal, required: Decimal) -> None:
        super().__init__(
            f"Insufficient wallet balance: {balance} available, {required} required",
            seller_id=seller_id,
            balance=balance,
            required=required,
        )
        self.seller_id = seller_id
        self.balance = balance
        self.required = required


class StaleStateError(MarketplaceError):
    code = "STALE_STATE"
    http_status = 409

    def __init__(self, entity: str, entity_id: Any, current_status: Any, expected: List[Any]) -> None:
        current = _jsonable(current_status)
        super().__init__(
            f"{entity} {entity_id} is {current}; expected one of {[_jsonable(s) for s in expected]}",
            entity=entity,
            entity_id=entity_id,
            current_status=current,
            expected=[_jsonable(s) for s in expected],
        )
        self.current_status = current_status


class AuthenticationError(MarketplaceError):
    code = "UNAUTHENTICATED"
    http_status = 401


class AuthorizationError(MarketplaceError):
    code = "FORBIDDEN"
    http_status = 403


class PersistenceError(MarketplaceError):
    code = "PERSISTENCE_ERROR"
    http_status = 503


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value
