from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from artisan_market.exceptions import NotFoundError, PersistenceError, ValidationError
from artisan_market.identity import Identity, RequestMetadata
from artisan_market.models import PromotionalPricing
from artisan_market.observability import increment_counter
from artisan_market.services.admin_audit_log import AdminAuditLog, AuditEntry

DEFAULT_PRICING: List[Dict[str, Any]] = [
    {
        "feature_type": "product_featured",
        "name": "Featured Product",
        "description": "Highlight your product on the homepage and at the top of search results",
        "base_price": Decimal("5"),
        "price_per_day": Decimal("5"),
        "included_days": 1,
        "benefits": [
            "Featured placement on homepage",
            "Higher search ranking",
            "Featured badge on product",
            "Increased visibility to customers",
        ],
    },
    {
        "feature_type": "product_sponsored",
        "name": "Sponsored Product",
        "description": "Promote your product with sponsored placement in search results and category pages",
        "base_price": Decimal("10"),
        "price_per_day": Decimal("10"),
        "included_days": 1,
        "benefits": [
            "Sponsored placement in search results",
            "Enhanced visibility in product category",
            "Sponsored label on product",
            "Priority ranking in search",
        ],
    },
    {
        "feature_type": "artisan_spotlight",
        "name": "Artisan Spotlight",
        "description": "Feature your artisan profile prominently on the platform",
        "base_price": Decimal("25"),
        "price_per_day": Decimal("25"),
        "included_days": 1,
        "benefits": [
            "Featured artisan profile",
            "Priority placement in artisan listings",
            "Spotlight badge on profile",
            "Enhanced visibility to customers",
        ],
    },
]

_EDITABLE_FIELDS = ("name", "description", "base_price", "price_per_day", "included_days", "benefits", "is_active")


def compute_cost(pricing: PromotionalPricing, duration_days: int) -> Decimal:
    """``base_price`` covers ``included_days``; each extra day costs ``price_per_day``."""
    if duration_days < 1:
        raise ValidationError("Duration must be at least 1 day", duration_days=duration_days)
    extra_days = max(0, duration_days - (pricing.included_days or 0))
    cost = Decimal(pricing.base_price) + Decimal(pricing.price_per_day) * extra_days
    return cost.quantize(Decimal("0.01"))


def serialize_pricing(pricing: PromotionalPricing) -> Dict[str, Any]:
    return {
        "id": pricing.pricingID,
        "feature_type": pricing.feature_type,
        "name": pricing.name,
        "description": pricing.description,
        "base_price": float(pricing.base_price),
        "price_per_day": float(pricing.price_per_day),
        "included_days": pricing.included_days,
        "benefits": list(pricing.benefits or []),
        "is_active": pricing.is_active,
        "updated_by": pricing.updated_by,
        "updated_at": pricing.updated_at.isoformat() if pricing.updated_at else None,
    }


class PromotionalCatalog:
    """Admin-maintained price list for promotional feature types."""

    def __init__(self, db_session: Session, audit_log: Optional[AdminAuditLog] = None) -> None:
        self.db = db_session
        self.audit_log = audit_log or AdminAuditLog(db_session)
        self.logger = logging.getLogger(__name__)

    def get_pricing(self, feature_type: str) -> PromotionalPricing:
        pricing = (
            self.db.query(PromotionalPricing)
            .filter_by(feature_type=feature_type, is_active=True)
            .first()
        )
        if not pricing:
            raise NotFoundError("PromotionalPricing", feature_type)
        return pricing

    def calculate_cost(self, feature_type: str, duration_days: int) -> Decimal:
        return compute_cost(self.get_pricing(feature_type), duration_days)

    def list_pricing(self, include_inactive: bool = False) -> List[PromotionalPricing]:
        query = self.db.query(PromotionalPricing)
        if not include_inactive:
            query = query.filter(PromotionalPricing.is_active.is_(True))
        return query.order_by(PromotionalPricing.feature_type.asc()).all()

    def update_pricing(
        self,
        payload: Dict[str, Any],
        identity: Identity,
        metadata: Optional[RequestMetadata] = None,
    ) -> PromotionalPricing:
        """Create or update the pricing row for ``payload['feature_type']``."""
        feature_type = payload["feature_type"]
        pricing = self.db.query(PromotionalPricing).filter_by(feature_type=feature_type).first()
        before = serialize_pricing(pricing) if pricing else None

        if pricing is None:
            missing = [key for key in ("name", "base_price", "price_per_day") if payload.get(key) is None]
            if missing:
                raise ValidationError(
                    "New pricing requires name, base_price and price_per_day",
                    errors=[{"field": key, "message": "Field required"} for key in missing],
                )
            pricing = PromotionalPricing(feature_type=feature_type, included_days=1, benefits=[], is_active=True)
            self.db.add(pricing)

        for key in _EDITABLE_FIELDS:
            if payload.get(key) is not None:
                setattr(pricing, key, payload[key])
        pricing.updated_by = identity.user_id

        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Failed to save pricing for %s", feature_type)
            raise PersistenceError("Failed to save promotional pricing", feature_type=feature_type) from exc

        action = "promotional_pricing_updated" if before else "promotional_pricing_created"
        increment_counter("promotional_pricing_changes_total", labels={"action": action})
        self.audit_log.log_admin_action(
            AuditEntry.for_identity(
                identity,
                action,
                "promotional_pricing",
                feature_type,
                metadata,
                changes={"before": before, "after": serialize_pricing(pricing)},
                description=f"Pricing for {feature_type} {'updated' if before else 'created'}",
            )
        )
        self.logger.info("Pricing %s for %s", "updated" if before else "created", feature_type)
        return pricing

    def initialize_defaults(
        self,
        identity: Identity,
        metadata: Optional[RequestMetadata] = None,
    ) -> List[PromotionalPricing]:
        """Seed the default price list; rows that already exist are left untouched."""
        existing = {row.feature_type for row in self.db.query(PromotionalPricing).all()}
        created: List[PromotionalPricing] = []
        for defaults in DEFAULT_PRICING:
            if defaults["feature_type"] in existing:
                continue
            pricing = PromotionalPricing(updated_by=identity.user_id, is_active=True, **defaults)
            self.db.add(pricing)
            created.append(pricing)

        if not created:
            return created

        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Failed to initialize promotional pricing") from exc

        self.audit_log.log_admin_action(
            AuditEntry.for_identity(
                identity,
                "promotional_pricing_initialized",
                "promotional_pricing",
                None,
                metadata,
                changes={"before": None, "after": [serialize_pricing(row) for row in created]},
                description=f"Initialized {len(created)} default pricing entries",
            )
        )
        return created
