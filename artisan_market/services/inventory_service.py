from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from artisan_market.exceptions import AuthorizationError, NotFoundError, PersistenceError, ValidationError
from artisan_market.identity import Identity
from artisan_market.models import FulfillmentType, Product
from artisan_market.observability import increment_counter, record_event
from artisan_market.services.inventory_model import InventoryModel, RestorationCheck, normalize_field


class InventoryService:
    """
    Persists inventory changes computed by ``InventoryModel``.

    Seller edits and scheduled restorations both flow through here and both
    publish ``inventory_updated`` events so low-inventory alerting can react.
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def get_product(self, product_id: int) -> Product:
        product = self.db.query(Product).filter_by(productID=product_id).first()
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    def get_inventory(self, product_id: int) -> Dict[str, Any]:
        product = self.get_product(product_id)
        return InventoryModel(product).get_inventory_summary()

    def update_inventory(self, product_id: int, identity: Identity, field_name: str, value: Any) -> Dict[str, Any]:
        """
        Apply one validated seller edit.

        Changing the total capacity of a made-to-order product keeps the
        already-used portion, so remaining capacity is recomputed alongside it.
        """
        product = self.get_product(product_id)
        if not identity.is_admin and product.sellerID != identity.user_id:
            raise AuthorizationError("Only the owning seller can edit this product's inventory", product_id=product_id)

        model = InventoryModel(product)
        result = model.validate_inventory_update(field_name, value)
        if not result.is_valid:
            raise ValidationError(
                "Invalid inventory update",
                errors=[{"field": field_name, "message": message} for message in result.errors],
            )

        attribute = normalize_field(field_name)
        old_value = getattr(product, attribute) or 0
        changes: Dict[str, Any] = {attribute: int(value)}
        if attribute == "total_capacity":
            recalculated = model.calculate_remaining_capacity(int(value))
            changes["remaining_capacity"] = recalculated["remainingCapacity"]

        for key, new_value in changes.items():
            setattr(product, key, new_value)
        self._commit()

        publish_inventory_update_event(
            product_id=product.productID,
            field_name=attribute,
            old_value=old_value,
            new_value=int(value),
            reason="seller_update",
        )
        self._alert_if_low(product)
        self.logger.info(
            "Inventory updated for product %s",
            product.productID,
            extra={"changes": changes, "seller_id": identity.user_id},
        )
        return InventoryModel(product).get_inventory_summary()

    # ------------------------------------------------------------------
    # Restoration
    # ------------------------------------------------------------------
    def list_restorable_products(self) -> List[Product]:
        """Products whose availability refills on a schedule."""
        return (
            self.db.query(Product)
            .filter(
                or_(
                    and_(
                        Product.fulfillment_type == FulfillmentType.MADE_TO_ORDER,
                        Product.capacity_period.isnot(None),
                    ),
                    and_(
                        Product.fulfillment_type == FulfillmentType.SCHEDULED_ORDER,
                        Product.next_available_date.isnot(None),
                    ),
                )
            )
            .order_by(Product.productID.asc())
            .all()
        )

    def list_products(self, product_ids: List[int]) -> List[Product]:
        if not product_ids:
            return []
        return self.db.query(Product).filter(Product.productID.in_(product_ids)).all()

    def apply_restoration(self, check: RestorationCheck) -> Product:
        """Persist one restoration check and return the refreshed product."""
        product = self.get_product(check.product_id)
        field_name = "remaining_capacity" if "remaining_capacity" in check.updates else "available_quantity"
        old_value = getattr(product, field_name) or 0

        for key, value in check.updates.items():
            setattr(product, key, value)
        self._commit()

        new_value = getattr(product, field_name) or 0
        publish_inventory_update_event(
            product_id=product.productID,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            reason=check.type,
        )
        self.logger.info(
            "Applied %s to product %s (%s: %s -> %s)",
            check.type,
            product.productID,
            field_name,
            old_value,
            new_value,
        )
        return product

    def _alert_if_low(self, product: Product) -> None:
        display = InventoryModel(product).get_inventory_display_data()
        if not display or not display["isLow"]:
            return
        increment_counter("low_inventory_alerts_total", labels={"fulfillment_type": product.fulfillment_type.value})
        record_event(
            "low_inventory_alert",
            {
                "product_id": product.productID,
                "current": display["current"],
                "threshold": display["lowThreshold"],
            },
        )
        self.logger.warning(
            "Low inventory: product %s has %s %s (threshold: %s)",
            product.productID,
            display["current"],
            display["unit"],
            display["lowThreshold"],
        )

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Failed to persist inventory change")
            raise PersistenceError("Failed to persist inventory change") from exc


def publish_inventory_update_event(
    product_id: int,
    field_name: str,
    old_value: int,
    new_value: int,
    reason: str,
    occurred_at: Optional[datetime] = None,
) -> None:
    """Publish an ``inventory_updated`` event and bump the update counter."""
    record_event(
        "inventory_updated",
        {
            "product_id": product_id,
            "field": field_name,
            "old_value": old_value,
            "new_value": new_value,
            "change": new_value - old_value,
            "reason": reason,
            "timestamp": (occurred_at or datetime.now(timezone.utc)).isoformat(),
        },
    )
    increment_counter(
        "inventory_updates_total",
        labels={"reason": reason, "direction": "decrease" if new_value < old_value else "increase"},
    )


def restorable_products_provider(session_factory: Callable[[], Session]) -> Callable[[], List[Product]]:
    """Build a provider returning detached snapshots of every restorable product."""

    def load() -> List[Product]:
        session = session_factory()
        try:
            products = InventoryService(session).list_restorable_products()
            for product in products:
                session.expunge(product)
            return products
        finally:
            session.close()

    return load


def restoration_persister(session_factory: Callable[[], Session]) -> Callable[[RestorationCheck], Product]:
    """Build a ``persist`` callable that applies each check on its own session."""

    def persist(check: RestorationCheck) -> Product:
        session = session_factory()
        try:
            product = InventoryService(session).apply_restoration(check)
            session.refresh(product)
            session.expunge(product)
            return product
        finally:
            session.close()

    return persist
