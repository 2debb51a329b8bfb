"""
Inventory rules for the three fulfillment models.

``InventoryModel`` wraps a single product snapshot (an ORM ``Product`` or any
object exposing the same attributes) and never touches the database. Seller
edits are validated here, display data and status are derived here, and the
periodic restoration policy decides here what a product should be refilled to.
Persisting the outcome is the job of ``InventoryService``.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from artisan_market.config import Config
from artisan_market.models import CapacityPeriod, FulfillmentType, as_utc

CAPACITY_RESTORATION = "capacity_restoration"
PRODUCTION_RESTORATION = "production_restoration"

# Public field names accepted from sellers, mapped to product attributes
FIELD_ALIASES = {
    "stock": "stock",
    "totalCapacity": "total_capacity",
    "total_capacity": "total_capacity",
    "remainingCapacity": "remaining_capacity",
    "remaining_capacity": "remaining_capacity",
    "availableQuantity": "available_quantity",
    "available_quantity": "available_quantity",
}

EDITABLE_FIELDS = {
    FulfillmentType.READY_TO_SHIP: {"stock"},
    FulfillmentType.MADE_TO_ORDER: {"total_capacity", "remaining_capacity"},
    FulfillmentType.SCHEDULED_ORDER: {"available_quantity"},
}

_FIELD_LABELS = {
    "stock": "Stock",
    "total_capacity": "Total capacity",
    "remaining_capacity": "Remaining capacity",
    "available_quantity": "Available quantity",
}


@dataclass
class InventoryValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors)}


@dataclass
class RestorationCheck:
    """A pending refill for one product: what kind, and which attributes change."""

    type: str
    product_id: Optional[int]
    updates: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "productId": self.product_id,
            "updates": {
                key: value.isoformat() if isinstance(value, datetime) else value
                for key, value in self.updates.items()
            },
        }


def normalize_field(field_name: str) -> Optional[str]:
    return FIELD_ALIASES.get(field_name)


def add_period(moment: datetime, period: Optional[CapacityPeriod | str]) -> datetime:
    """Advance ``moment`` by one schedule period; unknown periods count as daily."""
    try:
        period = CapacityPeriod(period) if period else CapacityPeriod.DAILY
    except ValueError:
        period = CapacityPeriod.DAILY

    if period is CapacityPeriod.WEEKLY:
        return moment + timedelta(days=7)
    if period is CapacityPeriod.MONTHLY:
        year = moment.year + moment.month // 12
        month = moment.month % 12 + 1
        day = min(moment.day, calendar.monthrange(year, month)[1])
        return moment.replace(year=year, month=month, day=day)
    return moment + timedelta(days=1)


def _is_whole_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


class InventoryModel:
    """Pure inventory computations over one product snapshot."""

    def __init__(self, product: Any, config: type[Config] = Config) -> None:
        if product is None:
            raise ValueError("Product is required to create InventoryModel")
        self.product = product
        self.config = config

    # ------------------------------------------------------------------
    # Snapshot accessors (missing values read as zero)
    # ------------------------------------------------------------------
    @property
    def fulfillment_type(self) -> Optional[FulfillmentType]:
        raw = getattr(self.product, "fulfillment_type", None)
        if raw is None:
            return None
        try:
            return FulfillmentType(raw)
        except ValueError:
            return None

    @property
    def product_id(self) -> Optional[int]:
        return getattr(self.product, "productID", None)

    def _int(self, attribute: str) -> int:
        return getattr(self.product, attribute, None) or 0

    @property
    def stock(self) -> int:
        return self._int("stock")

    @property
    def total_capacity(self) -> int:
        return self._int("total_capacity")

    @property
    def remaining_capacity(self) -> int:
        return self._int("remaining_capacity")

    @property
    def available_quantity(self) -> int:
        return self._int("available_quantity")

    @property
    def capacity_period(self) -> Optional[CapacityPeriod]:
        raw = getattr(self.product, "capacity_period", None)
        if not raw:
            return None
        try:
            return CapacityPeriod(raw)
        except ValueError:
            return None

    @property
    def low_stock_threshold(self) -> int:
        threshold = getattr(self.product, "low_stock_threshold", None)
        return self.config.LOW_STOCK_THRESHOLD if threshold is None else threshold

    @property
    def unit(self) -> str:
        return getattr(self.product, "unit", None) or "units"

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate_inventory_update(self, field_name: str, value: Any) -> InventoryValidationResult:
        errors: List[str] = []
        attribute = normalize_field(field_name)
        fulfillment_type = self.fulfillment_type

        if attribute is None or fulfillment_type is None or attribute not in EDITABLE_FIELDS[fulfillment_type]:
            kind = fulfillment_type.value if fulfillment_type else "unknown"
            errors.append(f"Field '{field_name}' does not apply to {kind} products")
            return InventoryValidationResult(is_valid=False, errors=errors)

        label = _FIELD_LABELS[attribute]
        number = _as_number(value)
        if number is None:
            errors.append(f"{label} must be a whole number")
            return InventoryValidationResult(is_valid=False, errors=errors)

        if number < 0:
            errors.append(f"{label} cannot be negative")
        if not _is_whole_number(value):
            errors.append(f"{label} must be a whole number")

        if attribute == "total_capacity" and number < 1:
            errors.append("Total capacity must be at least 1")
        if attribute == "remaining_capacity" and number > self.total_capacity:
            errors.append("Remaining capacity cannot exceed total capacity")

        return InventoryValidationResult(is_valid=not errors, errors=errors)

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------
    def calculate_remaining_capacity(self, new_total_capacity: Optional[int] = None) -> Optional[Dict[str, int]]:
        """Keep the used portion when the seller changes the total capacity."""
        if self.fulfillment_type is not FulfillmentType.MADE_TO_ORDER:
            return None

        total = self.total_capacity if new_total_capacity is None else new_total_capacity
        used = self.get_used_capacity()
        remaining = min(total, max(0, total - used))
        return {
            "totalCapacity": total,
            "remainingCapacity": remaining,
            "used": used,
            "available": remaining,
        }

    def get_used_capacity(self) -> int:
        if self.fulfillment_type is not FulfillmentType.MADE_TO_ORDER:
            return 0
        return max(0, self.total_capacity - self.remaining_capacity)

    def get_capacity_utilization(self) -> int:
        if self.fulfillment_type is not FulfillmentType.MADE_TO_ORDER or self.total_capacity == 0:
            return 0
        return round(self.get_used_capacity() / self.total_capacity * 100)

    # ------------------------------------------------------------------
    # Display & status
    # ------------------------------------------------------------------
    def get_inventory_display_data(self) -> Optional[Dict[str, Any]]:
        fulfillment_type = self.fulfillment_type
        if fulfillment_type is FulfillmentType.READY_TO_SHIP:
            threshold = self.low_stock_threshold
            return {
                "label": "Stock",
                "current": self.stock,
                "total": None,
                "unit": self.unit,
                "period": None,
                "isLow": self.stock <= threshold,
                "lowThreshold": threshold,
                "lowMessage": "Low Stock!",
            }
        if fulfillment_type is FulfillmentType.MADE_TO_ORDER:
            threshold = self.config.MADE_TO_ORDER_LOW_THRESHOLD
            period = self.capacity_period
            return {
                "label": "Capacity",
                "current": self.remaining_capacity,
                "total": self.total_capacity,
                "unit": self.unit,
                "period": f"per {period.value}" if period else None,
                "isLow": self.remaining_capacity <= threshold,
                "lowThreshold": threshold,
                "lowMessage": "Low Capacity!",
            }
        if fulfillment_type is FulfillmentType.SCHEDULED_ORDER:
            threshold = self.config.SCHEDULED_ORDER_LOW_THRESHOLD
            return {
                "label": "Available",
                "current": self.available_quantity,
                "total": None,
                "unit": self.unit,
                "period": None,
                "isLow": self.available_quantity <= threshold,
                "lowThreshold": threshold,
                "lowMessage": "Low Available!",
            }
        return None

    def is_out_of_stock(self) -> bool:
        fulfillment_type = self.fulfillment_type
        if fulfillment_type is FulfillmentType.READY_TO_SHIP:
            return self.stock <= 0
        if fulfillment_type is FulfillmentType.MADE_TO_ORDER:
            return self.remaining_capacity <= 0
        if fulfillment_type is FulfillmentType.SCHEDULED_ORDER:
            return self.available_quantity <= 0
        return False

    def get_out_of_stock_status(self) -> Dict[str, Any]:
        if not self.is_out_of_stock():
            return {"isOutOfStock": False, "message": None, "reason": None}

        messages = {
            FulfillmentType.READY_TO_SHIP: ("Out of Stock", "No items available"),
            FulfillmentType.MADE_TO_ORDER: ("No Capacity Available", "All production slots are filled"),
            FulfillmentType.SCHEDULED_ORDER: ("Fully Booked", "All available slots are taken"),
        }
        message, reason = messages.get(self.fulfillment_type, ("Unavailable", "Product not available"))
        return {"isOutOfStock": True, "message": message, "reason": reason}

    def get_inventory_status(self) -> Dict[str, str]:
        display = self.get_inventory_display_data()
        if not display:
            return {"status": "unknown", "message": ""}
        if display["isLow"]:
            return {"status": "low", "message": display["lowMessage"]}
        if (
            self.fulfillment_type is FulfillmentType.MADE_TO_ORDER
            and self.get_capacity_utilization() >= self.config.HIGH_UTILIZATION_PERCENT
        ):
            return {"status": "high_utilization", "message": "High capacity utilization"}
        return {"status": "good", "message": "Inventory levels are good"}

    def get_inventory_summary(self) -> Dict[str, Any]:
        made_to_order = self.fulfillment_type is FulfillmentType.MADE_TO_ORDER
        return {
            "productId": self.product_id,
            "productName": getattr(self.product, "name", None),
            "fulfillmentType": self.fulfillment_type.value if self.fulfillment_type else None,
            "displayData": self.get_inventory_display_data(),
            "status": self.get_inventory_status(),
            "outOfStock": self.get_out_of_stock_status(),
            "utilization": self.get_capacity_utilization() if made_to_order else None,
        }

    # ------------------------------------------------------------------
    # Restoration
    # ------------------------------------------------------------------
    def check_inventory_restoration(self, now: Optional[datetime] = None) -> List[RestorationCheck]:
        now = as_utc(now) or datetime.now(timezone.utc)
        checks: List[RestorationCheck] = []

        if self.fulfillment_type is FulfillmentType.MADE_TO_ORDER and self._capacity_period_elapsed(now):
            checks.append(
                RestorationCheck(
                    type=CAPACITY_RESTORATION,
                    product_id=self.product_id,
                    updates={
                        "remaining_capacity": self.total_capacity,
                        "last_capacity_restore": now,
                    },
                )
            )

        if self.fulfillment_type is FulfillmentType.SCHEDULED_ORDER and self._production_date_reached(now):
            production_quantity = getattr(self.product, "production_quantity", None)
            checks.append(
                RestorationCheck(
                    type=PRODUCTION_RESTORATION,
                    product_id=self.product_id,
                    updates={
                        "available_quantity": production_quantity or self.available_quantity,
                        "next_available_date": add_period(now, self.capacity_period),
                    },
                )
            )

        return checks

    def _capacity_period_elapsed(self, now: datetime) -> bool:
        period = self.capacity_period
        if period is None:
            return False
        reference = as_utc(getattr(self.product, "last_capacity_restore", None)) or as_utc(
            getattr(self.product, "created_at", None)
        )
        if reference is None:
            return False

        if period is CapacityPeriod.DAILY:
            return now.date() != reference.date()
        if period is CapacityPeriod.WEEKLY:
            return (now - reference).days >= 7
        return (now.year, now.month) != (reference.year, reference.month)

    def _production_date_reached(self, now: datetime) -> bool:
        next_date = as_utc(getattr(self.product, "next_available_date", None))
        return next_date is not None and now >= next_date

    # ------------------------------------------------------------------
    # Batch helpers
    # ------------------------------------------------------------------
    @staticmethod
    def process_inventory_restoration(
        products: Iterable[Any],
        now: Optional[datetime] = None,
    ) -> List[RestorationCheck]:
        updates: List[RestorationCheck] = []
        for product in products:
            updates.extend(InventoryModel(product).check_inventory_restoration(now))
        return updates

    @staticmethod
    def get_inventory_summaries(products: Iterable[Any]) -> List[Dict[str, Any]]:
        return [InventoryModel(product).get_inventory_summary() for product in products]
