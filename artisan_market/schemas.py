# artisan_market/schemas.py
"""Request payloads accepted by the HTTP layer."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from artisan_market.config import Config
from artisan_market.exceptions import ValidationError
from artisan_market.services.inventory_model import FIELD_ALIASES

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class RequestModel(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


# =====================================================
# PROMOTIONS
# =====================================================

class PromotionSpecifications(RequestModel):
    custom_text: Optional[str] = Field(None, max_length=Config.PROMOTION_CUSTOM_TEXT_MAX_LENGTH)
    search_keywords: List[str] = Field(default_factory=list, max_length=Config.PROMOTION_MAX_KEYWORDS)
    category_boost: Optional[str] = Field(None, max_length=100)


class PromotionRequest(RequestModel):
    product_id: int = Field(..., gt=0)
    feature_type: str = Field(..., min_length=1, max_length=50)
    duration_days: int = Field(
        ...,
        ge=Config.PROMOTION_MIN_DURATION_DAYS,
        le=Config.PROMOTION_MAX_DURATION_DAYS,
    )
    specifications: PromotionSpecifications = Field(default_factory=PromotionSpecifications)


class ActivePromotionsQuery(RequestModel):
    page: int = Field(1, ge=1)
    page_size: Optional[int] = Field(None, ge=1, le=Config.PROMOTION_LIST_MAX_PAGE_SIZE)


class RejectPromotion(RequestModel):
    reason: str = Field(..., min_length=1, max_length=500)


class CancelPromotion(RequestModel):
    reason: Optional[str] = Field(None, max_length=500)


class PricingUpdate(RequestModel):
    feature_type: str = Field(..., min_length=1, max_length=50)
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    base_price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    price_per_day: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    included_days: Optional[int] = Field(None, ge=0)
    benefits: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @field_validator("benefits")
    @classmethod
    def drop_blank_benefits(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        return [benefit.strip() for benefit in value if benefit and benefit.strip()]


# =====================================================
# WALLET
# =====================================================

class WalletTopUp(RequestModel):
    amount: Decimal = Field(..., gt=0, le=Decimal("100000"), decimal_places=2)
    reason: Optional[str] = Field(None, max_length=255)


# =====================================================
# INVENTORY
# =====================================================

class InventoryUpdate(RequestModel):
    field: str
    # Type and range rules depend on the fulfillment type; InventoryModel checks them
    value: Any = None

    @field_validator("field")
    @classmethod
    def known_field(cls, value: str) -> str:
        if value not in FIELD_ALIASES:
            raise ValueError(f"Unknown inventory field '{value}'")
        return value


class RestorationCheckRequest(RequestModel):
    product_ids: Optional[List[int]] = None


# =====================================================
# ADMIN / AUDIT
# =====================================================

class AuditLogQuery(RequestModel):
    page: int = Field(1, ge=1)
    page_size: Optional[int] = Field(None, ge=1, le=Config.AUDIT_LOG_MAX_PAGE_SIZE)
    admin_id: Optional[int] = None
    action: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_date_range(self) -> "AuditLogQuery":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    def filters(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"page", "page_size"}, exclude_none=True)


def validate_payload(schema: Type[SchemaT], data: Optional[Dict[str, Any]]) -> SchemaT:
    """Parse ``data`` with ``schema``, reporting failures as our ``ValidationError``."""
    try:
        return schema.model_validate(data or {})
    except PydanticValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]) or "__root__",
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        raise ValidationError("Invalid request payload", errors=errors) from exc
