from decimal import Decimal

import pytest

from artisan_market.exceptions import ValidationError
from artisan_market.schemas import (
    AuditLogQuery,
    InventoryUpdate,
    PricingUpdate,
    PromotionRequest,
    RejectPromotion,
    WalletTopUp,
    validate_payload,
)


def _fields(excinfo):
    return {error["field"] for error in excinfo.value.errors}


def test_promotion_request_defaults_specifications():
    payload = validate_payload(PromotionRequest, {"product_id": 3, "feature_type": " product_featured ", "duration_days": 7})
    assert payload.feature_type == "product_featured"
    assert payload.specifications.search_keywords == []


def test_zero_duration_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        validate_payload(PromotionRequest, {"product_id": 3, "feature_type": "product_featured", "duration_days": 0})
    assert _fields(excinfo) == {"duration_days"}


def test_missing_body_reports_every_required_field():
    with pytest.raises(ValidationError) as excinfo:
        validate_payload(PromotionRequest, None)
    assert _fields(excinfo) == {"product_id", "feature_type", "duration_days"}


def test_too_many_keywords_are_rejected():
    with pytest.raises(ValidationError) as excinfo:
        validate_payload(
            PromotionRequest,
            {
                "product_id": 3,
                "feature_type": "product_featured",
                "duration_days": 2,
                "specifications": {"search_keywords": [f"k{i}" for i in range(21)]},
            },
        )
    assert _fields(excinfo) == {"specifications.search_keywords"}


def test_blank_rejection_reason_is_rejected():
    with pytest.raises(ValidationError):
        validate_payload(RejectPromotion, {"reason": "   "})


def test_top_up_must_be_positive():
    with pytest.raises(ValidationError) as excinfo:
        validate_payload(WalletTopUp, {"amount": -5})
    assert _fields(excinfo) == {"amount"}


def test_top_up_parses_decimal_amount():
    assert validate_payload(WalletTopUp, {"amount": "12.50"}).amount == Decimal("12.50")


def test_unknown_inventory_field_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        validate_payload(InventoryUpdate, {"field": "price", "value": 3})
    assert "Unknown inventory field" in excinfo.value.errors[0]["message"]


def test_inventory_value_type_is_left_to_the_model():
    payload = validate_payload(InventoryUpdate, {"field": "totalCapacity", "value": "lots"})
    assert payload.value == "lots"


def test_pricing_update_drops_blank_benefits():
    payload = validate_payload(
        PricingUpdate,
        {"feature_type": "product_featured", "benefits": ["Homepage slot", "  ", ""]},
    )
    assert payload.benefits == ["Homepage slot"]


def test_audit_query_date_range_error_is_reported_at_root():
    with pytest.raises(ValidationError) as excinfo:
        validate_payload(
            AuditLogQuery,
            {"start_date": "2026-03-10T00:00:00+00:00", "end_date": "2026-03-01T00:00:00+00:00"},
        )
    assert _fields(excinfo) == {"__root__"}


def test_audit_query_filters_exclude_paging():
    payload = validate_payload(AuditLogQuery, {"page": "2", "action": "promotional_feature_approved"})
    assert payload.page == 2
    assert payload.filters() == {"action": "promotional_feature_approved"}
