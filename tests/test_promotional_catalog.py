from decimal import Decimal
from types import SimpleNamespace

import pytest

from artisan_market.exceptions import NotFoundError, ValidationError
from artisan_market.models import PromotionalPricing
from artisan_market.services.admin_audit_log import AdminAuditLog
from artisan_market.services.promotional_catalog import PromotionalCatalog, compute_cost


@pytest.fixture
def catalog(db_session, audit_sink):
    return PromotionalCatalog(db_session, audit_log=AdminAuditLog(db_session, sink=audit_sink))


def test_cost_charges_extra_days_beyond_included():
    pricing = SimpleNamespace(base_price=Decimal("25"), price_per_day=Decimal("5"), included_days=4)
    assert compute_cost(pricing, 7) == Decimal("40.00")
    assert compute_cost(pricing, 2) == Decimal("25.00")


def test_cost_rejects_zero_duration():
    pricing = SimpleNamespace(base_price=Decimal("5"), price_per_day=Decimal("5"), included_days=1)
    with pytest.raises(ValidationError):
        compute_cost(pricing, 0)


def test_catalog_cost_uses_stored_row(catalog, pricing):
    assert catalog.calculate_cost("product_featured", 4) == Decimal("20.00")


def test_inactive_pricing_is_not_offered(catalog, pricing, db_session):
    pricing[0].is_active = False
    db_session.commit()

    with pytest.raises(NotFoundError):
        catalog.get_pricing("product_featured")
    assert [row.feature_type for row in catalog.list_pricing()] == ["product_sponsored"]
    assert len(catalog.list_pricing(include_inactive=True)) == 2


def test_initialize_defaults_seeds_three_types(catalog, admin, audit_sink):
    created = catalog.initialize_defaults(admin)

    assert sorted(row.feature_type for row in created) == [
        "artisan_spotlight",
        "product_featured",
        "product_sponsored",
    ]
    spotlight = catalog.get_pricing("artisan_spotlight")
    assert spotlight.base_price == Decimal("25")
    assert spotlight.included_days == 1
    assert "Spotlight badge on profile" in spotlight.benefits
    assert audit_sink.actions() == ["promotional_pricing_initialized"]


def test_initialize_defaults_leaves_existing_rows(catalog, admin, pricing):
    created = catalog.initialize_defaults(admin)

    assert [row.feature_type for row in created] == ["artisan_spotlight"]
    assert catalog.get_pricing("product_sponsored").base_price == Decimal("25")
    assert catalog.initialize_defaults(admin) == []


def test_update_pricing_records_before_and_after(catalog, admin, pricing, audit_sink):
    catalog.update_pricing({"feature_type": "product_featured", "price_per_day": Decimal("7")}, admin)

    assert catalog.calculate_cost("product_featured", 3) == Decimal("19.00")
    entry = audit_sink.entries[-1]
    assert entry.action == "promotional_pricing_updated"
    assert entry.changes["before"]["price_per_day"] == 5.0
    assert entry.changes["after"]["price_per_day"] == 7.0
    assert entry.admin_id == admin.user_id


def test_update_pricing_creates_missing_type(catalog, admin, audit_sink, db_session):
    catalog.update_pricing(
        {
            "feature_type": "homepage_banner",
            "name": "Homepage Banner",
            "base_price": Decimal("30"),
            "price_per_day": Decimal("10"),
        },
        admin,
    )

    row = db_session.query(PromotionalPricing).filter_by(feature_type="homepage_banner").one()
    assert row.included_days == 1
    assert row.updated_by == admin.user_id
    assert audit_sink.entries[-1].action == "promotional_pricing_created"
    assert audit_sink.entries[-1].changes["before"] is None


def test_creating_pricing_requires_prices(catalog, admin):
    with pytest.raises(ValidationError) as excinfo:
        catalog.update_pricing({"feature_type": "homepage_banner", "name": "Banner"}, admin)
    assert {error["field"] for error in excinfo.value.errors} == {"base_price", "price_per_day"}
