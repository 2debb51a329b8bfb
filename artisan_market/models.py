# artisan_market/models.py
from enum import Enum
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
from artisan_market.database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands datetimes back naive; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FulfillmentType(str, Enum):
    READY_TO_SHIP = "ready_to_ship"
    MADE_TO_ORDER = "made_to_order"
    SCHEDULED_ORDER = "scheduled_order"


class CapacityPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PromotionalFeatureStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class WalletTransactionType(str, Enum):
    TOP_UP = "top_up"
    PROMOTIONAL_FEATURE = "promotional_feature"
    REFUND = "refund"
    PAYOUT = "payout"


class RevenueStatus(str, Enum):
    COMPLETED = "completed"
    REVERSED = "reversed"


# Feature types that drive a product display flag
PRODUCT_FLAG_BY_FEATURE_TYPE = {
    "product_featured": "is_featured",
    "product_sponsored": "is_sponsored",
}


class Product(Base):
    __tablename__ = 'Product'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='ck_product_stock_non_negative'),
        CheckConstraint('available_quantity >= 0', name='ck_product_available_non_negative'),
        CheckConstraint(
            'remaining_capacity >= 0 AND remaining_capacity <= total_capacity',
            name='ck_product_capacity_bounds',
        ),
    )

    productID = Column(Integer, primary_key=True, autoincrement=True)
    sellerID = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    fulfillment_type = Column(
        SAEnum(FulfillmentType, name="fulfillment_type", native_enum=False, validate_strings=True),
        default=FulfillmentType.READY_TO_SHIP,
        nullable=False,
    )
    unit = Column(String(50), default='units')

    # ready_to_ship
    stock = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer)

    # made_to_order
    total_capacity = Column(Integer, nullable=False, default=0)
    remaining_capacity = Column(Integer, nullable=False, default=0)
    capacity_period = Column(
        SAEnum(CapacityPeriod, name="capacity_period", native_enum=False, validate_strings=True),
    )
    last_capacity_restore = Column(DateTime(timezone=True))

    # scheduled_order
    available_quantity = Column(Integer, nullable=False, default=0)
    production_quantity = Column(Integer)
    next_available_date = Column(DateTime(timezone=True))

    is_featured = Column(Boolean, nullable=False, default=False)
    is_sponsored = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    promotional_features = relationship("PromotionalFeature", back_populates="product")


class PromotionalPricing(Base):
    __tablename__ = 'PromotionalPricing'

    pricingID = Column(Integer, primary_key=True, autoincrement=True)
    feature_type = Column(String(50), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    base_price = Column(Numeric(10, 2), nullable=False)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    included_days = Column(Integer, nullable=False, default=1)
    benefits = Column(JSON, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class PromotionalFeature(Base):
    __tablename__ = 'PromotionalFeature'
    __table_args__ = (
        CheckConstraint('price >= 0', name='ck_promotional_feature_price_non_negative'),
        CheckConstraint('duration_days > 0', name='ck_promotional_feature_duration_positive'),
    )

    featureID = Column(Integer, primary_key=True, autoincrement=True)
    sellerID = Column(Integer, nullable=False, index=True)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False, index=True)
    feature_type = Column(String(50), nullable=False)
    duration_days = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SAEnum(PromotionalFeatureStatus, name="promotional_feature_status", native_enum=False, validate_strings=True),
        default=PromotionalFeatureStatus.PENDING_APPROVAL,
        nullable=False,
        index=True,
    )
    specifications = Column(JSON, default=dict)
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True), index=True)
    approved_by = Column(Integer)
    approved_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)
    cancelled_by = Column(Integer)
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    product = relationship("Product", back_populates="promotional_features")
    revenue_records = relationship("RevenueRecord", back_populates="feature")

    _VALID_TRANSITIONS = {
        PromotionalFeatureStatus.PENDING_APPROVAL: {
            PromotionalFeatureStatus.ACTIVE,
            PromotionalFeatureStatus.REJECTED,
            PromotionalFeatureStatus.CANCELLED,
        },
        PromotionalFeatureStatus.ACTIVE: {
            PromotionalFeatureStatus.EXPIRED,
            PromotionalFeatureStatus.CANCELLED,
        },
    }

    def can_transition(self, new_status: PromotionalFeatureStatus) -> bool:
        allowed = self._VALID_TRANSITIONS.get(PromotionalFeatureStatus(self.status), set())
        return new_status in allowed

    @property
    def product_flag(self):
        return PRODUCT_FLAG_BY_FEATURE_TYPE.get(self.feature_type)

    def activation_window(self, start: datetime):
        return start, start + timedelta(days=self.duration_days)


class Wallet(Base):
    __tablename__ = 'Wallet'
    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_wallet_balance_non_negative'),
    )

    walletID = Column(Integer, primary_key=True, autoincrement=True)
    sellerID = Column(Integer, unique=True, nullable=False)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    transactions = relationship("WalletTransaction", back_populates="wallet", order_by="WalletTransaction.transactionID")


class WalletTransaction(Base):
    __tablename__ = 'WalletTransaction'

    transactionID = Column(Integer, primary_key=True, autoincrement=True)
    walletID = Column(Integer, ForeignKey('Wallet.walletID'), nullable=False, index=True)
    type = Column(
        SAEnum(WalletTransactionType, name="wallet_transaction_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    amount = Column(Numeric(12, 2), nullable=False)  # signed: negative for debits
    balance_before = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    reason = Column(String(255))
    reference_type = Column(String(50))
    reference_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    wallet = relationship("Wallet", back_populates="transactions")


class RevenueRecord(Base):
    __tablename__ = 'RevenueRecord'

    revenueID = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(50), nullable=False)
    gross_amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        SAEnum(RevenueStatus, name="revenue_status", native_enum=False, validate_strings=True),
        default=RevenueStatus.COMPLETED,
        nullable=False,
    )
    featureID = Column(Integer, ForeignKey('PromotionalFeature.featureID'), index=True)
    sellerID = Column(Integer, nullable=False)
    transactionID = Column(Integer, ForeignKey('WalletTransaction.transactionID'))
    description = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=utc_now)

    feature = relationship("PromotionalFeature", back_populates="revenue_records")
    transaction = relationship("WalletTransaction")


class AdminAuditEntry(Base):
    __tablename__ = 'AdminAuditEntry'

    auditID = Column(Integer, primary_key=True, autoincrement=True)
    admin_id = Column(Integer, index=True)
    admin_role = Column(String(50))
    action = Column(String(100), nullable=False, index=True)
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(64))
    changes = Column(JSON)  # {"before": ..., "after": ...}
    description = Column(Text)
    timestamp = Column(DateTime(timezone=True), default=utc_now, index=True)
    ip_address = Column(String(45))
    user_agent = Column(String(255))
    request_id = Column(String(64))
    success = Column(Boolean, default=True)
    error_message = Column(String(255))
