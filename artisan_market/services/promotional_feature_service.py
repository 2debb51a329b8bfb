"""
Promotional feature lifecycle.

    pending_approval --approve--> active --expire_due--> expired
           |                        |
           +--reject--> rejected    +--cancel (admin)--> cancelled
           +--cancel--> cancelled

Approval is the only way into ``active`` and is a single database
transaction: the wallet debit, the guarded status change, the revenue record
and the product display flag commit together or not at all. Every
transition is a conditional UPDATE on the expected current status, so a
second admin acting on the same feature gets ``StaleStateError`` instead of
a double charge.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

import bleach
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from artisan_market.config import Config
from artisan_market.exceptions import (
    AuthorizationError,
    MarketplaceError,
    NotFoundError,
    PersistenceError,
    StaleStateError,
    ValidationError,
)
from artisan_market.identity import Identity, RequestMetadata
from artisan_market.models import (
    PRODUCT_FLAG_BY_FEATURE_TYPE,
    Product,
    PromotionalFeature,
    PromotionalFeatureStatus,
    as_utc,
    utc_now,
)
from artisan_market.observability import increment_counter, record_event
from artisan_market.services.admin_audit_log import AdminAuditLog, AuditEntry
from artisan_market.services.promotional_catalog import PromotionalCatalog, compute_cost
from artisan_market.services.revenue_recorder import RevenueRecorder
from artisan_market.services.wallet_ledger import WalletLedger

OPEN_STATUSES = (PromotionalFeatureStatus.PENDING_APPROVAL, PromotionalFeatureStatus.ACTIVE)
TARGET_TYPE = "promotional_feature"


@dataclass
class ExpirationResult:
    expired: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    flags_cleared: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expired": list(self.expired),
            "failed": list(self.failed),
            "flags_cleared": list(self.flags_cleared),
        }


def sanitize_specifications(specifications: Optional[Dict[str, Any]], config: type[Config] = Config) -> Dict[str, Any]:
    """Strip markup from seller-supplied text and bound its size."""
    specifications = specifications or {}

    custom_text = specifications.get("custom_text")
    if custom_text:
        custom_text = bleach.clean(str(custom_text), tags=[], strip=True).strip()
        custom_text = custom_text[: config.PROMOTION_CUSTOM_TEXT_MAX_LENGTH] or None

    keywords: List[str] = []
    for keyword in specifications.get("search_keywords") or []:
        cleaned = bleach.clean(str(keyword), tags=[], strip=True).strip().lower()
        if cleaned and cleaned not in keywords:
            keywords.append(cleaned[:50])
    keywords = keywords[: config.PROMOTION_MAX_KEYWORDS]

    category_boost = specifications.get("category_boost")
    if category_boost:
        category_boost = bleach.clean(str(category_boost), tags=[], strip=True).strip()[:100] or None

    return {
        "custom_text": custom_text or None,
        "search_keywords": keywords,
        "category_boost": category_boost or None,
    }


class PromotionalFeatureService:
    """Domain service owning every promotional feature state change."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        catalog: Optional[PromotionalCatalog] = None,
        ledger: Optional[WalletLedger] = None,
        revenue: Optional[RevenueRecorder] = None,
        audit_log: Optional[AdminAuditLog] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db_session
        self.config = config
        self.audit_log = audit_log or AdminAuditLog(db_session)
        self.catalog = catalog or PromotionalCatalog(db_session, audit_log=self.audit_log)
        self.ledger = ledger or WalletLedger(db_session)
        self.revenue = revenue or RevenueRecorder(db_session)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Seller flows
    # ------------------------------------------------------------------
    def create(
        self,
        seller_id: int,
        product_id: int,
        feature_type: str,
        duration_days: int,
        specifications: Optional[Dict[str, Any]] = None,
    ) -> PromotionalFeature:
        if not self.config.PROMOTION_MIN_DURATION_DAYS <= duration_days <= self.config.PROMOTION_MAX_DURATION_DAYS:
            raise ValidationError(
                f"Duration must be between {self.config.PROMOTION_MIN_DURATION_DAYS} and "
                f"{self.config.PROMOTION_MAX_DURATION_DAYS} days",
                errors=[{"field": "duration_days", "message": "Out of range"}],
            )

        product = self.db.query(Product).filter_by(productID=product_id).first()
        if not product:
            raise NotFoundError("Product", product_id)
        if product.sellerID != seller_id:
            raise AuthorizationError("Product does not belong to this seller", product_id=product_id)

        try:
            pricing = self.catalog.get_pricing(feature_type)
        except NotFoundError as exc:
            raise ValidationError(
                f"Unknown promotional feature type '{feature_type}'",
                errors=[{"field": "feature_type", "message": "Not offered in the catalog"}],
            ) from exc

        existing = (
            self.db.query(PromotionalFeature)
            .filter(
                PromotionalFeature.productID == product_id,
                PromotionalFeature.feature_type == feature_type,
                PromotionalFeature.status.in_(OPEN_STATUSES),
            )
            .first()
        )
        if existing:
            raise ValidationError(
                f"Product {product_id} already has a {existing.status.value} {feature_type} promotion",
                errors=[{"field": "feature_type", "message": "Duplicate open promotion"}],
                existing_feature_id=existing.featureID,
            )

        now = self.clock()
        feature = PromotionalFeature(
            sellerID=seller_id,
            productID=product_id,
            feature_type=feature_type,
            duration_days=duration_days,
            price=compute_cost(pricing, duration_days),
            status=PromotionalFeatureStatus.PENDING_APPROVAL,
            specifications=sanitize_specifications(specifications, self.config),
            created_at=now,
            updated_at=now,
        )
        self.db.add(feature)
        self._commit("create promotional feature")

        increment_counter("promotional_features_created_total", labels={"feature_type": feature_type})
        record_event(
            "promotional_feature_requested",
            {"feature_id": feature.featureID, "seller_id": seller_id, "product_id": product_id, "feature_type": feature_type},
        )
        self.logger.info(
            "Promotional feature %s requested by seller %s for product %s",
            feature.featureID,
            seller_id,
            product_id,
            extra={"feature_type": feature_type, "duration_days": duration_days, "price": str(feature.price)},
        )
        return feature

    # ------------------------------------------------------------------
    # Admin flows
    # ------------------------------------------------------------------
    def approve(
        self,
        feature_id: int,
        identity: Identity,
        metadata: Optional[RequestMetadata] = None,
    ) -> PromotionalFeature:
        self._require_admin(identity)
        feature = self.get_feature(feature_id)
        self._guard_status(feature, [PromotionalFeatureStatus.PENDING_APPROVAL], identity, "approve", metadata)

        now = self.clock()
        start_date, end_date = feature.activation_window(now)
        price = Decimal(feature.price)
        try:
            transaction = self.ledger.debit(
                feature.sellerID,
                price,
                reason=f"Promotional feature: {feature.feature_type} ({feature.duration_days} days)",
                reference_type=TARGET_TYPE,
                reference_id=feature.featureID,
                commit=False,
            )
            self._transition(
                feature,
                PromotionalFeatureStatus.PENDING_APPROVAL,
                PromotionalFeatureStatus.ACTIVE,
                start_date=start_date,
                end_date=end_date,
                approved_by=identity.user_id,
                approved_at=now,
                updated_at=now,
            )
            self.revenue.record_promotional_revenue(feature, price, transaction, payment_date=now)
            if feature.product_flag:
                self.db.query(Product).filter_by(productID=feature.productID).update(
                    {feature.product_flag: True}, synchronize_session=False
                )
            self.db.commit()
        except MarketplaceError as exc:
            self.db.rollback()
            increment_counter("promotional_approvals_failed_total", labels={"code": exc.code})
            self._audit_failure(identity, "approve", feature_id, exc, metadata)
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Approval of promotional feature %s failed", feature_id)
            increment_counter("promotional_approvals_failed_total", labels={"code": PersistenceError.code})
            error = PersistenceError("Failed to approve promotional feature", feature_id=feature_id)
            self._audit_failure(identity, "approve", feature_id, error, metadata)
            raise error from exc

        self.db.refresh(feature)
        increment_counter("promotional_features_activated_total", labels={"feature_type": feature.feature_type})
        record_event(
            "promotional_feature_activated",
            {"feature_id": feature.featureID, "seller_id": feature.sellerID, "price": float(price)},
        )
        self.audit_log.log_admin_action(
            AuditEntry.for_identity(
                identity,
                "promotional_feature_approved",
                TARGET_TYPE,
                feature.featureID,
                metadata,
                changes={
                    "before": {"status": PromotionalFeatureStatus.PENDING_APPROVAL.value},
                    "after": {
                        "status": PromotionalFeatureStatus.ACTIVE.value,
                        "start_date": start_date,
                        "end_date": end_date,
                        "price": price,
                        "wallet_transaction_id": transaction.transactionID,
                    },
                },
                description=f"Approved {feature.feature_type} for product {feature.productID}",
            )
        )
        self.logger.info("Promotional feature %s approved by admin %s", feature.featureID, identity.user_id)
        return feature

    def reject(
        self,
        feature_id: int,
        identity: Identity,
        reason: str,
        metadata: Optional[RequestMetadata] = None,
    ) -> PromotionalFeature:
        self._require_admin(identity)
        reason = bleach.clean(reason or "", tags=[], strip=True).strip()
        if not reason:
            raise ValidationError("A rejection reason is required", errors=[{"field": "reason", "message": "Required"}])

        feature = self.get_feature(feature_id)
        self._guard_status(feature, [PromotionalFeatureStatus.PENDING_APPROVAL], identity, "reject", metadata)

        now = self.clock()
        try:
            self._transition(
                feature,
                PromotionalFeatureStatus.PENDING_APPROVAL,
                PromotionalFeatureStatus.REJECTED,
                rejection_reason=reason,
                updated_at=now,
            )
            self.db.commit()
        except MarketplaceError as exc:
            self.db.rollback()
            self._audit_failure(identity, "reject", feature_id, exc, metadata)
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Failed to reject promotional feature", feature_id=feature_id) from exc

        self.db.refresh(feature)
        increment_counter("promotional_features_rejected_total", labels={"feature_type": feature.feature_type})
        self.audit_log.log_admin_action(
            AuditEntry.for_identity(
                identity,
                "promotional_feature_rejected",
                TARGET_TYPE,
                feature.featureID,
                metadata,
                changes={
                    "before": {"status": PromotionalFeatureStatus.PENDING_APPROVAL.value},
                    "after": {"status": PromotionalFeatureStatus.REJECTED.value, "rejection_reason": reason},
                },
                description=f"Rejected {feature.feature_type} for product {feature.productID}: {reason}",
            )
        )
        return feature

    def cancel(
        self,
        feature_id: int,
        identity: Identity,
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> PromotionalFeature:
        """
        Cancel a pending or active feature.

        Pending features may be withdrawn by their seller or an admin. Active
        features can only be cancelled by an admin; the product flag is
        cleared and no refund is issued.
        """
        feature = self.get_feature(feature_id)
        current = PromotionalFeatureStatus(feature.status)
        if current is PromotionalFeatureStatus.ACTIVE:
            self._require_admin(identity)
        elif current is PromotionalFeatureStatus.PENDING_APPROVAL:
            if not identity.is_admin and identity.user_id != feature.sellerID:
                raise AuthorizationError("Only the owning seller or an admin can cancel this feature")
        else:
            self._guard_status(feature, list(OPEN_STATUSES), identity, "cancel", metadata)

        reason = bleach.clean(reason or "", tags=[], strip=True).strip() or None
        now = self.clock()
        try:
            self._transition(
                feature,
                current,
                PromotionalFeatureStatus.CANCELLED,
                cancelled_by=identity.user_id,
                cancelled_at=now,
                cancellation_reason=reason,
                updated_at=now,
            )
            self.db.commit()
        except MarketplaceError as exc:
            self.db.rollback()
            if identity.is_admin:
                self._audit_failure(identity, "cancel", feature_id, exc, metadata)
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Failed to cancel promotional feature", feature_id=feature_id) from exc

        flag_cleared = False
        if current is PromotionalFeatureStatus.ACTIVE:
            flag_cleared = self._clear_flag_if_unbacked(feature.productID, feature.feature_type)

        self.db.refresh(feature)
        increment_counter("promotional_features_cancelled_total", labels={"from_status": current.value})
        if identity.is_admin:
            self.audit_log.log_admin_action(
                AuditEntry.for_identity(
                    identity,
                    "promotional_feature_cancelled",
                    TARGET_TYPE,
                    feature.featureID,
                    metadata,
                    changes={
                        "before": {"status": current.value},
                        "after": {
                            "status": PromotionalFeatureStatus.CANCELLED.value,
                            "cancellation_reason": reason,
                            "flag_cleared": flag_cleared,
                        },
                    },
                    description=f"Cancelled {feature.feature_type} for product {feature.productID}",
                )
            )
        self.logger.info("Promotional feature %s cancelled from %s", feature.featureID, current.value)
        return feature

    # ------------------------------------------------------------------
    # Expiration sweep
    # ------------------------------------------------------------------
    def expire_due(self, now: Optional[datetime] = None) -> ExpirationResult:
        """
        Expire every active feature whose end date has passed.

        Each feature is committed on its own so one failure cannot block the
        rest. Product flags are cleared afterwards in a separate commit, and
        only when no other active feature still backs the same flag.
        """
        now = as_utc(now) or self.clock()
        result = ExpirationResult()

        due = (
            self.db.query(PromotionalFeature)
            .filter(
                PromotionalFeature.status == PromotionalFeatureStatus.ACTIVE,
                PromotionalFeature.end_date < now,
            )
            .order_by(PromotionalFeature.featureID.asc())
            .all()
        )
        expired_features: List[PromotionalFeature] = []
        for feature in due:
            feature_id = feature.featureID
            try:
                self._transition(
                    feature,
                    PromotionalFeatureStatus.ACTIVE,
                    PromotionalFeatureStatus.EXPIRED,
                    updated_at=now,
                )
                self.db.commit()
            except StaleStateError:
                # Cancelled or expired elsewhere since the query ran
                self.db.rollback()
                continue
            except SQLAlchemyError:
                self.db.rollback()
                result.failed.append(feature_id)
                increment_counter("promotional_expiry_failures_total", labels={"stage": "transition"})
                self.logger.exception("Failed to expire promotional feature %s", feature_id)
                continue
            result.expired.append(feature_id)
            expired_features.append(feature)

        for feature in expired_features:
            try:
                if self._clear_flag_if_unbacked(feature.productID, feature.feature_type):
                    result.flags_cleared.append({"product_id": feature.productID, "flag": feature.product_flag})
            except PersistenceError:
                increment_counter("promotional_expiry_failures_total", labels={"stage": "flag"})
                self.logger.exception("Failed to clear flag for expired feature %s", feature.featureID)

        try:
            result.flags_cleared.extend(self.reconcile_product_flags())
        except PersistenceError:
            increment_counter("promotional_expiry_failures_total", labels={"stage": "reconcile"})
            self.logger.exception("Product flag reconciliation failed")

        if result.expired:
            increment_counter("promotional_features_expired_total", amount=len(result.expired))
            record_event("promotional_features_expired", result.to_dict())
        if result.expired or result.failed:
            self.logger.info(
                "Expiration sweep: %d expired, %d failed, %d flags cleared",
                len(result.expired),
                len(result.failed),
                len(result.flags_cleared),
            )
        return result

    def reconcile_product_flags(self) -> List[Dict[str, Any]]:
        """Clear display flags that no active feature backs any more."""
        cleared: List[Dict[str, Any]] = []
        for feature_type, flag in PRODUCT_FLAG_BY_FEATURE_TYPE.items():
            flagged = self.db.query(Product).filter(getattr(Product, flag).is_(True)).all()
            for product in flagged:
                if self._clear_flag_if_unbacked(product.productID, feature_type):
                    cleared.append({"product_id": product.productID, "flag": flag})
        return cleared

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_feature(self, feature_id: int) -> PromotionalFeature:
        feature = self.db.query(PromotionalFeature).filter_by(featureID=feature_id).first()
        if not feature:
            raise NotFoundError("PromotionalFeature", feature_id)
        return feature

    def list_pending(self) -> List[PromotionalFeature]:
        return (
            self.db.query(PromotionalFeature)
            .filter(PromotionalFeature.status == PromotionalFeatureStatus.PENDING_APPROVAL)
            .order_by(PromotionalFeature.created_at.asc(), PromotionalFeature.featureID.asc())
            .all()
        )

    def list_active(self, page: int = 1, page_size: Optional[int] = None) -> Dict[str, Any]:
        """One page of active features, soonest to expire first."""
        page = max(1, page)
        page_size = min(page_size or self.config.PROMOTION_LIST_PAGE_SIZE, self.config.PROMOTION_LIST_MAX_PAGE_SIZE)
        query = self.db.query(PromotionalFeature).filter(
            PromotionalFeature.status == PromotionalFeatureStatus.ACTIVE
        )
        total_count = query.count()
        features = (
            query.order_by(PromotionalFeature.end_date.asc(), PromotionalFeature.featureID.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {
            "features": features,
            "total_count": total_count,
            "page": page,
            "page_size": page_size,
            "total_pages": max(1, math.ceil(total_count / page_size)),
        }

    def list_for_seller(
        self,
        seller_id: int,
        statuses: Optional[Iterable[PromotionalFeatureStatus]] = None,
    ) -> List[PromotionalFeature]:
        query = self.db.query(PromotionalFeature).filter(PromotionalFeature.sellerID == seller_id)
        if statuses:
            query = query.filter(PromotionalFeature.status.in_(list(statuses)))
        return query.order_by(PromotionalFeature.featureID.desc()).all()

    def list_for_product(self, product_id: int) -> List[PromotionalFeature]:
        return (
            self.db.query(PromotionalFeature)
            .filter(
                PromotionalFeature.productID == product_id,
                PromotionalFeature.status.in_(OPEN_STATUSES),
            )
            .order_by(PromotionalFeature.featureID.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require_admin(self, identity: Identity) -> None:
        if not identity.is_admin:
            raise AuthorizationError("Admin role required", role=identity.role)

    def _guard_status(
        self,
        feature: PromotionalFeature,
        expected: List[PromotionalFeatureStatus],
        identity: Identity,
        action: str,
        metadata: Optional[RequestMetadata],
    ) -> None:
        current = PromotionalFeatureStatus(feature.status)
        if current in expected:
            return
        error = StaleStateError("PromotionalFeature", feature.featureID, current, expected)
        increment_counter("promotional_stale_transitions_total", labels={"action": action})
        if identity.is_admin:
            self._audit_failure(identity, action, feature.featureID, error, metadata)
        raise error

    def _transition(
        self,
        feature: PromotionalFeature,
        expected: PromotionalFeatureStatus,
        target: PromotionalFeatureStatus,
        **values: Any,
    ) -> None:
        if not feature.can_transition(target):
            raise StaleStateError("PromotionalFeature", feature.featureID, feature.status, [expected])
        values["status"] = target
        updated = (
            self.db.query(PromotionalFeature)
            .filter(
                PromotionalFeature.featureID == feature.featureID,
                PromotionalFeature.status == expected,
            )
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            raise StaleStateError("PromotionalFeature", feature.featureID, "changed concurrently", [expected])

    def _clear_flag_if_unbacked(self, product_id: int, feature_type: str) -> bool:
        flag = PRODUCT_FLAG_BY_FEATURE_TYPE.get(feature_type)
        if not flag:
            return False
        try:
            still_backed = (
                self.db.query(PromotionalFeature.featureID)
                .filter(
                    PromotionalFeature.productID == product_id,
                    PromotionalFeature.feature_type == feature_type,
                    PromotionalFeature.status == PromotionalFeatureStatus.ACTIVE,
                )
                .first()
            )
            if still_backed:
                return False
            updated = (
                self.db.query(Product)
                .filter(Product.productID == product_id, getattr(Product, flag).is_(True))
                .update({flag: False}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Failed to clear product flag", product_id=product_id, flag=flag) from exc
        if updated:
            self.logger.info("Cleared %s on product %s", flag, product_id)
        return bool(updated)

    def _audit_failure(
        self,
        identity: Identity,
        action: str,
        feature_id: int,
        error: MarketplaceError,
        metadata: Optional[RequestMetadata],
    ) -> None:
        self.audit_log.log_admin_action(
            AuditEntry.for_identity(
                identity,
                f"promotional_feature_{action}_failed",
                TARGET_TYPE,
                feature_id,
                metadata,
                changes={"attempted": action, "error": error.to_dict()["error"]},
                description=f"Failed to {action} promotional feature {feature_id}",
                success=False,
                error_message=error.message,
            )
        )

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Failed to %s", operation)
            raise PersistenceError(f"Failed to {operation}") from exc


def serialize_feature(feature: PromotionalFeature) -> Dict[str, Any]:
    def _dt(value: Optional[datetime]) -> Optional[str]:
        value = as_utc(value)
        return value.isoformat() if value else None

    return {
        "id": feature.featureID,
        "seller_id": feature.sellerID,
        "product_id": feature.productID,
        "feature_type": feature.feature_type,
        "duration_days": feature.duration_days,
        "price": float(feature.price),
        "status": feature.status.value if hasattr(feature.status, "value") else feature.status,
        "specifications": feature.specifications or {},
        "start_date": _dt(feature.start_date),
        "end_date": _dt(feature.end_date),
        "approved_by": feature.approved_by,
        "approved_at": _dt(feature.approved_at),
        "rejection_reason": feature.rejection_reason,
        "cancelled_by": feature.cancelled_by,
        "cancelled_at": _dt(feature.cancelled_at),
        "cancellation_reason": feature.cancellation_reason,
        "created_at": _dt(feature.created_at),
        "updated_at": _dt(feature.updated_at),
    }
