from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from artisan_market.models import PromotionalFeature, RevenueRecord, RevenueStatus, WalletTransaction, as_utc
from artisan_market.observability import increment_counter

PROMOTIONAL_REVENUE = "promotional_feature"


class RevenueRecorder:
    """Append-only platform revenue, one record per paid activation."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def record_promotional_revenue(
        self,
        feature: PromotionalFeature,
        amount: Decimal,
        transaction: Optional[WalletTransaction],
        payment_date: datetime,
    ) -> RevenueRecord:
        """Stage the record in the caller's transaction; the caller commits."""
        record = RevenueRecord(
            type=PROMOTIONAL_REVENUE,
            gross_amount=amount,
            payment_date=payment_date,
            status=RevenueStatus.COMPLETED,
            featureID=feature.featureID,
            sellerID=feature.sellerID,
            transactionID=transaction.transactionID if transaction is not None else None,
            description=f"{feature.feature_type} for product {feature.productID} ({feature.duration_days} days)",
        )
        self.db.add(record)
        self.db.flush()
        increment_counter("promotional_revenue_records_total", labels={"feature_type": feature.feature_type})
        return record

    def list_for_feature(self, feature_id: int) -> List[RevenueRecord]:
        return (
            self.db.query(RevenueRecord)
            .filter_by(featureID=feature_id)
            .order_by(RevenueRecord.revenueID.asc())
            .all()
        )


def serialize_revenue(record: RevenueRecord) -> Dict[str, Any]:
    payment_date = as_utc(record.payment_date)
    return {
        "id": record.revenueID,
        "type": record.type,
        "gross_amount": float(record.gross_amount),
        "payment_date": payment_date.isoformat() if payment_date else None,
        "status": record.status.value if hasattr(record.status, "value") else record.status,
        "feature_id": record.featureID,
        "seller_id": record.sellerID,
        "transaction_id": record.transactionID,
        "description": record.description,
    }
