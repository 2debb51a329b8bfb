from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from artisan_market.exceptions import InsufficientFundsError, NotFoundError, PersistenceError, ValidationError
from artisan_market.models import Wallet, WalletTransaction, WalletTransactionType
from artisan_market.observability import increment_counter, record_event

_CENT = Decimal("0.01")


def _to_amount(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount)).quantize(_CENT)
    except ArithmeticError as exc:
        raise ValidationError("Amount must be a number", amount=str(amount)) from exc
    if value <= 0:
        raise ValidationError("Amount must be greater than zero", amount=value)
    return value


class WalletLedger:
    """
    Seller wallet balances and their ledger.

    Every balance change is paired with one ``WalletTransaction`` carrying
    the balance before and after. Debits are a conditional UPDATE guarded on
    ``balance >= amount`` so two concurrent debits can never overdraw.
    Pass ``commit=False`` to join an enclosing transaction.
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def open_wallet(self, seller_id: int) -> Wallet:
        wallet = self.db.query(Wallet).filter_by(sellerID=seller_id).first()
        if wallet:
            return wallet
        wallet = Wallet(sellerID=seller_id, balance=Decimal("0"))
        self.db.add(wallet)
        self.db.flush()
        self.logger.info("Opened wallet for seller %s", seller_id)
        return wallet

    def get_wallet(self, seller_id: int) -> Wallet:
        wallet = self.db.query(Wallet).filter_by(sellerID=seller_id).first()
        if not wallet:
            raise NotFoundError("Wallet", seller_id)
        return wallet

    def get_balance(self, seller_id: int) -> Decimal:
        return Decimal(self.get_wallet(seller_id).balance)

    def debit(
        self,
        seller_id: int,
        amount: Any,
        reason: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        transaction_type: WalletTransactionType = WalletTransactionType.PROMOTIONAL_FEATURE,
        commit: bool = True,
    ) -> WalletTransaction:
        value = _to_amount(amount)
        wallet = self.db.query(Wallet).filter_by(sellerID=seller_id).with_for_update().first()
        if wallet is None:
            # A seller who never topped up has an empty wallet
            self._reject_debit(seller_id, Decimal("0.00"), value)
        balance_before = Decimal(wallet.balance)

        updated = (
            self.db.query(Wallet)
            .filter(Wallet.walletID == wallet.walletID, Wallet.balance >= value)
            .update({Wallet.balance: Wallet.balance - value}, synchronize_session=False)
        )
        if updated != 1:
            self._reject_debit(seller_id, balance_before, value)

        self.db.expire(wallet, ["balance"])
        entry = self._record(
            wallet,
            transaction_type,
            -value,
            balance_before,
            balance_before - value,
            reason,
            reference_type,
            reference_id,
        )
        self._finish(commit)
        increment_counter("wallet_debits_total", labels={"type": transaction_type.value})
        return entry

    def credit(
        self,
        seller_id: int,
        amount: Any,
        reason: str,
        transaction_type: WalletTransactionType = WalletTransactionType.TOP_UP,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        commit: bool = True,
    ) -> WalletTransaction:
        value = _to_amount(amount)
        wallet = self.open_wallet(seller_id)
        balance_before = Decimal(wallet.balance)

        self.db.query(Wallet).filter(Wallet.walletID == wallet.walletID).update(
            {Wallet.balance: Wallet.balance + value}, synchronize_session=False
        )
        self.db.expire(wallet, ["balance"])
        entry = self._record(
            wallet,
            transaction_type,
            value,
            balance_before,
            balance_before + value,
            reason,
            reference_type,
            reference_id,
        )
        self._finish(commit)
        increment_counter("wallet_credits_total", labels={"type": transaction_type.value})
        return entry

    def get_transactions(self, seller_id: int, limit: int = 50) -> List[WalletTransaction]:
        wallet = self.get_wallet(seller_id)
        return (
            self.db.query(WalletTransaction)
            .filter_by(walletID=wallet.walletID)
            .order_by(WalletTransaction.transactionID.desc())
            .limit(limit)
            .all()
        )

    def _record(
        self,
        wallet: Wallet,
        transaction_type: WalletTransactionType,
        signed_amount: Decimal,
        balance_before: Decimal,
        balance_after: Decimal,
        reason: str,
        reference_type: Optional[str],
        reference_id: Optional[int],
    ) -> WalletTransaction:
        entry = WalletTransaction(
            walletID=wallet.walletID,
            type=transaction_type,
            amount=signed_amount,
            balance_before=balance_before,
            balance_after=balance_after,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        self.db.add(entry)
        self.db.flush()
        record_event(
            "wallet_transaction",
            {
                "seller_id": wallet.sellerID,
                "type": transaction_type.value,
                "amount": float(signed_amount),
                "balance_after": float(balance_after),
            },
        )
        return entry

    def _reject_debit(self, seller_id: int, balance: Decimal, required: Decimal) -> None:
        increment_counter("wallet_debit_rejected_total", labels={"reason": "insufficient_funds"})
        self.logger.warning(
            "Insufficient funds for seller %s: balance %s, required %s",
            seller_id,
            balance,
            required,
        )
        raise InsufficientFundsError(seller_id, balance, required)

    def _finish(self, commit: bool) -> None:
        if not commit:
            return
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.exception("Failed to commit wallet change")
            raise PersistenceError("Failed to commit wallet change") from exc


def serialize_transaction(entry: WalletTransaction) -> Dict[str, Any]:
    return {
        "id": entry.transactionID,
        "type": entry.type.value if hasattr(entry.type, "value") else entry.type,
        "amount": float(entry.amount),
        "balance_before": float(entry.balance_before),
        "balance_after": float(entry.balance_after),
        "reason": entry.reason,
        "reference_type": entry.reference_type,
        "reference_id": entry.reference_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
