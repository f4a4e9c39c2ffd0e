"""
Transaction Ledger - idempotent record of payment transactions keyed by gateway reference
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models.payment import PaymentTransaction, TransactionStatus
from ..payment_errors import StorageConflict

logger = logging.getLogger(__name__)

# Columns a notification may fill in on an existing row
MERGEABLE_FIELDS = (
    "gateway_transaction_id",
    "amount",
    "currency",
    "payment_method",
    "payment_channel",
    "user_id",
    "plan_id",
    "paid_at",
)


@dataclass
class LedgerEntry:
    """Result of recording one delivery"""
    transaction: PaymentTransaction
    is_new: bool
    completes: bool
    previous_status: Optional[TransactionStatus] = None


class TransactionLedger:
    """
    Ledger of payment transactions

    One row per gateway reference. Status only moves forward
    (pending -> completed, pending -> failed). The completed write itself
    is left to mark_completed so the caller can make it part of the same
    unit of work as activation. The ledger never commits.
    """

    def __init__(self, db: Session):
        """
        Initialize ledger

        Args:
            db: Database session (caller owns the transaction)
        """
        self.db = db

    def get(self, reference: str, lock: bool = False) -> Optional[PaymentTransaction]:
        """Get a transaction by gateway reference, optionally row-locked"""
        query = self.db.query(PaymentTransaction).filter(
            PaymentTransaction.gateway_reference == reference
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def upsert(
        self,
        reference: str,
        fields: Dict[str, Any],
        status: TransactionStatus,
        payload: Optional[Dict[str, Any]] = None,
    ) -> LedgerEntry:
        """
        Record a delivery for a reference

        Args:
            reference: Gateway reference (idempotency key)
            fields: Column values carried by the notification
            status: Normalized status of this delivery
            payload: Raw notification body for the audit log

        Returns:
            LedgerEntry; `completes` is True only for the delivery that first
            takes a pending row to completed
        """
        transaction = self.get(reference, lock=True)
        if transaction is None:
            transaction = self._insert(reference, fields, payload)
            if transaction is not None:
                return self._apply_status(transaction, status, is_new=True)

            # Lost the insert race: the row exists now
            transaction = self.get(reference, lock=True)
            if transaction is None:
                raise StorageConflict(
                    f"Transaction {reference} vanished after a uniqueness conflict",
                    {"reference": reference},
                )
            logger.info("Concurrent delivery created the ledger row first", extra={"reference": reference})

        self._merge(transaction, fields)
        self._record_delivery(transaction, payload)
        return self._apply_status(transaction, status, is_new=False)

    def create_pending(
        self,
        reference: str,
        user_id: int,
        plan_id: Optional[int],
        currency: Optional[str],
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentTransaction:
        """
        Create the pending placeholder written at payment initiation

        amount stays empty until the gateway reports what it received; the
        requested price lives in extra_metadata.

        Raises:
            StorageConflict: if the reference already exists
        """
        transaction = PaymentTransaction(
            gateway_reference=reference,
            status=TransactionStatus.PENDING.value,
            user_id=user_id,
            plan_id=plan_id,
            currency=currency,
            extra_metadata=extra_metadata,
            delivery_count=0,
        )
        try:
            with self.db.begin_nested():
                self.db.add(transaction)
        except IntegrityError:
            raise StorageConflict(f"Transaction reference {reference} already exists", {"reference": reference})
        return transaction

    def mark_completed(
        self,
        transaction: PaymentTransaction,
        paid_at: Optional[datetime] = None,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> PaymentTransaction:
        """
        Finalize a pending transaction as completed

        amount/currency are what reconciliation accepted and replace values
        from earlier deliveries. A previous anomaly moves to
        extra_metadata["resolved_anomalies"].
        """
        if transaction.status != TransactionStatus.PENDING.value:
            raise ValueError(f"Cannot complete transaction in status {transaction.status}")
        now = datetime.utcnow()
        transaction.status = TransactionStatus.COMPLETED.value
        transaction.paid_at = transaction.paid_at or paid_at or now
        transaction.completed_at = now
        if amount is not None:
            transaction.amount = amount
        if currency:
            transaction.currency = currency
        if transaction.anomaly_reason:
            metadata = dict(transaction.extra_metadata or {})
            metadata["resolved_anomalies"] = list(metadata.get("resolved_anomalies") or []) + [
                {"reason": transaction.anomaly_reason, "resolved_at": now.isoformat()}
            ]
            transaction.extra_metadata = metadata
            transaction.anomaly_reason = None
        transaction.requires_review = False
        return transaction

    def mark_failed(self, transaction: PaymentTransaction, reason: str) -> PaymentTransaction:
        """Mark a pending transaction failed; finalized rows are left as they are"""
        if transaction.status != TransactionStatus.PENDING.value:
            logger.info(
                "Not failing finalized transaction",
                extra={"reference": transaction.gateway_reference, "status": transaction.status, "reason": reason},
            )
            return transaction
        transaction.status = TransactionStatus.FAILED.value
        transaction.failure_reason = reason
        logger.info(
            "Transaction marked failed",
            extra={"reference": transaction.gateway_reference, "reason": reason},
        )
        return transaction

    def flag_anomaly(self, transaction: PaymentTransaction, reason: str) -> PaymentTransaction:
        """Flag for manual review; status is left untouched"""
        transaction.requires_review = True
        transaction.anomaly_reason = reason
        logger.warning(
            "Transaction flagged for review",
            extra={"reference": transaction.gateway_reference, "reason": reason},
        )
        return transaction

    def list_requiring_review(self, limit: int = 100) -> List[PaymentTransaction]:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.requires_review.is_(True))
            .order_by(PaymentTransaction.updated_at.desc())
            .limit(limit)
            .all()
        )

    def _insert(self, reference: str, fields: Dict[str, Any], payload: Optional[Dict[str, Any]]) -> Optional[PaymentTransaction]:
        """Insert a new pending row; returns None if another writer got there first"""
        transaction = PaymentTransaction(
            gateway_reference=reference,
            status=TransactionStatus.PENDING.value,
            raw_payload=dict(payload) if payload else None,
            delivery_count=1,
            **{key: value for key, value in fields.items() if key in MERGEABLE_FIELDS and value is not None},
        )
        try:
            with self.db.begin_nested():
                self.db.add(transaction)
        except IntegrityError:
            logger.warning("Unique violation inserting ledger row", extra={"reference": reference})
            return None
        return transaction

    def _merge(self, transaction: PaymentTransaction, fields: Dict[str, Any]):
        # Values recorded earlier (e.g. at initiation) are never overwritten
        for key in MERGEABLE_FIELDS:
            value = fields.get(key)
            if value is not None and getattr(transaction, key) is None:
                setattr(transaction, key, value)

    def _record_delivery(self, transaction: PaymentTransaction, payload: Optional[Dict[str, Any]]):
        transaction.delivery_count = (transaction.delivery_count or 0) + 1
        if not payload:
            return
        if not transaction.raw_payload:
            transaction.raw_payload = dict(payload)
            return
        # Reassign so the JSON column is seen as changed
        updated = dict(transaction.raw_payload)
        updated["deliveries"] = list(updated.get("deliveries") or []) + [payload]
        transaction.raw_payload = updated

    def _apply_status(self, transaction: PaymentTransaction, status: TransactionStatus, is_new: bool) -> LedgerEntry:
        previous = TransactionStatus(transaction.status)
        completes = False

        if previous == TransactionStatus.PENDING:
            if status == TransactionStatus.COMPLETED:
                completes = True
            elif status == TransactionStatus.FAILED:
                self.mark_failed(transaction, "gateway_reported_failure")
        elif status != previous:
            logger.info(
                "Ignoring status change on finalized transaction",
                extra={
                    "reference": transaction.gateway_reference,
                    "stored_status": previous.value,
                    "incoming_status": status.value,
                },
            )

        return LedgerEntry(
            transaction=transaction,
            is_new=is_new,
            completes=completes,
            previous_status=None if is_new else previous,
        )
