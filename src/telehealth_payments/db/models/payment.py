"""
Payment transaction ledger model
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Index
from datetime import datetime
import enum

from ..base import Base, JSONType


class TransactionStatus(str, enum.Enum):
    """Internal payment status (gateway vocabulary is normalized onto this)"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentTransaction(Base):
    """
    One row per gateway reference

    gateway_reference is the idempotency key: every delivery for the same
    reference lands on this row. user_id and plan_id are plain integers so
    that notifications naming unknown entities can still be recorded.
    """
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)

    # Identification
    gateway_reference = Column(String(100), nullable=False, unique=True, index=True)
    gateway_transaction_id = Column(String(100), nullable=True, index=True)
    gateway = Column(String(20), default="paychangu", nullable=False)

    # Amount as reported by the gateway (after its fees)
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)

    status = Column(String(20), default=TransactionStatus.PENDING.value, nullable=False, index=True)

    payment_method = Column(String(100), nullable=True)
    payment_channel = Column(String(100), nullable=True)

    user_id = Column(Integer, nullable=True, index=True)
    plan_id = Column(Integer, nullable=True)

    # Review / failure bookkeeping
    requires_review = Column(Boolean, default=False, nullable=False, index=True)
    anomaly_reason = Column(String(200), nullable=True)
    failure_reason = Column(String(200), nullable=True)

    # Audit
    raw_payload = Column(JSONType, nullable=True)
    delivery_count = Column(Integer, default=0, nullable=False)
    extra_metadata = Column(JSONType, nullable=True)  # plan snapshot, checkout data

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_payment_transactions_user_status", "user_id", "status"),
    )

    @property
    def plan_snapshot(self):
        return (self.extra_metadata or {}).get("plan_snapshot")

    def __repr__(self):
        return f"<PaymentTransaction(id={self.id}, reference={self.gateway_reference}, status={self.status}, amount={self.amount})>"
