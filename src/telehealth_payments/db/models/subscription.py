"""
Subscription model
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime

from ..base import Base, JSONType


class Subscription(Base):
    """
    Patient subscription holding session credits

    plan_id is nullable and set to NULL when the plan is deleted; the
    plan_* columns keep the purchased terms so history survives deletion.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="SET NULL"), nullable=True, index=True)

    # Snapshot of the plan terms at activation
    plan_name = Column(String(255), nullable=True)
    plan_price = Column(Numeric(12, 2), nullable=True)
    plan_currency = Column(String(3), nullable=True)
    plan_duration_days = Column(Integer, nullable=True)

    # Validity window
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False, index=True)
    activated_at = Column(DateTime, nullable=True)

    # Session credits
    text_sessions_remaining = Column(Integer, default=0, nullable=False)
    voice_calls_remaining = Column(Integer, default=0, nullable=False)
    video_calls_remaining = Column(Integer, default=0, nullable=False)
    total_text_sessions = Column(Integer, default=0, nullable=False)
    total_voice_calls = Column(Integer, default=0, nullable=False)
    total_video_calls = Column(Integer, default=0, nullable=False)

    # Funding
    payment_transaction_reference = Column(String(100), nullable=True, index=True)
    payment_gateway = Column(String(20), nullable=True)
    payment_metadata = Column(JSONType, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    plan = relationship("Plan", back_populates="subscriptions")

    __table_args__ = (
        # One active subscription per user
        Index(
            "uq_subscriptions_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def session_credits(self) -> dict:
        """Remaining credits keyed by session type"""
        return {
            "text": self.text_sessions_remaining,
            "voice": self.voice_calls_remaining,
            "video": self.video_calls_remaining,
        }

    def is_valid_at(self, moment: datetime) -> bool:
        return bool(self.is_active) and self.end_date is not None and self.end_date > moment

    def __repr__(self):
        return f"<Subscription(id={self.id}, user_id={self.user_id}, plan_id={self.plan_id}, active={self.is_active})>"
