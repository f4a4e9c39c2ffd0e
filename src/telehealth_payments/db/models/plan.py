"""
Plan catalog model
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime

from ..base import Base


class Plan(Base):
    """
    Consultation plan sold to patients

    Price is in major currency units (e.g. 100.00 MWK). Credit grants are
    per purchase and are added to the buyer's subscription on activation.
    """
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default="MWK", nullable=False)
    duration_days = Column(Integer, nullable=False, default=30)

    # Credit grants
    text_sessions = Column(Integer, default=0, nullable=False)
    voice_calls = Column(Integer, default=0, nullable=False)
    video_calls = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Deleting a plan nulls subscriptions.plan_id; it never deletes them
    subscriptions = relationship("Subscription", back_populates="plan")

    def __repr__(self):
        return f"<Plan(id={self.id}, name={self.name}, price={self.price} {self.currency})>"
