"""
Database module for the telehealth payments service
"""
from .engine import engine, SessionLocal, get_db
from .base import Base
from .models import (
    User,
    Plan,
    Subscription,
    PaymentTransaction,
    TransactionStatus,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "Base",
    "User",
    "Plan",
    "Subscription",
    "PaymentTransaction",
    "TransactionStatus",
]
