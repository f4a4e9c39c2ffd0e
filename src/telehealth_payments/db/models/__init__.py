"""
Database models for the telehealth payments service
"""
from .user import User
from .plan import Plan
from .subscription import Subscription
from .payment import PaymentTransaction, TransactionStatus

__all__ = [
    "User",
    "Plan",
    "Subscription",
    "PaymentTransaction",
    "TransactionStatus",
]
