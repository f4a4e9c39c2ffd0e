"""
Subscription Activator - grants a paid plan to a user
"""
from datetime import datetime, timedelta
from typing import Optional
import logging

from sqlalchemy.orm import Session

from ..db.models.subscription import Subscription
from ..db.models.payment import PaymentTransaction
from .plan_catalog import PlanTerms

logger = logging.getLogger(__name__)


class SubscriptionActivator:
    """
    Applies a completed payment to the user's subscription

    A still-valid subscription is extended and its credits topped up; an
    expired one is deactivated and replaced. Does not commit.
    """

    def __init__(self, db: Session):
        self.db = db

    def activate(self, user_id: int, plan_terms: PlanTerms, transaction: PaymentTransaction) -> Subscription:
        """
        Activate or extend the user's subscription for a completed payment

        Args:
            user_id: Paying user
            plan_terms: Resolved terms (live plan or snapshot)
            transaction: Funding ledger row

        Returns:
            The active Subscription
        """
        now = datetime.utcnow()
        reference = transaction.gateway_reference

        current = (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.is_active.is_(True))
            .with_for_update()
            .first()
        )

        if current is not None and reference in self._funding_references(current):
            logger.warning(
                "Payment already applied to subscription, skipping",
                extra={"reference": reference, "subscription_id": current.id},
            )
            return current

        if current is not None and current.is_valid_at(now):
            subscription = self._extend(current, plan_terms, now)
            logger.info(
                "Extended subscription",
                extra={"subscription_id": subscription.id, "user_id": user_id, "reference": reference},
            )
        else:
            if current is not None:
                current.is_active = False
                # Release the one-active-per-user slot before inserting
                self.db.flush()
            subscription = self._create(user_id, plan_terms, now)
            logger.info(
                "Created subscription",
                extra={"user_id": user_id, "plan_id": plan_terms.plan_id, "reference": reference},
            )

        self._record_funding(subscription, transaction, now)
        self.db.flush()
        return subscription

    def _extend(self, subscription: Subscription, terms: PlanTerms, now: datetime) -> Subscription:
        base = max(subscription.end_date, now)
        subscription.end_date = base + timedelta(days=terms.duration_days)
        subscription.text_sessions_remaining += terms.text_sessions
        subscription.voice_calls_remaining += terms.voice_calls
        subscription.video_calls_remaining += terms.video_calls
        subscription.total_text_sessions += terms.text_sessions
        subscription.total_voice_calls += terms.voice_calls
        subscription.total_video_calls += terms.video_calls
        self._apply_terms(subscription, terms)
        subscription.activated_at = now
        return subscription

    def _create(self, user_id: int, terms: PlanTerms, now: datetime) -> Subscription:
        subscription = Subscription(
            user_id=user_id,
            is_active=True,
            start_date=now,
            end_date=now + timedelta(days=terms.duration_days),
            activated_at=now,
            text_sessions_remaining=terms.text_sessions,
            voice_calls_remaining=terms.voice_calls,
            video_calls_remaining=terms.video_calls,
            total_text_sessions=terms.text_sessions,
            total_voice_calls=terms.voice_calls,
            total_video_calls=terms.video_calls,
        )
        self._apply_terms(subscription, terms)
        self.db.add(subscription)
        return subscription

    @staticmethod
    def _apply_terms(subscription: Subscription, terms: PlanTerms):
        subscription.plan_id = terms.plan_id
        subscription.plan_name = terms.name
        subscription.plan_price = terms.price
        subscription.plan_currency = terms.currency
        subscription.plan_duration_days = terms.duration_days

    @staticmethod
    def _funding_references(subscription: Subscription) -> list:
        return list((subscription.payment_metadata or {}).get("funding_references") or [])

    def _record_funding(self, subscription: Subscription, transaction: PaymentTransaction, now: datetime):
        references = self._funding_references(subscription)
        references.append(transaction.gateway_reference)
        subscription.payment_transaction_reference = transaction.gateway_reference
        subscription.payment_gateway = transaction.gateway
        subscription.payment_metadata = {
            "last_payment": {
                "reference": transaction.gateway_reference,
                "transaction_id": transaction.gateway_transaction_id,
                "amount": str(transaction.amount) if transaction.amount is not None else None,
                "currency": transaction.currency,
                "payment_method": transaction.payment_method,
                "payment_channel": transaction.payment_channel,
                "applied_at": now.isoformat(),
            },
            "funding_references": references,
        }


class SubscriptionStatus:
    """Read side used by the session-credit consumer"""

    def __init__(self, db: Session):
        self.db = db

    def current(self, user_id: int) -> Optional[Subscription]:
        """The user's active subscription, or None"""
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.is_active.is_(True))
            .first()
        )
