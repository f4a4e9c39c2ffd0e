"""
Tests for subscription activation and extension
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import text

from telehealth_payments.db.models.payment import PaymentTransaction
from telehealth_payments.db.models.plan import Plan
from telehealth_payments.db.models.subscription import Subscription
from telehealth_payments.services.plan_catalog import PlanTerms
from telehealth_payments.services.subscription_activator import SubscriptionActivator, SubscriptionStatus


def _transaction(db_session, reference, amount="97.00"):
    tx = PaymentTransaction(
        gateway_reference=reference,
        status="completed",
        amount=Decimal(amount),
        currency="MWK",
        user_id=11,
        plan_id=5,
        delivery_count=1,
    )
    db_session.add(tx)
    db_session.flush()
    return tx


class TestSubscriptionActivator:
    """Test plan activation"""

    @pytest.fixture
    def activator(self, db_session):
        return SubscriptionActivator(db_session)

    @pytest.fixture
    def terms(self, test_plan):
        return PlanTerms.from_plan(test_plan)

    def test_first_payment_creates_subscription(self, activator, db_session, test_user, terms):
        tx = _transaction(db_session, "REF-1")
        subscription = activator.activate(11, terms, tx)
        db_session.commit()

        assert subscription.is_active
        assert subscription.plan_id == 5
        assert subscription.plan_name == "Standard"
        assert subscription.text_sessions_remaining == 10
        assert subscription.voice_calls_remaining == 3
        assert subscription.video_calls_remaining == 2
        assert subscription.total_text_sessions == 10
        assert (subscription.end_date - subscription.start_date).days == 30
        assert subscription.payment_transaction_reference == "REF-1"
        assert subscription.payment_metadata["funding_references"] == ["REF-1"]
        assert subscription.payment_metadata["last_payment"]["amount"] == "97.00"

    def test_second_payment_extends_and_adds_credits(self, activator, db_session, test_user, terms):
        first = activator.activate(11, terms, _transaction(db_session, "REF-1"))
        db_session.commit()
        original_end = first.end_date

        # Spend some credits
        first.text_sessions_remaining = 4
        db_session.commit()

        second = activator.activate(11, terms, _transaction(db_session, "REF-2"))
        db_session.commit()

        assert second.id == first.id
        assert second.end_date == original_end + timedelta(days=30)
        assert second.text_sessions_remaining == 14
        assert second.total_text_sessions == 20
        assert second.payment_metadata["funding_references"] == ["REF-1", "REF-2"]
        assert db_session.query(Subscription).count() == 1

    def test_same_reference_never_applied_twice(self, activator, db_session, test_user, terms):
        tx = _transaction(db_session, "REF-1")
        activator.activate(11, terms, tx)
        db_session.commit()

        again = activator.activate(11, terms, tx)
        db_session.commit()

        assert again.text_sessions_remaining == 10
        assert again.payment_metadata["funding_references"] == ["REF-1"]

    def test_expired_subscription_is_replaced(self, activator, db_session, test_user, terms):
        past = datetime.utcnow() - timedelta(days=60)
        expired = Subscription(
            user_id=11,
            plan_id=5,
            is_active=True,
            start_date=past,
            end_date=past + timedelta(days=30),
            text_sessions_remaining=7,
        )
        db_session.add(expired)
        db_session.commit()

        fresh = activator.activate(11, terms, _transaction(db_session, "REF-3"))
        db_session.commit()

        assert fresh.id != expired.id
        assert fresh.text_sessions_remaining == 10
        db_session.refresh(expired)
        assert expired.is_active is False
        assert db_session.query(Subscription).filter(Subscription.is_active.is_(True)).count() == 1

    def test_upgrade_while_active_switches_plan_and_keeps_credits(
        self, activator, db_session, test_user, terms, premium_plan
    ):
        activator.activate(11, terms, _transaction(db_session, "REF-1"))
        db_session.commit()

        upgraded = activator.activate(11, PlanTerms.from_plan(premium_plan), _transaction(db_session, "REF-2", "245.00"))
        db_session.commit()

        assert upgraded.plan_id == 6
        assert upgraded.plan_name == "Premium"
        assert upgraded.text_sessions_remaining == 40

    def test_snapshot_terms_activate_without_plan(self, activator, db_session, test_user):
        terms = PlanTerms(
            plan_id=None,
            name="Retired plan",
            price=Decimal("100.00"),
            currency="MWK",
            duration_days=14,
            text_sessions=5,
        )
        subscription = activator.activate(11, terms, _transaction(db_session, "REF-4"))
        db_session.commit()

        assert subscription.plan_id is None
        assert subscription.plan_name == "Retired plan"
        assert subscription.text_sessions_remaining == 5

    def test_plan_deletion_keeps_subscription(self, activator, db_session, test_user, test_plan, terms):
        subscription = activator.activate(11, terms, _transaction(db_session, "REF-1"))
        db_session.commit()

        db_session.delete(db_session.get(Plan, 5))
        db_session.commit()

        db_session.refresh(subscription)
        assert subscription.plan_id is None
        assert subscription.plan_name == "Standard"
        assert subscription.is_active
        assert subscription.text_sessions_remaining == 10

    def test_plan_row_deleted_in_storage_keeps_subscription(self, activator, db_session, test_user, test_plan, terms):
        """ON DELETE SET NULL without the ORM relationship involved"""
        subscription = activator.activate(11, terms, _transaction(db_session, "REF-1"))
        db_session.commit()
        subscription_id = subscription.id

        db_session.execute(text("DELETE FROM plans WHERE id = 5"))
        db_session.commit()
        db_session.expire_all()

        row = db_session.execute(
            text("SELECT plan_id, plan_name, is_active FROM subscriptions WHERE id = :id"), {"id": subscription_id}
        ).one()
        assert row.plan_id is None
        assert row.plan_name == "Standard"
        assert row.is_active
        assert db_session.get(Subscription, subscription_id).text_sessions_remaining == 10


class TestSubscriptionStatus:
    """Test the read side"""

    def test_current_returns_active_subscription(self, db_session, test_user, test_plan):
        activator = SubscriptionActivator(db_session)
        activator.activate(11, PlanTerms.from_plan(test_plan), _transaction(db_session, "REF-1"))
        db_session.commit()

        current = SubscriptionStatus(db_session).current(11)
        assert current is not None
        assert current.session_credits() == {"text": 10, "voice": 3, "video": 2}

    def test_current_none_without_subscription(self, db_session, test_user):
        assert SubscriptionStatus(db_session).current(11) is None
