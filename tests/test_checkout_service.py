"""
Tests for payment initiation
"""
from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from telehealth_payments.db.models.payment import PaymentTransaction
from telehealth_payments.payment_errors import UnknownUser, UnknownPlan, GatewayError
from telehealth_payments.services.checkout_service import CheckoutService, generate_reference
from telehealth_payments.services.reconciliation_engine import WebhookReconciliationEngine, Outcome
from telehealth_payments.schemas import NotificationPayload


class TestCheckoutService:
    """Test the pending placeholder and the checkout call"""

    @pytest.fixture
    def gateway(self):
        gateway = Mock()
        gateway.initiate_checkout.return_value = {
            "tx_ref": "ignored",
            "checkout_url": "https://checkout.paychangu.test/abc",
        }
        return gateway

    @pytest.fixture
    def service(self, db_session, gateway):
        return CheckoutService(db_session, gateway)

    def test_reference_format(self):
        now = datetime(2026, 10, 19, 8, 0, 0, 123456)
        reference = generate_reference(11, now)
        assert reference.startswith("TXN_")
        assert reference.endswith("_11")
        assert reference.split("_")[1].isdigit()

    def test_start_checkout_writes_pending_row(self, service, gateway, db_session, test_user, test_plan):
        session = service.start_checkout(11, 5)

        assert session.checkout_url == "https://checkout.paychangu.test/abc"
        tx = db_session.query(PaymentTransaction).filter_by(gateway_reference=session.reference).one()
        assert tx.status == "pending"
        assert tx.user_id == 11
        assert tx.plan_id == 5
        assert tx.amount is None
        assert tx.extra_metadata["requested_amount"] == "100.00"
        assert tx.extra_metadata["plan_snapshot"]["name"] == "Standard"
        assert tx.extra_metadata["checkout_url"] == session.checkout_url

        checkout = gateway.initiate_checkout.call_args[0][0]
        assert checkout["tx_ref"] == session.reference
        assert checkout["meta"] == {"user_id": 11, "plan_id": 5}
        assert checkout["amount"] == Decimal("100.00")
        assert checkout["first_name"] == "Test"
        assert checkout["last_name"] == "Patient"

    def test_unknown_user(self, service, db_session, test_plan):
        with pytest.raises(UnknownUser):
            service.start_checkout(404, 5)

    def test_inactive_plan(self, service, db_session, test_user, test_plan):
        test_plan.is_active = False
        db_session.commit()
        with pytest.raises(UnknownPlan):
            service.start_checkout(11, 5)

    def test_gateway_failure_keeps_pending_row(self, service, gateway, db_session, test_user, test_plan):
        gateway.initiate_checkout.side_effect = GatewayError("PayChangu API request failed")

        with pytest.raises(GatewayError):
            service.start_checkout(11, 5)

        tx = db_session.query(PaymentTransaction).one()
        assert tx.status == "pending"
        assert tx.extra_metadata["checkout_error"] == "PayChangu API request failed"

    def test_webhook_completes_initiated_payment(self, service, db_session, settings, test_user, test_plan):
        session = service.start_checkout(11, 5)

        notification = NotificationPayload(
            reference=session.reference,
            amount=Decimal("97.50"),
            currency="MWK",
            status="successful",
            meta={"user_id": 11, "plan_id": 5},
        )
        result = WebhookReconciliationEngine(db_session, settings).process(notification)

        assert result.outcome == Outcome.ACTIVATED
        tx = db_session.query(PaymentTransaction).filter_by(gateway_reference=session.reference).one()
        assert tx.amount == Decimal("97.50")
        assert tx.delivery_count == 1
