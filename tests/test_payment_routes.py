"""
Tests for payment API routes
"""
import json
import os
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from telehealth_payments.config import Config, ReconciliationSettings
from telehealth_payments.db.models.payment import PaymentTransaction
from telehealth_payments.db.models.subscription import Subscription
from telehealth_payments.payment_routes import get_reconciliation_settings
from telehealth_payments.services.subscription_activator import SubscriptionActivator


def _post_webhook(client, sign, payload, signature=None, header="Signature"):
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json", header: signature if signature is not None else sign(body)}
    return client.post("/api/payments/webhook", content=body, headers=headers)


class TestPaymentWebhook:
    """Test the signed PayChangu webhook"""

    def test_successful_payment(self, client, db_session, sign, make_payload, test_user, test_plan):
        response = _post_webhook(client, sign, make_payload())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processed"] is True
        assert data["outcome"] == "activated"
        assert data["reference"] == "REF-1"
        assert data["subscription_id"] is not None
        assert "X-Request-ID" in response.headers

    def test_redelivery_acknowledged_without_effect(self, client, db_session, sign, make_payload, test_user, test_plan):
        _post_webhook(client, sign, make_payload())
        response = _post_webhook(client, sign, make_payload())

        assert response.status_code == 200
        assert response.json()["outcome"] == "duplicate"
        assert response.json()["processed"] is False
        assert db_session.query(Subscription).one().text_sessions_remaining == 10

    def test_anomaly_acknowledged_and_queued(self, client, db_session, sign, make_payload, test_user, test_plan):
        response = _post_webhook(client, sign, make_payload(reference="REF-2", amount="10"))

        assert response.status_code == 200
        assert response.json()["outcome"] == "anomaly"
        assert db_session.query(Subscription).count() == 0

        review = client.get("/api/payments/review")
        assert review.status_code == 200
        items = review.json()["items"]
        assert [item["reference"] for item in items] == ["REF-2"]
        assert items[0]["status"] == "pending"

    def test_webhook_secret_signature_accepted(self, client, sign, make_payload, test_user, test_plan):
        payload = make_payload()
        body = json.dumps(payload).encode()
        webhook_secret = os.environ["PAYCHANGU_WEBHOOK_SECRET"]
        response = _post_webhook(client, sign, payload, signature=sign(body, webhook_secret), header="X-Signature")
        assert response.status_code == 200

    def test_signature_checked_with_injected_settings(self, client, db_session, sign, make_payload, test_user, test_plan):
        rotated = ReconciliationSettings(
            fee_tolerance_percent=Decimal("3"),
            supported_currencies=frozenset({"MWK"}),
            gateway_signing_key="whsec-rotated",
            gateway_api_secret="sec-rotated",
        )
        client.app.dependency_overrides[get_reconciliation_settings] = lambda: rotated
        payload = make_payload()
        body = json.dumps(payload).encode()

        stale = _post_webhook(client, sign, payload)
        assert stale.status_code == 401

        response = _post_webhook(client, sign, payload, signature=sign(body, "whsec-rotated"))
        assert response.status_code == 200
        assert response.json()["outcome"] == "activated"

    def test_invalid_signature(self, client, db_session, sign, make_payload):
        response = _post_webhook(client, sign, make_payload(), signature="deadbeef")

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_SIGNATURE"
        assert db_session.query(PaymentTransaction).count() == 0

    def test_missing_signature(self, client, db_session, make_payload):
        response = client.post("/api/payments/webhook", json=make_payload())
        assert response.status_code == 401

    def test_malformed_body(self, client, sign):
        body = b"not json"
        response = client.post("/api/payments/webhook", content=body, headers={"Signature": sign(body)})
        assert response.status_code == 422
        assert response.json()["code"] == "MALFORMED_NOTIFICATION"

    def test_missing_meta(self, client, sign, make_payload):
        payload = make_payload()
        del payload["meta"]
        response = _post_webhook(client, sign, payload)
        assert response.status_code == 422

    def test_unsupported_event_acknowledged(self, client, db_session, sign, make_payload):
        response = _post_webhook(client, sign, make_payload(event_type="api.payout"))

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert db_session.query(PaymentTransaction).count() == 0

    def test_unknown_user(self, client, db_session, sign, make_payload, test_plan):
        response = _post_webhook(client, sign, make_payload(reference="REF-U", user_id=404))

        assert response.status_code == 404
        assert response.json()["code"] == "UNKNOWN_USER"
        assert db_session.query(PaymentTransaction).filter_by(gateway_reference="REF-U").count() == 1

    def test_unknown_plan(self, client, sign, make_payload, test_user, test_plan):
        response = _post_webhook(client, sign, make_payload(reference="REF-P", plan_id=999))

        assert response.status_code == 422
        assert response.json()["code"] == "UNKNOWN_PLAN"

    def test_transient_failure_is_retryable(self, client, db_session, sign, make_payload, test_user, test_plan):
        with patch.object(
            SubscriptionActivator, "activate", side_effect=OperationalError("INSERT", {}, Exception("db gone"))
        ):
            response = _post_webhook(client, sign, make_payload(reference="REF-R"))

        assert response.status_code == 503
        assert response.json()["code"] == "SERVICE_UNAVAILABLE"
        assert response.headers["Retry-After"] == "30"
        assert db_session.query(PaymentTransaction).count() == 0

        retry = _post_webhook(client, sign, make_payload(reference="REF-R"))
        assert retry.status_code == 200
        assert retry.json()["outcome"] == "activated"


class TestTestWebhook:
    """Test the unsigned test webhook"""

    def test_defaults_match_gateway_format(self, client, db_session, test_user, test_plan):
        response = client.post(
            "/api/payments/test-webhook",
            json={"tx_ref": "TEST_REF", "amount": "100", "plan_id": 5},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "activated"
        tx = db_session.query(PaymentTransaction).filter_by(gateway_reference="TEST_REF").one()
        assert tx.user_id == 11
        assert tx.currency == "MWK"
        assert tx.payment_channel == "Airtel Money"

    def test_same_path_as_real_webhook(self, client, db_session, test_user, test_plan):
        """Duplicates and anomalies behave exactly as on the signed endpoint"""
        client.post("/api/payments/test-webhook", json={"tx_ref": "TEST_DUP", "amount": "97", "plan_id": 5})
        duplicate = client.post("/api/payments/test-webhook", json={"tx_ref": "TEST_DUP", "amount": "97", "plan_id": 5})
        anomaly = client.post("/api/payments/test-webhook", json={"tx_ref": "TEST_LOW", "amount": "10", "plan_id": 5})

        assert duplicate.json()["outcome"] == "duplicate"
        assert anomaly.json()["outcome"] == "anomaly"

    def test_disabled(self, client, db_session):
        with patch.object(Config, "ENABLE_TEST_WEBHOOK", False):
            response = client.post("/api/payments/test-webhook", json={})
        assert response.status_code == 404

    def test_never_enabled_in_prod(self, client, db_session):
        with patch.object(Config, "ENV", "prod"):
            response = client.post("/api/payments/test-webhook", json={})
        assert response.status_code == 404


class TestLookups:
    """Test status, review and subscription lookups"""

    def test_payment_status(self, client, sign, make_payload, test_user, test_plan):
        _post_webhook(client, sign, make_payload())

        response = client.get("/api/payments/status", params={"tx_ref": "REF-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["currency"] == "MWK"
        assert data["requires_review"] is False

    def test_payment_status_unknown_reference(self, client, db_session):
        response = client.get("/api/payments/status", params={"tx_ref": "NOPE"})
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_payment_status_requires_reference(self, client, db_session):
        response = client.get("/api/payments/status")
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_current_subscription(self, client, sign, make_payload, test_user, test_plan):
        _post_webhook(client, sign, make_payload())

        response = client.get("/api/subscriptions/11/current")

        assert response.status_code == 200
        subscription = response.json()["subscription"]
        assert subscription["plan_id"] == 5
        assert subscription["text_sessions_remaining"] == 10
        assert subscription["payment_transaction_reference"] == "REF-1"

    def test_current_subscription_missing(self, client, db_session, test_user):
        response = client.get("/api/subscriptions/11/current")
        assert response.status_code == 404

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
