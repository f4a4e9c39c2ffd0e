"""
Pytest configuration and fixtures
"""
import hashlib
import hmac
import json
import os
import sys
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["PAYCHANGU_SECRET_KEY"] = "sec-test-paychangu-api-key"
os.environ["PAYCHANGU_WEBHOOK_SECRET"] = "whsec-test-paychangu-webhook"
os.environ["PAYMENT_FEE_TOLERANCE_PERCENT"] = "3"
os.environ["PAYMENT_SUPPORTED_CURRENCIES"] = "MWK,USD"
os.environ["ENABLE_TEST_WEBHOOK"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests

# Import after setting env vars
from telehealth_payments.app import create_app  # noqa: E402
from telehealth_payments.config import config, ReconciliationSettings  # noqa: E402
from telehealth_payments.db import Base, SessionLocal, engine, get_db, User, Plan  # noqa: E402

API_SECRET = os.environ["PAYCHANGU_SECRET_KEY"]
WEBHOOK_SECRET = os.environ["PAYCHANGU_WEBHOOK_SECRET"]

app = create_app()


def _sign(body: bytes, secret: str = API_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _paychangu_payload(
    reference="REF-1",
    amount="97",
    currency="MWK",
    status="success",
    user_id=11,
    plan_id=5,
    event_type="api.charge.payment",
    meta_as_string=True,
):
    meta = {"user_id": user_id, "plan_id": plan_id}
    return {
        "event_type": event_type,
        "tx_ref": reference,
        "charge_id": f"ch_{reference}",
        "reference": f"gw_{reference}",
        "amount": amount,
        "currency": currency,
        "status": status,
        "mode": "test",
        "authorization": {
            "channel": "Mobile Money",
            "mobile_money": {"operator": "Airtel Money", "mobile_number": "+265123xxxx89"},
            "completed_at": "2026-10-19T08:30:00.000000Z",
        },
        "meta": json.dumps(meta) if meta_as_string else meta,
    }


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema and session for each test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    def override_get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    yield session

    session.rollback()
    session.close()
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """Create test client"""
    return TestClient(app)


@pytest.fixture
def settings():
    return ReconciliationSettings(
        fee_tolerance_percent=Decimal("3"),
        supported_currencies=frozenset({"MWK", "USD"}),
        gateway_signing_key=WEBHOOK_SECRET,
        gateway_api_secret=API_SECRET,
    )


@pytest.fixture
def test_user(db_session):
    """User 11, the default paying user"""
    user = User(id=11, email="patient@example.com", display_name="Test Patient")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def test_plan(db_session):
    """Plan 5: 100 MWK for 30 days"""
    plan = Plan(
        id=5,
        name="Standard",
        price=Decimal("100.00"),
        currency="MWK",
        duration_days=30,
        text_sessions=10,
        voice_calls=3,
        video_calls=2,
        is_active=True,
    )
    db_session.add(plan)
    db_session.commit()
    return plan


@pytest.fixture
def premium_plan(db_session):
    plan = Plan(
        id=6,
        name="Premium",
        price=Decimal("250.00"),
        currency="MWK",
        duration_days=30,
        text_sessions=30,
        voice_calls=10,
        video_calls=5,
        is_active=True,
    )
    db_session.add(plan)
    db_session.commit()
    return plan


@pytest.fixture
def sign():
    """Signature PayChangu would send for a raw body"""
    return _sign


@pytest.fixture
def make_payload():
    """Webhook body in PayChangu's format"""
    return _paychangu_payload
