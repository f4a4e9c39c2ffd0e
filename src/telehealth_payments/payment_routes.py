"""
Payment API routes - gateway webhooks, status lookups and the review queue
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request, Query, Body
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import json
import logging

from .config import config, ReconciliationSettings
from .db import get_db
from .payment_errors import InvalidSignature, MalformedNotification
from .schemas import (
    SimulatedWebhookRequest,
    WebhookAck,
    PaymentStatusResponse,
    SubscriptionResponse,
    ReviewItem,
    ReviewQueueResponse,
)
from .services.payment_gateway import PayChanguGateway, get_payment_gateway
from .services.reconciliation_engine import WebhookReconciliationEngine
from .services.subscription_activator import SubscriptionStatus
from .services.transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])
subscription_router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


def get_reconciliation_settings() -> ReconciliationSettings:
    return config.reconciliation_settings()


def get_gateway(settings: ReconciliationSettings = Depends(get_reconciliation_settings)) -> PayChanguGateway:
    return get_payment_gateway(config, settings)


def _process_payload(payload: dict, db: Session, gateway: PayChanguGateway, settings: ReconciliationSettings) -> dict:
    """Shared path for the real and the test webhook once the body is trusted"""
    if not isinstance(payload, dict):
        raise MalformedNotification("Webhook body must be a JSON object")

    if not gateway.is_supported_event(payload):
        logger.info("Unsupported webhook event type", extra={"event_type": gateway.event_type(payload) or "missing"})
        return WebhookAck(processed=False, message="Event type not supported").model_dump()

    notification = gateway.parse_webhook_event(payload)
    engine = WebhookReconciliationEngine(db, settings)
    result = engine.process(notification)
    return result.to_ack()


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PayChanguGateway = Depends(get_gateway),
    settings: ReconciliationSettings = Depends(get_reconciliation_settings),
):
    """
    PayChangu webhook endpoint with signature verification

    Deliveries are at-least-once and may arrive out of order; repeating a
    delivery is always safe.
    """
    body = await request.body()

    signature = gateway.extract_signature(request.headers)
    if not gateway.verify_webhook_signature(body, signature):
        raise InvalidSignature(
            "Invalid webhook signature" if signature else "Missing webhook signature header"
        )

    try:
        payload = json.loads(body.decode())
    except (UnicodeDecodeError, ValueError):
        raise MalformedNotification("Webhook body is not valid JSON")

    return _process_payload(payload, db, gateway, settings)


@router.post("/test-webhook", response_model=WebhookAck)
async def test_webhook(
    params: Optional[SimulatedWebhookRequest] = Body(None),
    db: Session = Depends(get_db),
    gateway: PayChanguGateway = Depends(get_gateway),
    settings: ReconciliationSettings = Depends(get_reconciliation_settings),
):
    """
    Unsigned webhook for integration testing

    Builds a PayChangu-format payment and runs it through the same path as
    the real webhook. Only available when ENABLE_TEST_WEBHOOK is set, and
    never in production.
    """
    if not config.test_webhook_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    params = params or SimulatedWebhookRequest()
    now = datetime.utcnow()
    stamp = int(now.timestamp())
    payload = {
        "event_type": params.event_type,
        "currency": params.currency,
        "amount": str(params.amount),
        "charge": "20",
        "mode": "test",
        "type": "Direct API Payment",
        "status": params.status,
        "charge_id": f"test_{stamp}",
        "reference": params.tx_ref or f"TEST_{stamp}",
        "tx_ref": params.tx_ref,
        "authorization": {
            "channel": "Mobile Money",
            "card_details": None,
            "bank_payment_details": None,
            "mobile_money": {"operator": "Airtel Money", "mobile_number": "+265123xxxx89"},
            "completed_at": now.isoformat() + "Z",
        },
        "created_at": now.isoformat() + "Z",
        "updated_at": now.isoformat() + "Z",
        "meta": json.dumps({"user_id": params.user_id, "plan_id": params.plan_id}),
    }
    logger.info("Test webhook payload built", extra={"reference": payload["reference"]})

    return _process_payload(payload, db, gateway, settings)


@router.get("/status", response_model=PaymentStatusResponse)
async def payment_status(
    tx_ref: str = Query(..., min_length=1, description="Transaction reference"),
    db: Session = Depends(get_db),
):
    """Ledger status for a reference (no gateway call)"""
    transaction = TransactionLedger(db).get(tx_ref)
    if transaction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Transaction {tx_ref} not found")

    return PaymentStatusResponse(
        reference=transaction.gateway_reference,
        status=transaction.status,
        amount=transaction.amount,
        currency=transaction.currency,
        requires_review=transaction.requires_review,
        paid_at=transaction.paid_at,
        completed_at=transaction.completed_at,
    )


@router.get("/review", response_model=ReviewQueueResponse)
async def review_queue(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Transactions flagged for manual reconciliation"""
    transactions = TransactionLedger(db).list_requiring_review(limit)
    items = [
        ReviewItem(
            reference=tx.gateway_reference,
            user_id=tx.user_id,
            plan_id=tx.plan_id,
            amount=tx.amount,
            currency=tx.currency,
            status=tx.status,
            anomaly_reason=tx.anomaly_reason,
            delivery_count=tx.delivery_count,
            updated_at=tx.updated_at,
        )
        for tx in transactions
    ]
    return ReviewQueueResponse(items=items, count=len(items))


@subscription_router.get("/{user_id}/current")
async def current_subscription(user_id: int, db: Session = Depends(get_db)):
    """Active subscription and remaining session credits for a user"""
    subscription = SubscriptionStatus(db).current(user_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No active subscription for user {user_id}")

    return {
        "success": True,
        "subscription": SubscriptionResponse.model_validate(subscription).model_dump(mode="json"),
    }
