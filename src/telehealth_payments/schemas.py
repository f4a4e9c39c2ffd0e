"""
Pydantic schemas for payment notifications and API responses
Gateway payloads are validated here, at the boundary, before the engine sees them
"""
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class NotificationMeta(BaseModel):
    """Merchant metadata echoed back by the gateway"""
    user_id: int = Field(..., description="Paying user")
    plan_id: Optional[int] = Field(None, description="Plan being purchased")


class NotificationPayload(BaseModel):
    """
    Gateway notification in the shape the reconciliation engine consumes

    `raw` keeps the original body for the ledger's audit log.
    """
    reference: str = Field(..., min_length=1, max_length=100, description="Merchant transaction reference (tx_ref)")
    transaction_id: Optional[str] = Field(None, description="Gateway-side charge id")
    amount: Optional[Decimal] = Field(None, description="Amount received after gateway fees")
    currency: Optional[str] = Field(None, description="ISO 4217 currency code")
    status: Optional[str] = Field(None, description="Raw gateway status token")
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    paid_at: Optional[datetime] = None
    event_type: Optional[str] = None
    meta: NotificationMeta
    raw: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('reference')
    @classmethod
    def strip_reference(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("reference must not be blank")
        return v

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v):
        """Currency codes are compared upper-case"""
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 3:
            raise ValueError(f"currency must be a 3-letter code (got {v!r})")
        return v

    @field_validator('meta', mode='before')
    @classmethod
    def decode_meta(cls, v):
        """PayChangu sends meta either as an object or as a JSON-encoded string"""
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except ValueError:
                raise ValueError("meta is not valid JSON")
        return v

    @field_validator('paid_at')
    @classmethod
    def to_naive_utc(cls, v):
        # Stored timestamps are naive UTC
        if v is not None and v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class SimulatedWebhookRequest(BaseModel):
    """Parameters for the unsigned test webhook"""
    tx_ref: Optional[str] = Field(None, description="Reference to use; generated when omitted")
    user_id: int = Field(11, description="Paying user")
    plan_id: Optional[int] = None
    amount: Decimal = Field(Decimal("1000"), description="Amount received")
    currency: str = Field("MWK", min_length=3, max_length=3)
    status: str = Field("success", description="Raw gateway status token")
    event_type: str = "api.charge.payment"


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway"""
    success: bool = True
    processed: bool
    outcome: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[str] = None
    subscription_id: Optional[int] = None
    message: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    success: bool = True
    reference: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    requires_review: bool = False
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    """Current subscription with remaining session credits"""
    id: int
    user_id: int
    plan_id: Optional[int] = None
    plan_name: Optional[str] = None
    is_active: bool
    start_date: datetime
    end_date: datetime
    text_sessions_remaining: int
    voice_calls_remaining: int
    video_calls_remaining: int
    payment_transaction_reference: Optional[str] = None

    model_config = {"from_attributes": True}


class ReviewItem(BaseModel):
    """Ledger row waiting for manual reconciliation"""
    reference: str
    user_id: Optional[int] = None
    plan_id: Optional[int] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: str
    anomaly_reason: Optional[str] = None
    delivery_count: int
    updated_at: Optional[datetime] = None


class ReviewQueueResponse(BaseModel):
    success: bool = True
    items: List[ReviewItem]
    count: int
