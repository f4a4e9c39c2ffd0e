"""
Payment Gateway - PayChangu boundary

Signature verification, webhook payload normalization and the hosted
checkout API. Nothing past this module sees the gateway's wire format.
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Mapping
import hashlib
import hmac
import logging

import httpx
from pydantic import ValidationError

from ..payment_errors import MalformedNotification, GatewayError
from ..schemas import NotificationPayload

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("Signature", "X-Signature", "Paychangu-Signature")
SUPPORTED_EVENT_TYPES = frozenset({"api.charge.payment", "checkout.payment"})

# Placeholder shipped in sample env files; never a real key
_PLACEHOLDER_SECRET = "whsec_your_webhook_secret_here"


class PaymentGateway(ABC):
    """Abstract base class for payment gateways"""

    name: str = ""

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Verify webhook signature"""

    @abstractmethod
    def parse_webhook_event(self, payload: Dict[str, Any]) -> NotificationPayload:
        """Parse webhook body into a NotificationPayload"""

    @abstractmethod
    def initiate_checkout(self, checkout: Dict[str, Any]) -> Dict[str, Any]:
        """Create a hosted checkout session"""


class PayChanguGateway(PaymentGateway):
    """PayChangu payment gateway"""

    name = "paychangu"

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        base_url: str = "https://api.paychangu.com",
        callback_url: Optional[str] = None,
        return_url: Optional[str] = None,
        timeout: float = 10,
    ):
        """
        Initialize PayChangu gateway

        Args:
            secret_key: API secret key (also used to sign webhooks)
            webhook_secret: Dedicated webhook secret, tried when the API key does not match
            base_url: API base URL
            callback_url: Where PayChangu sends the customer after payment
            return_url: Where PayChangu sends the customer on cancel
            timeout: HTTP timeout in seconds
        """
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.return_url = return_url
        self.timeout = timeout

    @staticmethod
    def extract_signature(headers: Mapping[str, str]) -> Optional[str]:
        """First signature header present (header lookup is case-insensitive)"""
        for header in SIGNATURE_HEADERS:
            value = headers.get(header)
            if value:
                return value.strip()
        return None

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """
        HMAC-SHA256 of the raw body, hex encoded

        The API secret is tried first, then the webhook secret.
        """
        if not signature:
            return False

        for secret in (self.secret_key, self.webhook_secret):
            if not secret or secret == _PLACEHOLDER_SECRET:
                continue
            computed = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
            if hmac.compare_digest(computed, signature.lower()):
                return True

        logger.warning(
            "Webhook signature mismatch",
            extra={
                "api_secret_present": bool(self.secret_key),
                "webhook_secret_present": bool(self.webhook_secret),
            },
        )
        return False

    @staticmethod
    def event_type(payload: Dict[str, Any]) -> str:
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        return str(payload.get("event_type") or data.get("event_type") or "").strip().lower()

    def is_supported_event(self, payload: Dict[str, Any]) -> bool:
        return self.event_type(payload) in SUPPORTED_EVENT_TYPES

    def parse_webhook_event(self, payload: Dict[str, Any]) -> NotificationPayload:
        """
        Normalize a PayChangu webhook body

        Accepts the flat format and the one wrapped in a `data` envelope.

        Raises:
            MalformedNotification: if required fields are missing or invalid
        """
        if not isinstance(payload, dict):
            raise MalformedNotification("Webhook body must be a JSON object")

        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        authorization = data.get("authorization") or {}
        mobile_money = authorization.get("mobile_money") or {}

        reference = data.get("tx_ref") or data.get("reference") or data.get("charge_id")
        if reference is None:
            raise MalformedNotification("Webhook payload has no tx_ref, reference or charge_id")

        meta = data.get("meta", payload.get("meta"))
        if meta in (None, "", {}):
            raise MalformedNotification("Webhook payload is missing meta.user_id", {"reference": str(reference)})

        fields = {
            "reference": str(reference),
            "transaction_id": str(data["charge_id"]) if data.get("charge_id") is not None else None,
            "amount": data.get("amount"),
            "currency": data.get("currency"),
            "status": data.get("status"),
            "payment_method": authorization.get("channel"),
            "payment_channel": mobile_money.get("operator") or authorization.get("channel"),
            "paid_at": authorization.get("completed_at"),
            "event_type": self.event_type(payload) or None,
            "meta": meta,
            "raw": payload,
        }
        try:
            return NotificationPayload(**fields)
        except ValidationError as e:
            errors = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            raise MalformedNotification(
                "Webhook payload failed validation",
                {"reference": str(reference), "errors": errors},
            ) from e

    def _make_request(self, method: str, endpoint: str, data: Optional[Dict] = None) -> Dict[str, Any]:
        """Make HTTP request to PayChangu API"""
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        try:
            if method == "GET":
                response = httpx.get(url, headers=headers, timeout=self.timeout)
            elif method == "POST":
                response = httpx.post(url, headers=headers, json=data or {}, timeout=self.timeout)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"PayChangu API request failed: {e}")
            raise GatewayError(f"PayChangu API request failed: {e}") from e

    def initiate_checkout(self, checkout: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a hosted checkout for a pending transaction

        Args:
            checkout: amount, currency, email, first_name, last_name, tx_ref, meta

        Returns:
            Dict with tx_ref and checkout_url
        """
        body = dict(checkout)
        body.setdefault("callback_url", self.callback_url)
        body.setdefault("return_url", self.return_url)
        body["amount"] = str(body["amount"])

        result = self._make_request("POST", "/payment", body)
        data = result.get("data") or {}
        checkout_url = data.get("checkout_url")
        if not checkout_url:
            logger.error("No checkout URL in PayChangu response", extra={"tx_ref": checkout.get("tx_ref")})
            raise GatewayError("PayChangu response did not include a checkout URL", {"tx_ref": checkout.get("tx_ref")})

        tx_ref = (data.get("data") or {}).get("tx_ref") or checkout.get("tx_ref")
        return {
            "tx_ref": tx_ref,
            "checkout_url": checkout_url,
            "provider": self.name,
            "status": result.get("status"),
        }


def get_payment_gateway(config, settings=None) -> PayChanguGateway:
    """
    Build the configured payment gateway

    Args:
        config: Config object with PayChangu URLs and timeout
        settings: ReconciliationSettings carrying the signing secrets; when
            omitted they are taken from config
    """
    if settings is None:
        settings = config.reconciliation_settings()
    return PayChanguGateway(
        secret_key=settings.gateway_api_secret,
        webhook_secret=settings.gateway_signing_key,
        base_url=config.PAYCHANGU_BASE_URL,
        callback_url=config.PAYCHANGU_CALLBACK_URL,
        return_url=config.PAYCHANGU_RETURN_URL,
        timeout=config.PAYCHANGU_TIMEOUT,
    )
