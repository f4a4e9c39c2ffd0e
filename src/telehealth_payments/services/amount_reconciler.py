"""
Amount Reconciler - decides whether a received amount pays for a catalog price

Gateways deduct their fee before notifying, so the received amount may be
below the list price by up to the configured tolerance.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, InvalidOperation
from typing import Optional, Union

from ..payment_errors import AmountAnomaly

MINOR_UNIT = Decimal("0.01")

CURRENCY_MISMATCH = "currency_mismatch"
BELOW_TOLERANCE = "below_tolerance"
ABOVE_PRICE = "above_price"
INVALID_AMOUNT = "invalid_amount"


@dataclass(frozen=True)
class ReconciliationDecision:
    accepted: bool
    reason: Optional[str] = None
    lower_bound: Optional[Decimal] = None

    def describe(self, received, price) -> str:
        if self.accepted:
            return "accepted"
        return f"{self.reason}: received {received}, price {price}, lower bound {self.lower_bound}"


def _to_decimal(value: Union[Decimal, int, float, str, None]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        # str() first so floats keep their printed value
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class AmountReconciler:
    """
    Accepts `received` iff the currencies match and

        lower_bound <= received <= price

    with lower_bound = price * (100 - tolerance) / 100, rounded up to the
    minor unit. Overpayment is rejected so it gets a human look.
    """

    def __init__(self, fee_tolerance_percent: Decimal):
        tolerance = Decimal(str(fee_tolerance_percent))
        if tolerance < 0 or tolerance >= 100:
            raise ValueError(f"fee tolerance must be in [0, 100), got {tolerance}")
        self.fee_tolerance_percent = tolerance

    def lower_bound(self, catalog_price: Decimal) -> Decimal:
        price = Decimal(str(catalog_price))
        bound = price * (Decimal(100) - self.fee_tolerance_percent) / Decimal(100)
        return bound.quantize(MINOR_UNIT, rounding=ROUND_CEILING)

    def reconcile(
        self,
        received,
        received_currency: Optional[str],
        catalog_price,
        catalog_currency: Optional[str],
    ) -> ReconciliationDecision:
        amount = _to_decimal(received)
        price = _to_decimal(catalog_price)

        if amount is None or amount <= 0 or price is None or price <= 0:
            return ReconciliationDecision(False, INVALID_AMOUNT)

        bound = self.lower_bound(price)

        if (received_currency or "").strip().upper() != (catalog_currency or "").strip().upper():
            return ReconciliationDecision(False, CURRENCY_MISMATCH, bound)
        if amount < bound:
            return ReconciliationDecision(False, BELOW_TOLERANCE, bound)
        if amount > price:
            return ReconciliationDecision(False, ABOVE_PRICE, bound)
        return ReconciliationDecision(True, None, bound)

    def require(self, received, received_currency, catalog_price, catalog_currency) -> ReconciliationDecision:
        """Strict variant: raise AmountAnomaly instead of returning a rejection"""
        decision = self.reconcile(received, received_currency, catalog_price, catalog_currency)
        if not decision.accepted:
            raise AmountAnomaly(decision.reason, received=received, expected=catalog_price, lower_bound=decision.lower_bound)
        return decision
