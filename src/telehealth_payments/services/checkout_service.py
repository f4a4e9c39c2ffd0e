"""
Checkout Service - payment initiation

Writes the pending ledger row (with a snapshot of the plan being bought)
before handing the customer to the gateway's hosted checkout.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from ..db.models.payment import PaymentTransaction
from ..db.models.user import User
from ..payment_errors import UnknownUser, UnknownPlan, GatewayError
from .payment_gateway import PaymentGateway
from .plan_catalog import PlanCatalog, PlanTerms
from .transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    reference: str
    checkout_url: str
    transaction: PaymentTransaction


def generate_reference(user_id: int, now: Optional[datetime] = None) -> str:
    """TXN_<microsecond timestamp>_<user id>"""
    now = now or datetime.utcnow()
    micros = int(now.timestamp() * 1_000_000)
    return f"TXN_{micros}_{user_id}"


class CheckoutService:
    """Starts gateway checkouts for plan purchases"""

    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.ledger = TransactionLedger(db)
        self.catalog = PlanCatalog(db)

    def start_checkout(self, user_id: int, plan_id: int) -> CheckoutSession:
        """
        Create a pending transaction and a hosted checkout for it

        The pending row is committed before the gateway is called, so a
        gateway failure still leaves an auditable row behind.

        Raises:
            UnknownUser, UnknownPlan: invalid purchase
            GatewayError: checkout API failed
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise UnknownUser(user_id)

        plan = self.catalog.get_active(plan_id)
        if plan is None:
            raise UnknownPlan(plan_id)

        terms = PlanTerms.from_plan(plan)
        reference = generate_reference(user_id)

        transaction = self.ledger.create_pending(
            reference,
            user_id=user_id,
            plan_id=plan.id,
            currency=terms.currency,
            extra_metadata={
                "plan_snapshot": terms.as_snapshot(),
                "requested_amount": str(terms.price),
                "user_email": user.email,
            },
        )
        self.db.commit()
        logger.info("Pending transaction created", extra={"reference": reference, "user_id": user_id, "plan_id": plan.id})

        first_name, _, last_name = (user.display_name or "User").partition(" ")
        try:
            result = self.gateway.initiate_checkout({
                "amount": terms.price,
                "currency": terms.currency,
                "email": user.email,
                "first_name": first_name,
                "last_name": last_name or "User",
                "tx_ref": reference,
                "meta": {"user_id": user_id, "plan_id": plan.id},
            })
        except GatewayError as e:
            transaction.extra_metadata = {**(transaction.extra_metadata or {}), "checkout_error": e.message}
            self.db.commit()
            raise

        transaction.extra_metadata = {**(transaction.extra_metadata or {}), "checkout_url": result["checkout_url"]}
        self.db.commit()
        return CheckoutSession(reference=reference, checkout_url=result["checkout_url"], transaction=transaction)
