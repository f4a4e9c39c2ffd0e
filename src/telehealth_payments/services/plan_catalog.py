"""
Plan Catalog and User Directory - read-only lookups used during reconciliation
"""
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any
import logging

from sqlalchemy.orm import Session

from ..db.models.plan import Plan
from ..db.models.user import User
from ..db.models.payment import PaymentTransaction
from .amount_reconciler import AmountReconciler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanTerms:
    """
    What a payment buys: price, duration and credit grants

    plan_id is None when the terms come from a snapshot of a plan that has
    since been deleted.
    """
    plan_id: Optional[int]
    name: str
    price: Decimal
    currency: str
    duration_days: int
    text_sessions: int = 0
    voice_calls: int = 0
    video_calls: int = 0

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanTerms":
        return cls(
            plan_id=plan.id,
            name=plan.name,
            price=Decimal(str(plan.price)),
            currency=(plan.currency or "").upper(),
            duration_days=plan.duration_days,
            text_sessions=plan.text_sessions or 0,
            voice_calls=plan.voice_calls or 0,
            video_calls=plan.video_calls or 0,
        )

    @classmethod
    def from_snapshot(cls, snapshot: Optional[Dict[str, Any]], plan_id: Optional[int] = None) -> Optional["PlanTerms"]:
        """Rebuild terms from a stored snapshot; None if the snapshot is unusable"""
        if not snapshot:
            return None
        try:
            return cls(
                plan_id=plan_id,
                name=snapshot["name"],
                price=Decimal(str(snapshot["price"])),
                currency=str(snapshot["currency"]).upper(),
                duration_days=int(snapshot["duration_days"]),
                text_sessions=int(snapshot.get("text_sessions") or 0),
                voice_calls=int(snapshot.get("voice_calls") or 0),
                video_calls=int(snapshot.get("video_calls") or 0),
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning(f"Ignoring unusable plan snapshot: {e}")
            return None

    def as_snapshot(self) -> Dict[str, Any]:
        """JSON-safe form stored on the ledger row at initiation"""
        snapshot = asdict(self)
        snapshot["price"] = str(self.price)
        return snapshot


class PlanCatalog:
    """Lookups against the plan catalog"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, plan_id: Optional[int]) -> Optional[Plan]:
        if plan_id is None:
            return None
        return self.db.query(Plan).filter(Plan.id == plan_id).first()

    def get_active(self, plan_id: Optional[int]) -> Optional[Plan]:
        plan = self.get(plan_id)
        return plan if plan is not None and plan.is_active else None

    def resolve_terms(
        self,
        plan_id: Optional[int],
        transaction: Optional[PaymentTransaction] = None,
        reconciler: Optional[AmountReconciler] = None,
    ) -> Optional[PlanTerms]:
        """
        Resolve what the payment buys

        The plan recorded on the ledger row wins over `plan_id` from the
        notification, as the recorded user does. Order: the live catalog
        plan, then the snapshot captured at initiation (plan deleted since),
        then, when nothing names a plan at all, the cheapest active plan the
        received amount pays for.
        """
        recorded = transaction.plan_id if transaction is not None else None
        if recorded is not None:
            if plan_id is not None and plan_id != recorded:
                logger.warning(
                    "Notification plan differs from the plan recorded at initiation",
                    extra={"reference": transaction.gateway_reference, "recorded": recorded, "notified": plan_id},
                )
            plan_id = recorded

        plan = self.get(plan_id)
        if plan is not None:
            return PlanTerms.from_plan(plan)

        snapshot = transaction.plan_snapshot if transaction is not None else None
        if snapshot:
            terms = PlanTerms.from_snapshot(snapshot)
            if terms is not None:
                logger.info(
                    "Plan no longer in catalog, using snapshot",
                    extra={"plan_id": plan_id, "reference": transaction.gateway_reference},
                )
                return terms

        if plan_id is None and transaction is not None and reconciler is not None:
            fallback = self.find_by_received_amount(transaction.amount, transaction.currency, reconciler)
            if fallback is not None:
                logger.info(
                    "Plan resolved from received amount",
                    extra={"plan_id": fallback.id, "reference": transaction.gateway_reference},
                )
                return PlanTerms.from_plan(fallback)

        return None

    def find_by_received_amount(self, amount, currency: Optional[str], reconciler: AmountReconciler) -> Optional[Plan]:
        """Cheapest active plan in `currency` whose tolerance band accepts `amount`"""
        if amount is None or not currency:
            return None
        candidates = (
            self.db.query(Plan)
            .filter(Plan.is_active.is_(True), Plan.currency == currency.upper())
            .order_by(Plan.price.asc(), Plan.id.asc())
            .all()
        )
        for plan in candidates:
            if reconciler.reconcile(amount, currency, plan.price, plan.currency).accepted:
                return plan
        return None


class UserDirectory:
    """Existence checks against the platform's user table"""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, user_id: Optional[int]) -> bool:
        if user_id is None:
            return False
        return self.db.query(User.id).filter(User.id == user_id).first() is not None
