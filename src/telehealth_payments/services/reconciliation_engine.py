"""
Webhook Reconciliation Engine - turns gateway notifications into ledger and subscription state

Per reference the ledger row moves UNSEEN -> PENDING -> {COMPLETED, FAILED}.
Each call to process() is one unit of work: it either commits a consistent
ledger/subscription state or rolls everything back.
"""
from dataclasses import dataclass
from typing import Optional
import enum
import logging

from sqlalchemy.orm import Session

from ..config import ReconciliationSettings
from ..db.models.payment import PaymentTransaction, TransactionStatus
from ..db.models.subscription import Subscription
from ..payment_errors import PaymentError, UnknownUser, UnknownPlan, TransientInfrastructureFailure
from ..schemas import NotificationPayload
from .amount_reconciler import AmountReconciler
from .plan_catalog import PlanCatalog, UserDirectory
from .status_normalizer import normalize
from .subscription_activator import SubscriptionActivator
from .transaction_ledger import TransactionLedger, LedgerEntry

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    ACTIVATED = "activated"
    DUPLICATE = "duplicate"
    PENDING = "pending"
    FAILED = "failed"
    IGNORED_TERMINAL = "ignored_terminal"
    ANOMALY = "anomaly"


@dataclass
class ReconciliationResult:
    outcome: Outcome
    reference: str
    status: str
    transaction: Optional[PaymentTransaction] = None
    subscription: Optional[Subscription] = None
    reason: Optional[str] = None

    @property
    def processed(self) -> bool:
        """Whether this delivery changed anything beyond the audit log"""
        return self.outcome in (Outcome.ACTIVATED, Outcome.FAILED, Outcome.ANOMALY)

    def to_ack(self) -> dict:
        return {
            "success": True,
            "processed": self.processed,
            "outcome": self.outcome.value,
            "reference": self.reference,
            "status": self.status,
            "subscription_id": self.subscription.id if self.subscription is not None else None,
            "message": self.reason,
        }


class WebhookReconciliationEngine:
    """Processes one gateway notification end to end"""

    def __init__(
        self,
        db: Session,
        settings: ReconciliationSettings,
        ledger: Optional[TransactionLedger] = None,
        catalog: Optional[PlanCatalog] = None,
        users: Optional[UserDirectory] = None,
        activator: Optional[SubscriptionActivator] = None,
    ):
        self.db = db
        self.settings = settings
        self.ledger = ledger or TransactionLedger(db)
        self.catalog = catalog or PlanCatalog(db)
        self.users = users or UserDirectory(db)
        self.activator = activator or SubscriptionActivator(db)
        self.reconciler = AmountReconciler(settings.fee_tolerance_percent)

    def process(self, notification: NotificationPayload) -> ReconciliationResult:
        """
        Process a notification

        Returns:
            ReconciliationResult describing what happened

        Raises:
            UnknownUser: user in the notification does not exist (audit row kept)
            UnknownPlan: no plan terms could be resolved (row marked failed)
            TransientInfrastructureFailure: anything unexpected; nothing is persisted
        """
        reference = notification.reference
        try:
            return self._process(notification)
        except PaymentError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Reconciliation failed, rolled back: {e}",
                exc_info=True,
                extra={"reference": reference},
            )
            raise TransientInfrastructureFailure(
                "Payment could not be processed right now, retry later",
                {"reference": reference},
            ) from e

    def _process(self, notification: NotificationPayload) -> ReconciliationResult:
        reference = notification.reference
        status = normalize(notification.status)

        entry = self.ledger.upsert(
            reference,
            self._ledger_fields(notification),
            status,
            payload=notification.raw or notification.model_dump(mode="json", exclude={"raw"}),
        )
        transaction = entry.transaction

        user_id = transaction.user_id if transaction.user_id is not None else notification.meta.user_id
        if transaction.user_id is not None and transaction.user_id != notification.meta.user_id:
            logger.warning(
                "Notification user differs from the user recorded at initiation",
                extra={"reference": reference, "recorded": transaction.user_id, "notified": notification.meta.user_id},
            )

        # Finalized rows are an audit record; a redelivery only counts the delivery
        is_open = transaction.status == TransactionStatus.PENDING.value
        if (entry.completes or is_open) and not self.users.exists(user_id):
            if entry.completes:
                self.ledger.mark_failed(transaction, "unknown_user")
            else:
                transaction.failure_reason = "unknown_user"
            self.db.commit()
            raise UnknownUser(user_id)

        if not entry.completes:
            self.db.commit()
            outcome = self._outcome_without_completion(entry, status)
            logger.info(
                "Notification recorded",
                extra={"reference": reference, "outcome": outcome.value, "deliveries": transaction.delivery_count},
            )
            return ReconciliationResult(outcome, reference, transaction.status, transaction)

        terms = self.catalog.resolve_terms(notification.meta.plan_id, transaction, self.reconciler)
        if terms is None:
            plan_id = transaction.plan_id or notification.meta.plan_id
            self.ledger.mark_failed(transaction, "unknown_plan")
            self.db.commit()
            raise UnknownPlan(plan_id, reference)

        received = notification.amount if notification.amount is not None else transaction.amount
        received_currency = notification.currency or transaction.currency

        if not self.settings.supports_currency(received_currency):
            reason = f"unsupported_currency: {received_currency}"
            return self._flag(transaction, reason)

        decision = self.reconciler.reconcile(received, received_currency, terms.price, terms.currency)
        if not decision.accepted:
            reason = f"{decision.describe(received, terms.price)} {terms.currency}"
            return self._flag(transaction, reason)

        self.ledger.mark_completed(transaction, notification.paid_at, amount=received, currency=received_currency)
        subscription = self.activator.activate(user_id, terms, transaction)
        self.db.commit()

        logger.info(
            "Payment completed and plan activated",
            extra={"reference": reference, "user_id": user_id, "plan_id": terms.plan_id, "subscription_id": subscription.id},
        )
        return ReconciliationResult(Outcome.ACTIVATED, reference, transaction.status, transaction, subscription)

    def _flag(self, transaction: PaymentTransaction, reason: str) -> ReconciliationResult:
        # Row stays pending; a person decides what the payment buys
        self.ledger.flag_anomaly(transaction, reason[:200])
        self.db.commit()
        return ReconciliationResult(
            Outcome.ANOMALY,
            transaction.gateway_reference,
            transaction.status,
            transaction,
            reason=reason,
        )

    @staticmethod
    def _ledger_fields(notification: NotificationPayload) -> dict:
        return {
            "gateway_transaction_id": notification.transaction_id,
            "amount": notification.amount,
            "currency": notification.currency,
            "payment_method": notification.payment_method,
            "payment_channel": notification.payment_channel,
            "user_id": notification.meta.user_id,
            "plan_id": notification.meta.plan_id,
            "paid_at": notification.paid_at,
        }

    @staticmethod
    def _outcome_without_completion(entry: LedgerEntry, incoming: TransactionStatus) -> Outcome:
        previous = entry.previous_status
        if previous is None or previous == TransactionStatus.PENDING:
            if incoming == TransactionStatus.FAILED:
                return Outcome.FAILED
            return Outcome.PENDING
        if previous == incoming:
            return Outcome.DUPLICATE
        return Outcome.IGNORED_TERMINAL
