"""
Status Normalizer - maps the gateway status vocabulary onto TransactionStatus
"""
import logging
from typing import Optional

from ..db.models.payment import TransactionStatus

logger = logging.getLogger(__name__)


COMPLETED_TOKENS = frozenset({"success", "successful", "confirmed", "completed", "paid"})
FAILED_TOKENS = frozenset({"failed", "failure", "declined", "cancelled", "canceled", "expired", "reversed"})
PENDING_TOKENS = frozenset({"pending", "processing", "initiated"})


def normalize(raw_status: Optional[str]) -> TransactionStatus:
    """
    Map a raw gateway status token to the internal status.

    Unrecognized tokens map to PENDING and are logged; they are never
    rejected, so a vocabulary change at the gateway cannot finalize a row.
    """
    token = (raw_status or "").strip().lower()

    if token in COMPLETED_TOKENS:
        return TransactionStatus.COMPLETED
    if token in FAILED_TOKENS:
        return TransactionStatus.FAILED
    if token not in PENDING_TOKENS:
        logger.warning(
            "Unrecognized gateway status token, treating as pending",
            extra={"raw_status": raw_status},
        )
    return TransactionStatus.PENDING
