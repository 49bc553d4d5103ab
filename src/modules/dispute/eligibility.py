"""EligibilityGate — may a dispute be filed against this transaction right now?"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from src.config import settings
from src.modules.dispute.constants import QUALIFYING_STATUSES
from src.modules.dispute.domain import Clock, TransactionRef, utcnow
from src.modules.dispute.providers.base import TransactionSnapshot, TransactionStore
from src.modules.dispute.repository import DisputeRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EligibilityResult:
    can_file: bool
    reason: str | None = None
    snapshot: TransactionSnapshot | None = None

    @classmethod
    def denied(cls, reason: str, snapshot: TransactionSnapshot | None = None) -> EligibilityResult:
        return cls(can_file=False, reason=reason, snapshot=snapshot)


class EligibilityGate:
    """Read-only eligibility check.

    A transaction qualifies when it is in a qualifying status, entered that
    status no more than the filing window ago (boundary inclusive), and has
    no open dispute.
    """

    def __init__(
        self,
        transaction_store: TransactionStore,
        repository: DisputeRepository,
        clock: Clock = utcnow,
        filing_window: timedelta | None = None,
    ) -> None:
        self.transaction_store = transaction_store
        self.repository = repository
        self.clock = clock
        self.filing_window = filing_window or timedelta(days=settings.dispute_filing_window_days)

    async def check(self, transaction: TransactionRef, filed_by: str | None = None) -> EligibilityResult:
        snapshot = await self.transaction_store.get_status(transaction)

        if filed_by is not None and filed_by != snapshot.customer_id:
            return EligibilityResult.denied(
                "Only the customer on this transaction can file a dispute", snapshot
            )

        qualifying = QUALIFYING_STATUSES[transaction.kind]
        if snapshot.status not in qualifying:
            return EligibilityResult.denied(
                f"A {transaction.kind.value.replace('_', ' ')} in status '{snapshot.status}' "
                f"cannot be disputed (allowed: {', '.join(sorted(qualifying))})",
                snapshot,
            )

        if snapshot.counterparty_id is None:
            return EligibilityResult.denied(
                "No designer or shop is assigned to this transaction yet", snapshot
            )

        if self.clock() - snapshot.last_status_change_at > self.filing_window:
            return EligibilityResult.denied(
                f"The {self.filing_window.days}-day dispute filing window has expired", snapshot
            )

        if await self.repository.has_open_dispute(transaction):
            return EligibilityResult.denied(
                "An open dispute already exists for this transaction", snapshot
            )

        return EligibilityResult(can_file=True, snapshot=snapshot)
