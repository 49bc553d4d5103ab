"""Abstract collaborator contracts consumed by the dispute engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from src.modules.dispute.domain import Allocation, TransactionRef


@dataclass(frozen=True)
class TransactionSnapshot:
    """Current status of a transaction and when it last changed."""

    status: str
    last_status_change_at: datetime
    customer_id: str
    # Shop owner for orders, assigned designer for customization requests
    counterparty_id: str | None


@dataclass(frozen=True)
class LedgerAck:
    idempotency_key: str
    reference: str
    allocations: tuple[Allocation, ...]


class TransactionStore(ABC):
    @abstractmethod
    async def get_status(self, transaction: TransactionRef) -> TransactionSnapshot:
        """Return the transaction's status; raise NotFoundException if unknown."""


class EscrowLedger(ABC):
    @abstractmethod
    async def get_balance(self, transaction: TransactionRef) -> Decimal:
        """Return the escrowed balance held for the transaction."""

    @abstractmethod
    async def release(
        self,
        transaction: TransactionRef,
        allocations: Sequence[Allocation],
        idempotency_key: str,
    ) -> LedgerAck:
        """Release escrow per *allocations*.

        Repeating a call with the same *idempotency_key* must not move funds
        twice. Raises LedgerException when unreachable and
        InsufficientEscrowException when the balance cannot cover it.
        """


class EvidenceStore(ABC):
    @abstractmethod
    async def upload(
        self, content: bytes, file_name: str, content_type: str, owner_id: str
    ) -> str:
        """Store an evidence file and return its stable URL."""


class ActivityRecorder(ABC):
    @abstractmethod
    def log(self, event: dict) -> None:
        """Append an event to the durable audit log."""


class NotificationService(ABC):
    @abstractmethod
    def notify(self, user_id: str, event: dict) -> None:
        """Deliver a notification about *event* to *user_id*."""


class ReputationService(ABC):
    @abstractmethod
    def issue_strike(self, user_id: str, dispute_id: str, reason: str) -> None:
        """Record a strike signal against *user_id*; enforcement happens downstream."""
