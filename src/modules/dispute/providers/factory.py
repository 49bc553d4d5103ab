"""Provider factory — process-wide collaborator instances."""

from __future__ import annotations

from src.config import settings
from src.modules.dispute.cache import BoundedTTLCache
from src.modules.dispute.providers.base import (
    ActivityRecorder,
    EscrowLedger,
    EvidenceStore,
    NotificationService,
    ReputationService,
    TransactionStore,
)
from src.modules.dispute.providers.escrow_ledger import HttpEscrowLedger
from src.modules.dispute.providers.evidence_store import HttpEvidenceStore
from src.modules.dispute.providers.outbound import (
    HttpActivityRecorder,
    HttpNotificationService,
    HttpReputationService,
)
from src.modules.dispute.providers.transaction_store import (
    CachedTransactionStore,
    HttpTransactionStore,
)

_instances: dict[str, object] = {}


def _get(name: str, build):
    if name not in _instances:
        _instances[name] = build()
    return _instances[name]


def get_transaction_store() -> TransactionStore:
    return _get(
        "transaction_store",
        lambda: CachedTransactionStore(
            HttpTransactionStore(),
            BoundedTTLCache(
                max_entries=settings.transaction_cache_max_entries,
                ttl_seconds=settings.transaction_cache_ttl_seconds,
            ),
        ),
    )


def get_escrow_ledger() -> EscrowLedger:
    return _get("escrow_ledger", HttpEscrowLedger)


def get_evidence_store() -> EvidenceStore:
    return _get("evidence_store", HttpEvidenceStore)


def get_activity_recorder() -> ActivityRecorder:
    return _get("activity_recorder", HttpActivityRecorder)


def get_notification_service() -> NotificationService:
    return _get("notification_service", HttpNotificationService)


def get_reputation_service() -> ReputationService:
    return _get("reputation_service", HttpReputationService)


async def close_all_providers() -> None:
    """Close httpx clients on all cached providers.

    Must be called at the end of each asyncio.run() invocation in Celery tasks
    to prevent stale clients across event loop boundaries.
    """
    for provider in _instances.values():
        inner = getattr(provider, "inner", provider)
        client = getattr(inner, "_client", None)
        if client is None or client.is_closed:
            continue
        if hasattr(client, "aclose"):
            await client.aclose()
        else:
            client.close()
        inner._client = None
