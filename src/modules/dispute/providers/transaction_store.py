"""Transaction status lookups over HTTP, with an optional bounded cache in front."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import httpx

from src.config import settings
from src.exceptions import NotFoundException, UpstreamUnavailableException
from src.modules.dispute.cache import BoundedTTLCache
from src.modules.dispute.domain import TransactionRef
from src.modules.dispute.providers.base import TransactionSnapshot, TransactionStore

logger = logging.getLogger(__name__)


def parse_snapshot(data: dict) -> TransactionSnapshot:
    changed_at = datetime.fromisoformat(data["last_status_change_at"])
    if changed_at.tzinfo is None:
        changed_at = changed_at.replace(tzinfo=UTC)
    return TransactionSnapshot(
        status=data["status"],
        last_status_change_at=changed_at,
        customer_id=str(data["customer_id"]),
        counterparty_id=str(data["counterparty_id"]) if data.get("counterparty_id") else None,
    )


class HttpTransactionStore(TransactionStore):
    """Reads ``GET /transactions/{kind}/{id}`` from the marketplace core API."""

    def __init__(self, base_url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url or settings.transaction_store_base_url
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=settings.collaborator_timeout_seconds
            )
        return self._client

    async def get_status(self, transaction: TransactionRef) -> TransactionSnapshot:
        client = await self._get_client()
        try:
            response = await client.get(f"/transactions/{transaction.kind.value}/{transaction.id}")
        except httpx.RequestError as exc:
            logger.warning("Transaction store unreachable for %s: %s", transaction, exc)
            raise UpstreamUnavailableException("Transaction store is unavailable") from exc

        if response.status_code == 404:
            raise NotFoundException(f"Transaction {transaction} not found")
        if response.status_code >= 400:
            logger.warning(
                "Transaction store returned %d for %s", response.status_code, transaction
            )
            raise UpstreamUnavailableException(
                f"Transaction store returned {response.status_code}"
            )
        return parse_snapshot(response.json())


class CachedTransactionStore(TransactionStore):
    """Caches snapshots of repeated ``get_status`` calls in a bounded TTL cache."""

    def __init__(self, inner: TransactionStore, cache: BoundedTTLCache[TransactionRef, TransactionSnapshot]) -> None:
        self.inner = inner
        self.cache = cache

    async def get_status(self, transaction: TransactionRef) -> TransactionSnapshot:
        cached = self.cache.get(transaction)
        if cached is not None:
            return cached
        snapshot = await self.inner.get_status(transaction)
        self.cache.set(transaction, snapshot)
        return snapshot
