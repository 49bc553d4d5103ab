"""Escrow ledger client — balance queries and idempotent releases over HTTP."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from decimal import Decimal

import httpx

from src.config import settings
from src.exceptions import InsufficientEscrowException, LedgerException, NotFoundException
from src.modules.dispute.domain import Allocation, TransactionRef
from src.modules.dispute.providers.base import EscrowLedger, LedgerAck

logger = logging.getLogger(__name__)

# Statuses worth retrying with the same idempotency key
_RETRY_STATUSES = {408, 429, 500, 502, 503, 504}


class HttpEscrowLedger(EscrowLedger):
    """Talks to the payment ledger's escrow API.

    Releases carry an ``Idempotency-Key`` header; timeouts and transient
    statuses are retried with exponential backoff under the same key, so a
    release that reached the ledger before the timeout is not applied twice.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        self.base_url = base_url or settings.escrow_ledger_base_url
        self.max_retries = settings.ledger_max_retries if max_retries is None else max_retries
        self.backoff_seconds = (
            settings.ledger_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=settings.ledger_timeout_seconds
            )
        return self._client

    async def _request_with_retry(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        for attempt in range(self.max_retries + 1):
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.RequestError as exc:
                if attempt >= self.max_retries:
                    logger.error("Ledger %s %s failed after %d attempts: %s", method, path, attempt + 1, exc)
                    raise LedgerException("Escrow ledger is unreachable") from exc
                delay = self.backoff_seconds * (2 ** attempt)
                logger.warning(
                    "Ledger %s %s request error: %s, retrying in %.1fs (attempt %d/%d)",
                    method, path, exc, delay, attempt + 1, self.max_retries,
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code not in _RETRY_STATUSES:
                return response
            if attempt >= self.max_retries:
                raise LedgerException(f"Escrow ledger returned {response.status_code}")
            delay = self.backoff_seconds * (2 ** attempt)
            logger.warning(
                "Ledger %s %s returned %d, retrying in %.1fs (attempt %d/%d)",
                method, path, response.status_code, delay, attempt + 1, self.max_retries,
            )
            await asyncio.sleep(delay)

        raise LedgerException("Max retries exceeded for escrow ledger request")

    @staticmethod
    def _path(transaction: TransactionRef) -> str:
        return f"/escrow/{transaction.kind.value}/{transaction.id}"

    async def get_balance(self, transaction: TransactionRef) -> Decimal:
        response = await self._request_with_retry("GET", f"{self._path(transaction)}/balance")
        if response.status_code == 404:
            raise NotFoundException(f"No escrow held for {transaction}")
        if response.status_code >= 400:
            raise LedgerException(f"Escrow ledger returned {response.status_code}")
        return Decimal(str(response.json()["amount"]))

    async def release(
        self,
        transaction: TransactionRef,
        allocations: Sequence[Allocation],
        idempotency_key: str,
    ) -> LedgerAck:
        response = await self._request_with_retry(
            "POST",
            f"{self._path(transaction)}/releases",
            headers={"Idempotency-Key": idempotency_key},
            json={
                "allocations": [
                    {"party": a.party, "amount": str(a.amount)} for a in allocations
                ],
            },
        )
        if response.status_code in (409, 422):
            body = response.json() if response.content else {}
            logger.warning(
                "Ledger refused release for %s (key=%s): %s", transaction, idempotency_key, body
            )
            raise InsufficientEscrowException(
                body.get("message", "Escrow balance cannot cover the requested release")
            )
        if response.status_code >= 400:
            raise LedgerException(f"Escrow ledger returned {response.status_code}")

        data = response.json()
        logger.info("Ledger released escrow for %s (key=%s)", transaction, idempotency_key)
        return LedgerAck(
            idempotency_key=idempotency_key,
            reference=str(data.get("reference", idempotency_key)),
            allocations=tuple(allocations),
        )
