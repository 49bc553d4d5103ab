"""Tests for the HTTP collaborator clients and the transaction status cache."""

import json
from datetime import UTC, datetime
from decimal import Decimal

import httpx
import pytest

from src.exceptions import (
    InsufficientEscrowException,
    LedgerException,
    NotFoundException,
    UpstreamUnavailableException,
)
from src.models.enums import TransactionKind
from src.modules.dispute.cache import BoundedTTLCache
from src.modules.dispute.domain import Allocation, TransactionRef
from src.modules.dispute.providers import factory
from src.modules.dispute.providers.escrow_ledger import HttpEscrowLedger
from src.modules.dispute.providers.evidence_store import HttpEvidenceStore
from src.modules.dispute.providers.outbound import HttpNotificationService, HttpReputationService
from src.modules.dispute.providers.transaction_store import (
    CachedTransactionStore,
    HttpTransactionStore,
)

ORDER = TransactionRef(TransactionKind.ORDER, "ord-1")
ALLOCATIONS = (Allocation("cust-001", Decimal("40.00")), Allocation("shop-001", Decimal("60.00")))


def _async_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url="http://collaborator.test", transport=httpx.MockTransport(handler))


def _sync_client(handler) -> httpx.Client:
    return httpx.Client(base_url="http://collaborator.test", transport=httpx.MockTransport(handler))


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEscrowLedger:
    @pytest.mark.asyncio
    async def test_release_sends_idempotency_key_and_allocations(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"reference": "rel-77"})

        ledger = HttpEscrowLedger(client=_async_client(handler), backoff_seconds=0)

        ack = await ledger.release(ORDER, ALLOCATIONS, idempotency_key="dispute-1")

        assert ack.reference == "rel-77"
        assert ack.allocations == ALLOCATIONS
        assert seen[0].url.path == "/escrow/order/ord-1/releases"
        assert seen[0].headers["Idempotency-Key"] == "dispute-1"
        assert json.loads(seen[0].content) == {
            "allocations": [
                {"party": "cust-001", "amount": "40.00"},
                {"party": "shop-001", "amount": "60.00"},
            ]
        }

    @pytest.mark.asyncio
    async def test_transient_failure_retries_with_same_key(self):
        keys = []

        def handler(request: httpx.Request) -> httpx.Response:
            keys.append(request.headers["Idempotency-Key"])
            if len(keys) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"reference": "rel-1"})

        ledger = HttpEscrowLedger(client=_async_client(handler), max_retries=3, backoff_seconds=0)

        await ledger.release(ORDER, ALLOCATIONS, idempotency_key="dispute-2")

        assert keys == ["dispute-2"] * 3

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_into_ledger_exception(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ReadTimeout("ledger slow", request=request)

        ledger = HttpEscrowLedger(client=_async_client(handler), max_retries=2, backoff_seconds=0)

        with pytest.raises(LedgerException) as exc_info:
            await ledger.release(ORDER, ALLOCATIONS, idempotency_key="dispute-3")

        assert len(attempts) == 3
        assert not isinstance(exc_info.value, InsufficientEscrowException)

    @pytest.mark.asyncio
    async def test_conflict_means_insufficient_escrow(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(409, json={"message": "Only 20.00 held in escrow"})

        ledger = HttpEscrowLedger(client=_async_client(handler), backoff_seconds=0)

        with pytest.raises(InsufficientEscrowException, match="Only 20.00"):
            await ledger.release(ORDER, ALLOCATIONS, idempotency_key="dispute-4")

    @pytest.mark.asyncio
    async def test_balance_is_decimal(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/escrow/order/ord-1/balance"
            return httpx.Response(200, json={"amount": "100.10"})

        ledger = HttpEscrowLedger(client=_async_client(handler), backoff_seconds=0)

        assert await ledger.get_balance(ORDER) == Decimal("100.10")

    @pytest.mark.asyncio
    async def test_balance_for_unknown_escrow(self):
        ledger = HttpEscrowLedger(
            client=_async_client(lambda request: httpx.Response(404)), backoff_seconds=0
        )
        with pytest.raises(NotFoundException):
            await ledger.get_balance(ORDER)


class TestTransactionStore:
    @pytest.mark.asyncio
    async def test_parses_snapshot(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/transactions/customization_request/creq-1"
            return httpx.Response(200, json={
                "status": "in_progress",
                "last_status_change_at": "2026-03-01T10:00:00",
                "customer_id": "cust-001",
                "counterparty_id": None,
            })

        store = HttpTransactionStore(client=_async_client(handler))

        snapshot = await store.get_status(TransactionRef(TransactionKind.CUSTOMIZATION_REQUEST, "creq-1"))

        assert snapshot.status == "in_progress"
        assert snapshot.last_status_change_at == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert snapshot.counterparty_id is None

    @pytest.mark.asyncio
    async def test_unknown_transaction(self):
        store = HttpTransactionStore(client=_async_client(lambda request: httpx.Response(404)))
        with pytest.raises(NotFoundException):
            await store.get_status(ORDER)

    @pytest.mark.asyncio
    async def test_server_error_is_upstream_unavailable(self):
        store = HttpTransactionStore(client=_async_client(lambda request: httpx.Response(502)))
        with pytest.raises(UpstreamUnavailableException):
            await store.get_status(ORDER)

    @pytest.mark.asyncio
    async def test_cache_serves_repeat_lookups(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={
                "status": "delivered",
                "last_status_change_at": "2026-03-01T10:00:00+00:00",
                "customer_id": "cust-001",
                "counterparty_id": "shop-001",
            })

        time = FakeTime()
        store = CachedTransactionStore(
            HttpTransactionStore(client=_async_client(handler)),
            BoundedTTLCache(max_entries=8, ttl_seconds=30, clock=time),
        )

        first = await store.get_status(ORDER)
        second = await store.get_status(ORDER)
        time.now = 31
        await store.get_status(ORDER)

        assert first == second
        assert len(calls) == 2


class TestBoundedTTLCache:
    def test_evicts_least_recently_used(self):
        cache = BoundedTTLCache(max_entries=2, ttl_seconds=60, clock=FakeTime())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_entries_expire(self):
        time = FakeTime()
        cache = BoundedTTLCache(max_entries=4, ttl_seconds=10, clock=time)
        cache.set("a", 1)

        time.now = 9.9
        assert cache.get("a") == 1
        time.now = 10
        assert cache.get("a") is None
        assert cache.hits == 1
        assert cache.misses == 1

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            BoundedTTLCache(max_entries=0, ttl_seconds=1)


class TestEvidenceStore:
    @pytest.mark.asyncio
    async def test_upload_returns_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert b"disputes/cust-001/videos" in request.content
            return httpx.Response(201, json={"url": "https://cdn.test/disputes/cust-001/videos/v.mp4"})

        store = HttpEvidenceStore(client=_async_client(handler))

        url = await store.upload(b"\x00" * 32, "unboxing.mp4", "video/mp4", owner_id="cust-001")

        assert url.endswith("v.mp4")

    @pytest.mark.asyncio
    async def test_storage_failure(self):
        store = HttpEvidenceStore(client=_async_client(lambda request: httpx.Response(500)))
        with pytest.raises(UpstreamUnavailableException):
            await store.upload(b"x", "a.png", "image/png", owner_id="cust-001")


class TestOutboundClients:
    def test_strike_payload(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append((request.url.path, json.loads(request.content)))
            return httpx.Response(202)

        HttpReputationService(client=_sync_client(handler)).issue_strike("shop-001", "d-1", "Never shipped")

        assert bodies == [("/strikes", {"user_id": "shop-001", "dispute_id": "d-1", "reason": "Never shipped"})]

    def test_notification_error_raises(self):
        service = HttpNotificationService(client=_sync_client(lambda request: httpx.Response(503)))
        with pytest.raises(httpx.HTTPStatusError):
            service.notify("cust-001", {"type": "dispute.filed"})


class TestFactory:
    @pytest.mark.asyncio
    async def test_instances_are_shared_and_closed(self, monkeypatch):
        monkeypatch.setattr(factory, "_instances", {})

        ledger = factory.get_escrow_ledger()
        store = factory.get_transaction_store()
        notifier = factory.get_notification_service()

        assert factory.get_escrow_ledger() is ledger
        assert isinstance(store, CachedTransactionStore)

        ledger_client = _async_client(lambda request: httpx.Response(200))
        notifier_client = _sync_client(lambda request: httpx.Response(200))
        ledger._client = ledger_client
        notifier._client = notifier_client
        await factory.close_all_providers()

        assert ledger_client.is_closed
        assert notifier_client.is_closed
        assert ledger._client is None
