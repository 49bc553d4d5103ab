"""Pytest fixtures for the dispute service tests."""

import os

# Keep module-level engines off PostgreSQL during tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DATABASE_URL_SYNC", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from collections.abc import AsyncGenerator, Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import src.models  # noqa: F401  (registers every table on Base.metadata)
from src.database.base import Base
from src.exceptions import InsufficientEscrowException, LedgerException, NotFoundException
from src.models.enums import TransactionKind
from src.modules.dispute.domain import Allocation, TransactionRef
from src.modules.dispute.providers.base import (
    EscrowLedger,
    EvidenceStore,
    LedgerAck,
    TransactionSnapshot,
    TransactionStore,
)
from src.modules.dispute.service import DisputeService
from src.modules.identity.auth import AuthenticatedUser

TEST_DATABASE_URL = "sqlite+aiosqlite://"

CUSTOMER_ID = "cust-001"
SHOP_OWNER_ID = "shop-001"
DESIGNER_ID = "designer-001"
ADMIN_ID = "admin-001"

ORDER_ID = "ord-1001"
REQUEST_ID = "creq-2001"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeTransactionStore(TransactionStore):
    def __init__(self) -> None:
        self.snapshots: dict[TransactionRef, TransactionSnapshot] = {}
        self.calls = 0

    def put(self, ref: TransactionRef, **fields) -> None:
        self.snapshots[ref] = TransactionSnapshot(**fields)

    async def get_status(self, transaction: TransactionRef) -> TransactionSnapshot:
        self.calls += 1
        if transaction not in self.snapshots:
            raise NotFoundException(f"Transaction {transaction} not found")
        return self.snapshots[transaction]


class FakeLedger(EscrowLedger):
    """In-memory escrow ledger honouring idempotency keys."""

    def __init__(self) -> None:
        self.balances: dict[TransactionRef, Decimal] = {}
        self.releases: list[tuple[TransactionRef, tuple[Allocation, ...], str]] = []
        self.applied_keys: set[str] = set()
        self.release_attempts = 0
        self.unavailable = 0
        self.refuse_next = False

    async def get_balance(self, transaction: TransactionRef) -> Decimal:
        return self.balances[transaction]

    async def release(
        self, transaction: TransactionRef, allocations: Sequence[Allocation], idempotency_key: str
    ) -> LedgerAck:
        self.release_attempts += 1
        if self.unavailable > 0:
            self.unavailable -= 1
            raise LedgerException("Escrow ledger is unreachable")
        if self.refuse_next:
            self.refuse_next = False
            raise InsufficientEscrowException("Escrow balance cannot cover the requested release")
        if idempotency_key not in self.applied_keys:
            self.applied_keys.add(idempotency_key)
            self.releases.append((transaction, tuple(allocations), idempotency_key))
            self.balances[transaction] = Decimal("0")
        return LedgerAck(
            idempotency_key=idempotency_key,
            reference=f"rel-{idempotency_key[:8]}",
            allocations=tuple(allocations),
        )


class FakeEvidenceStore(EvidenceStore):
    def __init__(self) -> None:
        self.uploads: list[tuple[str, str, str, int]] = []

    async def upload(self, content: bytes, file_name: str, content_type: str, owner_id: str) -> str:
        self.uploads.append((owner_id, file_name, content_type, len(content)))
        return f"https://cdn.example.test/disputes/{owner_id}/{file_name}"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Collaborators and actors
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=UTC))


@pytest.fixture
def order_ref() -> TransactionRef:
    return TransactionRef(TransactionKind.ORDER, ORDER_ID)


@pytest.fixture
def request_ref() -> TransactionRef:
    return TransactionRef(TransactionKind.CUSTOMIZATION_REQUEST, REQUEST_ID)


@pytest.fixture
def transaction_store(clock, order_ref, request_ref) -> FakeTransactionStore:
    store = FakeTransactionStore()
    store.put(
        order_ref,
        status="delivered",
        last_status_change_at=clock.now - timedelta(days=1),
        customer_id=CUSTOMER_ID,
        counterparty_id=SHOP_OWNER_ID,
    )
    store.put(
        request_ref,
        status="in_progress",
        last_status_change_at=clock.now - timedelta(hours=6),
        customer_id=CUSTOMER_ID,
        counterparty_id=DESIGNER_ID,
    )
    return store


@pytest.fixture
def ledger(order_ref, request_ref) -> FakeLedger:
    fake = FakeLedger()
    fake.balances[order_ref] = Decimal("100.00")
    fake.balances[request_ref] = Decimal("250.00")
    return fake


@pytest.fixture
def evidence_store() -> FakeEvidenceStore:
    return FakeEvidenceStore()


@pytest.fixture
def service(db, transaction_store, ledger, evidence_store, clock) -> DisputeService:
    return DisputeService(
        db,
        transaction_store=transaction_store,
        ledger=ledger,
        evidence_store=evidence_store,
        clock=clock,
    )


@pytest.fixture
def customer() -> AuthenticatedUser:
    return AuthenticatedUser(id=CUSTOMER_ID, role="customer")


@pytest.fixture
def shop_owner() -> AuthenticatedUser:
    return AuthenticatedUser(id=SHOP_OWNER_ID, role="shop_owner")


@pytest.fixture
def designer() -> AuthenticatedUser:
    return AuthenticatedUser(id=DESIGNER_ID, role="designer")


@pytest.fixture
def admin() -> AuthenticatedUser:
    return AuthenticatedUser(id=ADMIN_ID, role="admin", is_admin=True)


@pytest.fixture
def outsider() -> AuthenticatedUser:
    return AuthenticatedUser(id="cust-999", role="customer")
