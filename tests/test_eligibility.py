"""Tests for EligibilityGate — status, filing window, parties and open disputes."""

from datetime import timedelta

import pytest
from conftest import CUSTOMER_ID, ORDER_ID, SHOP_OWNER_ID

from src.models.enums import DisputeCategory
from src.modules.dispute.eligibility import EligibilityGate
from src.modules.dispute.repository import DisputeRepository


@pytest.fixture
def gate(db, transaction_store, clock):
    return EligibilityGate(transaction_store, DisputeRepository(db), clock=clock)


def _order(transaction_store, order_ref, clock, status="delivered", age=timedelta(days=1), **overrides):
    fields = {
        "status": status,
        "last_status_change_at": clock.now - age,
        "customer_id": CUSTOMER_ID,
        "counterparty_id": SHOP_OWNER_ID,
    }
    fields.update(overrides)
    transaction_store.put(order_ref, **fields)


class TestFilingWindow:
    @pytest.mark.asyncio
    async def test_exactly_five_days_is_still_eligible(self, gate, transaction_store, order_ref, clock):
        _order(transaction_store, order_ref, clock, age=timedelta(days=5))

        result = await gate.check(order_ref, filed_by=CUSTOMER_ID)

        assert result.can_file is True
        assert result.snapshot.counterparty_id == SHOP_OWNER_ID

    @pytest.mark.asyncio
    async def test_one_second_past_window_is_rejected(self, gate, transaction_store, order_ref, clock):
        _order(transaction_store, order_ref, clock, age=timedelta(days=5, seconds=1))

        result = await gate.check(order_ref, filed_by=CUSTOMER_ID)

        assert result.can_file is False
        assert "filing window" in result.reason


class TestTransactionStatus:
    @pytest.mark.asyncio
    async def test_shipped_order_qualifies(self, gate, transaction_store, order_ref, clock):
        _order(transaction_store, order_ref, clock, status="shipped")
        assert (await gate.check(order_ref)).can_file is True

    @pytest.mark.asyncio
    async def test_pending_order_does_not_qualify(self, gate, transaction_store, order_ref, clock):
        _order(transaction_store, order_ref, clock, status="pending")

        result = await gate.check(order_ref)

        assert result.can_file is False
        assert "pending" in result.reason

    @pytest.mark.asyncio
    async def test_request_awaiting_approval_qualifies(self, gate, transaction_store, request_ref, clock):
        transaction_store.put(
            request_ref,
            status="awaiting_customer_approval",
            last_status_change_at=clock.now - timedelta(hours=2),
            customer_id=CUSTOMER_ID,
            counterparty_id="designer-001",
        )
        assert (await gate.check(request_ref)).can_file is True

    @pytest.mark.asyncio
    async def test_request_without_designer_cannot_be_disputed(self, gate, transaction_store, request_ref, clock):
        transaction_store.put(
            request_ref,
            status="in_progress",
            last_status_change_at=clock.now - timedelta(hours=2),
            customer_id=CUSTOMER_ID,
            counterparty_id=None,
        )

        result = await gate.check(request_ref)

        assert result.can_file is False
        assert "assigned" in result.reason


class TestParties:
    @pytest.mark.asyncio
    async def test_only_the_customer_may_file(self, gate, order_ref):
        result = await gate.check(order_ref, filed_by=SHOP_OWNER_ID)

        assert result.can_file is False
        assert "customer" in result.reason

    @pytest.mark.asyncio
    async def test_open_dispute_blocks_a_second_filing(self, gate, service, customer, order_ref):
        await service.file_dispute(
            customer,
            category=DisputeCategory.SHIPPING_NOT_RECEIVED,
            description="Tracking has not moved for a week now",
            order_id=ORDER_ID,
        )

        result = await gate.check(order_ref, filed_by=CUSTOMER_ID)

        assert result.can_file is False
        assert "already exists" in result.reason
