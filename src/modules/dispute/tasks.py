"""Celery tasks for disputes — retry settlements stranded by ledger outages."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from celery_app import celery
from src.config import settings
from src.database.engine import async_session, engine
from src.exceptions import AppException
from src.modules.dispute.domain import Clock, utcnow
from src.modules.dispute.providers.factory import close_all_providers
from src.modules.dispute.repository import DisputeRepository

logger = logging.getLogger(__name__)


async def resume_pending_settlements_async(
    session_factory=async_session, clock: Clock = utcnow, service_kwargs: dict | None = None
) -> dict:
    """Re-issue the (idempotent) ledger release for every stale settlement claim."""
    from src.modules.dispute.service import DisputeService

    stats = {"found": 0, "resolved": 0, "errors": 0}
    cutoff = clock() - timedelta(seconds=settings.settlement_retry_min_age_seconds)

    async with session_factory() as session:
        dispute_ids = await DisputeRepository(session).find_pending_settlements(older_than=cutoff)

    stats["found"] = len(dispute_ids)
    for dispute_id in dispute_ids:
        async with session_factory() as session:
            svc = DisputeService(session, clock=clock, **(service_kwargs or {}))
            try:
                case = await svc.resume_settlement(dispute_id)
                await session.commit()
            except AppException as exc:
                await session.rollback()
                logger.warning("Settlement retry for dispute %s failed: %s", dispute_id, exc.message)
                stats["errors"] += 1
                continue
            if case.settlement is None:
                stats["resolved"] += 1

    if stats["found"]:
        logger.info("Settlement sweep: %s", stats)
    return stats


async def _resume_pending_settlements() -> dict:
    try:
        return await resume_pending_settlements_async()
    finally:
        await close_all_providers()
        await engine.dispose()


@celery.task(name="src.modules.dispute.tasks.resume_pending_settlements")
def resume_pending_settlements():
    """Finish settlements whose ledger release never got acknowledged."""
    return asyncio.run(_resume_pending_settlements())
