"""Periodic cancellation of accepted reservations whose time has passed."""

import asyncio
import uuid

import structlog

from app.core.celery import celery_app
from app.core.database import AsyncSessionLocal, engine
from app.core.redis import redis_client
from app.core.types import utcnow
from app.schemas.scheduling import SweepResult
from app.services.scheduling import SchedulingService

logger = structlog.get_logger(__name__)


async def sweep_passed_reservations() -> SweepResult:
    """Run one expiry sweep unless another worker already holds the sweep lock.

    When Redis is unreachable the sweep still runs; the per-row conditional
    update keeps concurrent sweeps from double-cancelling.
    """
    owner = uuid.uuid4().hex
    ran_at = utcnow()

    acquired = await redis_client.acquire_sweep_lock(owner)
    if acquired is False:
        logger.info("Expiry sweep already running elsewhere, skipping")
        return SweepResult(cancelled=0, skipped=True, ran_at=ran_at)
    if acquired is None:
        logger.warning("Sweep lock unavailable, running without it")

    try:
        async with AsyncSessionLocal() as db:
            cancelled = await SchedulingService(db).expire_passed_reservations(ran_at)
    finally:
        if acquired:
            await redis_client.release_sweep_lock(owner)

    return SweepResult(cancelled=cancelled, ran_at=ran_at)


async def _run_sweep_once() -> SweepResult:
    try:
        return await sweep_passed_reservations()
    finally:
        # Pooled connections belong to the loop that asyncio.run is about to close
        await redis_client.close()
        await engine.dispose()


@celery_app.task(name="reservations.expire_passed")
def expire_passed_reservations_task() -> dict:
    result = asyncio.run(_run_sweep_once())
    logger.info(
        "Expiry task finished", cancelled=result.cancelled, skipped=result.skipped
    )
    return result.model_dump(mode="json")
