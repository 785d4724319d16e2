"""
Retention background tasks.
"""
from typing import List, Optional
import asyncio
import logging

from worker.celery_app import celery_app
from gym_retention.database import async_session_maker
from gym_retention.services.retention_service import RetentionService

logger = logging.getLogger(__name__)


async def run_recalculation(member_ids: Optional[List[str]] = None) -> dict:
    """One evaluation pass in its own session, committed as a unit."""
    async with async_session_maker() as db:
        try:
            result = await RetentionService.recalculate_all(db, member_ids=member_ids)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return result.model_dump(by_alias=True)


@celery_app.task(name="worker.tasks.retention_tasks.recalculate_retention_risk")
def recalculate_retention_risk():
    """
    Recompute retention risk for all active members.
    Runs nightly via beat schedule.
    """
    logger.info("Running nightly retention risk recomputation...")

    try:
        result = asyncio.run(run_recalculation())
        logger.info(
            f"Retention recomputation completed: processed={result['processed']}, "
            f"high={result['high']}, medium={result['medium']}, low={result['low']}, "
            f"skipped={result['skipped']}"
        )
        return result

    except Exception as e:
        logger.error(f"Nightly retention recomputation failed: {e}", exc_info=True)
        raise


@celery_app.task(bind=True, name="worker.tasks.retention_tasks.recalculate_members")
def recalculate_members(self, member_ids: List[str]):
    """
    Recompute retention risk for specific members (e.g. after a payment or
    check-in import).
    """
    logger.info(f"Recomputing retention risk for {len(member_ids)} member(s)")

    try:
        return asyncio.run(run_recalculation(member_ids))

    except Exception as e:
        logger.error(f"Member retention recomputation error: {e}")
        raise self.retry(exc=e, countdown=120, max_retries=3)
