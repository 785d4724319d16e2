"""
System Health Service.

Health Check Components:
==============================================================================
1. Database (PostgreSQL): connection test via simple query
2. Broker (Redis): PING/PONG test for the Celery broker used by the
   nightly retention sweep

Status Definitions:
==============================================================================
- healthy: database and broker reachable
- degraded: broker unreachable (API works, nightly sweep does not)
- unhealthy: database unreachable
"""
from typing import Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
import logging
import time
from redis.asyncio import Redis

from gym_retention.config import settings
from gym_retention.database import utcnow

logger = logging.getLogger(__name__)


class SystemService:
    """Service for system health monitoring."""

    # Component check timeout
    CHECK_TIMEOUT = 5.0

    @staticmethod
    async def check_database(db: AsyncSession) -> Dict[str, Any]:
        """Check database health."""
        start = time.perf_counter()

        try:
            result = await db.execute(text("SELECT 1"))
            _ = result.scalar()

            return {
                "status": "healthy",
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                "message": "Database connection successful"
            }

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "latency_ms": None,
                "message": str(e)
            }

    @staticmethod
    async def check_broker() -> Dict[str, Any]:
        """Check the Celery broker (Redis)."""
        start = time.perf_counter()

        try:
            redis = Redis.from_url(
                settings.CELERY_BROKER_URL,
                socket_connect_timeout=SystemService.CHECK_TIMEOUT,
                socket_timeout=SystemService.CHECK_TIMEOUT,
                decode_responses=True
            )
            await redis.ping()
            await redis.aclose()

            return {
                "status": "healthy",
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                "message": "Broker connection successful"
            }

        except Exception as e:
            logger.warning(f"Broker health check failed: {e}")
            return {
                "status": "unhealthy",
                "latency_ms": None,
                "message": str(e)
            }

    @staticmethod
    async def get_full_health(db: AsyncSession) -> Dict[str, Any]:
        database = await SystemService.check_database(db)
        broker = await SystemService.check_broker()

        if database["status"] != "healthy":
            overall = "unhealthy"
        elif broker["status"] != "healthy":
            overall = "degraded"
        else:
            overall = "healthy"

        return {
            "status": overall,
            "timestamp": utcnow().isoformat(),
            "components": {
                "database": database,
                "broker": broker,
            }
        }
