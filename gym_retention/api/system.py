"""
System Health API endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from gym_retention.database import get_db
from gym_retention.services.system_service import SystemService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["System"])


@router.get(
    "",
    summary="Service Health Check",
    description="""
    Health of the components the retention service depends on.

    - **database**: PostgreSQL connection
    - **broker**: Redis broker for the nightly retention sweep

    Returns 503 when the database is unreachable.
    """
)
async def health_check(
    db: AsyncSession = Depends(get_db)
):
    """Get full system health status."""
    result = await SystemService.get_full_health(db)
    if result["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail="Database unavailable")
    return result


@router.get(
    "/db",
    summary="Database Health",
    description="Check database connectivity."
)
async def db_health(
    db: AsyncSession = Depends(get_db)
):
    """Check database health."""
    result = await SystemService.check_database(db)
    if result["status"] != "healthy":
        raise HTTPException(status_code=503, detail=result["message"])
    return result
