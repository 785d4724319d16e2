"""
Retention API - risk overview, member risk profiles and follow-up tasks.

Endpoints:
    GET   /retention/overview
    GET   /retention/members?riskLevel&minScore&search&page&limit
    GET   /retention/members/{memberId}
    POST  /retention/recalculate
    GET   /retention/tasks?status&priority&assignedToId&memberId&page&limit
    PATCH /retention/tasks/bulk
    PATCH /retention/tasks/{id}

Every response is wrapped as {data, statusCode, timestamp, path}.
"""
from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from gym_retention.api.deps import require
from gym_retention.api.responses import envelope
from gym_retention.database import get_db
from gym_retention.schemas.schemas import (
    BulkUpdateResult, BulkUpdateRetentionTasks, Envelope, Paginated,
    RecalculateRequest, RecalculateResult, RetentionMember,
    RetentionMemberDetail, RetentionMemberFilters, RetentionOverview,
    RetentionRiskLevel, RetentionTaskFilters, RetentionTaskResponse,
    RetentionTaskStatus, UpdateRetentionTask
)
from gym_retention.services.policy import Action, CurrentUser
from gym_retention.services.retention_service import RetentionService
from gym_retention.services.task_service import RetentionTaskService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/retention", tags=["Retention"])


# ============================================================================
# RISK
# ============================================================================

@router.get(
    "/overview",
    response_model=Envelope[RetentionOverview],
    summary="Get retention risk overview",
    description="Risk distribution, members newly HIGH this week and open follow-up task count."
)
async def get_overview(
    request: Request,
    actor: CurrentUser = Depends(require(Action.VIEW_OVERVIEW)),
    db: AsyncSession = Depends(get_db)
):
    result = await RetentionService.get_overview(db)
    return envelope(request, result)


@router.get(
    "/members",
    response_model=Envelope[Paginated[RetentionMember]],
    summary="List member risk profiles",
    description="""
Paginated retention risk profiles, highest risk first.

- **riskLevel**: LOW | MEDIUM | HIGH
- **minScore**: only profiles scoring at least this much (0-100)
- **search**: case-insensitive match on first name, last name or email
    """
)
async def get_members(
    request: Request,
    risk_level: Optional[RetentionRiskLevel] = Query(None, alias="riskLevel"),
    min_score: Optional[int] = Query(None, alias="minScore", ge=0, le=100),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: CurrentUser = Depends(require(Action.LIST_MEMBERS)),
    db: AsyncSession = Depends(get_db)
):
    filters = RetentionMemberFilters(
        risk_level=risk_level,
        min_score=min_score,
        search=search,
        page=page,
        limit=limit,
    )
    result = await RetentionService.get_members(db, filters)
    return envelope(request, result)


@router.get(
    "/members/{member_id}",
    response_model=Envelope[RetentionMemberDetail],
    summary="Get retention profile by member ID",
    description="Risk snapshot with the member's recent follow-up tasks and subscriptions. "
                "Members may read their own profile."
)
async def get_member_detail(
    request: Request,
    member_id: str,
    actor: CurrentUser = Depends(require(Action.VIEW_MEMBER_RISK)),
    db: AsyncSession = Depends(get_db)
):
    result = await RetentionService.get_member_detail(db, member_id, actor)
    return envelope(request, result)


@router.post(
    "/recalculate",
    response_model=Envelope[RecalculateResult],
    status_code=status.HTTP_201_CREATED,
    summary="Recalculate retention risk scores",
    description="""
Recompute risk snapshots for all active members (or the given memberIds)
and open follow-up tasks for members who are HIGH risk.

Members with inconsistent data are skipped and listed in skippedMemberIds.
    """
)
async def recalculate(
    request: Request,
    payload: Optional[RecalculateRequest] = Body(None),
    actor: CurrentUser = Depends(require(Action.RECALCULATE)),
    db: AsyncSession = Depends(get_db)
):
    logger.info(f"Retention recalculation requested by {actor.id}")
    result = await RetentionService.recalculate_all(
        db,
        member_ids=payload.member_ids if payload else None
    )
    return envelope(request, result, status.HTTP_201_CREATED)


# ============================================================================
# TASKS
# ============================================================================

@router.get(
    "/tasks",
    response_model=Envelope[Paginated[RetentionTaskResponse]],
    summary="List retention tasks",
    description="Paginated follow-up tasks ordered by priority, then due date (earliest first)."
)
async def get_tasks(
    request: Request,
    task_status: Optional[RetentionTaskStatus] = Query(None, alias="status"),
    priority: Optional[int] = Query(None, ge=1, le=3),
    assigned_to_id: Optional[str] = Query(None, alias="assignedToId"),
    member_id: Optional[str] = Query(None, alias="memberId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: CurrentUser = Depends(require(Action.LIST_TASKS)),
    db: AsyncSession = Depends(get_db)
):
    filters = RetentionTaskFilters(
        status=task_status,
        priority=priority,
        assigned_to_id=assigned_to_id,
        member_id=member_id,
        page=page,
        limit=limit,
    )
    result = await RetentionTaskService.get_tasks(db, filters)
    return envelope(request, result)


@router.patch(
    "/tasks/bulk",
    response_model=Envelope[BulkUpdateResult],
    summary="Bulk update retention tasks",
    description="Apply the same changes to several tasks. Unknown ids are reported in missingIds."
)
async def bulk_update_tasks(
    request: Request,
    payload: BulkUpdateRetentionTasks,
    actor: CurrentUser = Depends(require(Action.UPDATE_TASK)),
    db: AsyncSession = Depends(get_db)
):
    result = await RetentionTaskService.bulk_update_tasks(db, payload, actor)
    return envelope(request, result)


@router.patch(
    "/tasks/{task_id}",
    response_model=Envelope[RetentionTaskResponse],
    summary="Update a retention task",
    description="Update status, priority, assignee, note or due date."
)
async def update_task(
    request: Request,
    task_id: str,
    payload: UpdateRetentionTask,
    actor: CurrentUser = Depends(require(Action.UPDATE_TASK)),
    db: AsyncSession = Depends(get_db)
):
    result = await RetentionTaskService.update_task(db, task_id, payload, actor)
    return envelope(request, result)
