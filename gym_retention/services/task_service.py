"""
Retention Task Manager.

Listing, single update and bulk update of staff follow-up tasks.

Status lifecycle: OPEN -> IN_PROGRESS -> DONE | DISMISSED. Tasks are never
deleted; DONE and DISMISSED stay editable and may be reopened. Moving into
DONE or DISMISSED stamps resolved_at, moving back to OPEN or IN_PROGRESS
clears it. Every effective change is written to retention_task_history.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gym_retention.database import utcnow
from gym_retention.exceptions import BadRequestError, NotFoundError
from gym_retention.models.database_models import (
    User, Member, RetentionTask, RetentionTaskHistory
)
from gym_retention.schemas.schemas import (
    RESOLVED_TASK_STATUSES,
    BulkUpdateResult, BulkUpdateRetentionTasks, Paginated,
    RetentionTaskFilters, RetentionTaskResponse, RetentionTaskStatus,
    UpdateRetentionTask, UserRole
)
from gym_retention.services.notification_service import NotificationService
from gym_retention.services.policy import CurrentUser

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = (UserRole.ADMIN.value, UserRole.STAFF.value)
TRACKED_FIELDS = ("status", "priority", "assigned_to_id", "note", "due_date")
TASKS_URL = "/admin/retention/tasks"


def _with_relations(query):
    return query.options(
        selectinload(RetentionTask.member).selectinload(Member.user),
        selectinload(RetentionTask.assigned_to),
    )


class RetentionTaskService:
    """
    Service for retention follow-up tasks.
    """

    @staticmethod
    async def get_tasks(
        db: AsyncSession,
        filters: RetentionTaskFilters
    ) -> Paginated[RetentionTaskResponse]:
        """
        Page through tasks ordered by priority (1 first), then due date
        (earliest first, undated last), then newest.
        """
        conditions = []
        if filters.status:
            conditions.append(RetentionTask.status == filters.status.value)
        if filters.priority is not None:
            conditions.append(RetentionTask.priority == filters.priority)
        if filters.assigned_to_id:
            conditions.append(RetentionTask.assigned_to_id == filters.assigned_to_id)
        if filters.member_id:
            conditions.append(RetentionTask.member_id == filters.member_id)

        total = await db.scalar(
            select(func.count()).select_from(RetentionTask).where(*conditions)
        )
        tasks = await db.scalars(
            _with_relations(select(RetentionTask))
            .where(*conditions)
            .order_by(
                RetentionTask.priority.asc(),
                RetentionTask.due_date.is_(None),
                RetentionTask.due_date.asc(),
                RetentionTask.created_at.desc(),
                RetentionTask.id,
            )
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )

        data = [RetentionTaskService._to_task_dto(task) for task in tasks]
        return Paginated[RetentionTaskResponse].build(data, filters.page, filters.limit, total or 0)

    @staticmethod
    async def update_task(
        db: AsyncSession,
        task_id: str,
        dto: UpdateRetentionTask,
        actor: Optional[CurrentUser] = None
    ) -> RetentionTaskResponse:
        changes = dto.changes()

        task = await db.scalar(_with_relations(select(RetentionTask)).where(RetentionTask.id == task_id))
        if task is None:
            raise NotFoundError(f"Retention task with ID {task_id} not found")

        if changes.get("assigned_to_id"):
            await RetentionTaskService._validate_assignee(db, changes["assigned_to_id"])

        now = utcnow()
        changed = RetentionTaskService._apply(db, task, changes, actor, now)
        await db.flush()

        if changed and changes.get("status") == RetentionTaskStatus.DONE.value:
            await NotificationService.create_for_role(
                db,
                role=UserRole.ADMIN,
                title="Retention task completed",
                message=f'Task "{task.title}" was completed.',
                type="success",
                action_url=TASKS_URL,
            )

        # Reload so assigned_to reflects a changed assignee
        task = await db.scalar(
            _with_relations(select(RetentionTask))
            .where(RetentionTask.id == task_id)
            .execution_options(populate_existing=True)
        )
        return RetentionTaskService._to_task_dto(task)

    @staticmethod
    async def bulk_update_tasks(
        db: AsyncSession,
        dto: BulkUpdateRetentionTasks,
        actor: Optional[CurrentUser] = None
    ) -> BulkUpdateResult:
        """
        Apply the same changes to every listed task.

        Unknown ids do not fail the call: found tasks are updated and the
        unknown ids are returned in missing_ids.
        """
        changes = dto.changes()
        if not changes:
            raise BadRequestError("At least one field to update is required")

        if changes.get("assigned_to_id"):
            await RetentionTaskService._validate_assignee(db, changes["assigned_to_id"])

        task_ids = list(dict.fromkeys(dto.task_ids))
        tasks = (await db.scalars(
            select(RetentionTask).where(RetentionTask.id.in_(task_ids))
        )).all()
        found = {task.id for task in tasks}
        missing_ids = [task_id for task_id in task_ids if task_id not in found]

        now = utcnow()
        for task in tasks:
            RetentionTaskService._apply(db, task, changes, actor, now)
        await db.flush()

        if missing_ids:
            logger.info(f"Bulk task update skipped {len(missing_ids)} unknown task id(s)")

        if changes.get("status") == RetentionTaskStatus.DONE.value and tasks:
            await NotificationService.create_for_role(
                db,
                role=UserRole.ADMIN,
                title="Retention tasks completed",
                message=f"{len(tasks)} retention task(s) were marked as completed.",
                type="success",
                action_url=TASKS_URL,
            )

        return BulkUpdateResult(updated_count=len(tasks), missing_ids=missing_ids)

    @staticmethod
    async def _validate_assignee(db: AsyncSession, user_id: str) -> None:
        assignee = await db.get(User, user_id)
        if assignee is None:
            raise NotFoundError(f"Assignee user with ID {user_id} not found")
        if assignee.role not in ASSIGNABLE_ROLES:
            raise BadRequestError("Assignee must be an ADMIN or STAFF user")

    @staticmethod
    def _apply(
        db: AsyncSession,
        task: RetentionTask,
        changes: Dict[str, Any],
        actor: Optional[CurrentUser],
        now: datetime
    ) -> bool:
        """Apply changes to one task and record history. Returns whether anything changed."""
        before = {name: getattr(task, name) for name in TRACKED_FIELDS}

        for name, value in changes.items():
            setattr(task, name, value)

        if "status" in changes:
            task.resolved_at = RetentionTaskService._resolved_at(
                before["status"], changes["status"], task.resolved_at, now
            )

        after = {name: getattr(task, name) for name in TRACKED_FIELDS}
        if before == after:
            return False

        task.updated_at = now
        db.add(RetentionTaskHistory(
            task_id=task.id,
            changed_by_user_id=actor.id if actor else None,
            from_status=before["status"],
            to_status=after["status"],
            from_priority=before["priority"],
            to_priority=after["priority"],
            from_assigned_to_id=before["assigned_to_id"],
            to_assigned_to_id=after["assigned_to_id"],
            from_note=before["note"],
            to_note=after["note"],
            from_due_date=before["due_date"],
            to_due_date=after["due_date"],
            created_at=now,
        ))
        return True

    @staticmethod
    def _resolved_at(
        old_status: str,
        new_status: str,
        current: Optional[datetime],
        now: datetime
    ) -> Optional[datetime]:
        if new_status not in RESOLVED_TASK_STATUSES:
            return None
        if old_status == new_status and current is not None:
            return current
        return now

    @staticmethod
    def _to_task_dto(task: RetentionTask) -> RetentionTaskResponse:
        user = task.member.user
        return RetentionTaskResponse(
            id=task.id,
            member_id=task.member_id,
            member_name=user.full_name,
            member_email=user.email,
            assigned_to_id=task.assigned_to_id,
            assigned_to_email=task.assigned_to.email if task.assigned_to else None,
            status=task.status,
            priority=task.priority,
            title=task.title,
            note=task.note,
            due_date=task.due_date,
            resolved_at=task.resolved_at,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
