"""
Retention Risk Evaluator.

Recomputes a point-in-time risk snapshot for every active member and opens
follow-up tasks for members who land in HIGH risk.

Evaluation pass:
==============================================================================
1. Scope: members whose user account is ACTIVE (optionally a given id list).
2. Per member, read in bulk:
   - latest attendance check-in
   - current subscription (soonest-ending ACTIVE/PENDING/FROZEN, otherwise
     the latest EXPIRED one)
   - PENDING payments, and REJECTED payments inside the lookback window
3. Score through the rule table (services/risk_rules.py).
4. Upsert the member_retention_risks row keyed by member_id
   (last writer wins when passes overlap).
5. HIGH members without an OPEN/IN_PROGRESS task, and without a task resolved
   during the cooldown, get a new task assigned to the least loaded staff.

Members whose rows cannot be scored are skipped and reported in the result;
one bad member never fails the batch.
"""
from typing import Dict, List, Optional, Tuple
from datetime import datetime, timedelta
import logging

from sqlalchemy import select, func, or_, and_, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gym_retention.config import settings
from gym_retention.database import utcnow
from gym_retention.exceptions import MalformedMemberDataError, NotFoundError
from gym_retention.models.database_models import (
    User, Member, Subscription, AttendanceRecord, Payment,
    MemberRetentionRisk, RetentionTask, new_id
)
from gym_retention.schemas.schemas import (
    ACTIVE_TASK_STATUSES, RESOLVED_TASK_STATUSES,
    Paginated, PaymentStatus, RecalculateResult, RetentionMember,
    RetentionMemberDetail, RetentionMemberFilters, RetentionMemberSubscription,
    RetentionMemberTask, RetentionOverview, RetentionRiskLevel,
    RetentionTaskStatus, SubscriptionStatus, UserRole, UserStatus
)
from gym_retention.services.policy import Action, CurrentUser, authorize
from gym_retention.services.risk_rules import (
    MemberActivity, RiskRuleTable, RiskSnapshot, score_member
)

logger = logging.getLogger(__name__)

CURRENT_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PENDING.value,
    SubscriptionStatus.FROZEN.value,
)

UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

RISK_LEVEL_RANK = case(
    (MemberRetentionRisk.risk_level == RetentionRiskLevel.HIGH.value, 3),
    (MemberRetentionRisk.risk_level == RetentionRiskLevel.MEDIUM.value, 2),
    else_=1,
)


class RetentionService:
    """
    Service for member retention risk scoring and reporting.
    """

    FOLLOW_UP_TITLE = "Follow up high-risk member"
    FOLLOW_UP_NOTE = "Contact this member and offer support before they churn."
    FOLLOW_UP_PRIORITY = 1

    # =========================================================================
    # REPORTING
    # =========================================================================

    @staticmethod
    async def get_overview(db: AsyncSession, now: Optional[datetime] = None) -> RetentionOverview:
        now = now or utcnow()
        week_ago = now - timedelta(days=7)

        grouped = await db.execute(
            select(MemberRetentionRisk.risk_level, func.count())
            .group_by(MemberRetentionRisk.risk_level)
        )
        counts = {level: count for level, count in grouped.all()}

        new_high_this_week = await db.scalar(
            select(func.count()).select_from(MemberRetentionRisk).where(
                MemberRetentionRisk.risk_level == RetentionRiskLevel.HIGH.value,
                MemberRetentionRisk.high_since >= week_ago
            )
        )
        open_tasks = await db.scalar(
            select(func.count()).select_from(RetentionTask).where(
                RetentionTask.status.in_(ACTIVE_TASK_STATUSES)
            )
        )

        return RetentionOverview(
            high_risk=counts.get(RetentionRiskLevel.HIGH.value, 0),
            medium_risk=counts.get(RetentionRiskLevel.MEDIUM.value, 0),
            low_risk=counts.get(RetentionRiskLevel.LOW.value, 0),
            new_high_this_week=new_high_this_week or 0,
            open_tasks=open_tasks or 0,
            evaluated_members=sum(counts.values()),
        )

    @staticmethod
    async def get_members(
        db: AsyncSession,
        filters: RetentionMemberFilters
    ) -> Paginated[RetentionMember]:
        conditions = []
        if filters.risk_level:
            conditions.append(MemberRetentionRisk.risk_level == filters.risk_level.value)
        if filters.min_score is not None:
            conditions.append(MemberRetentionRisk.score >= filters.min_score)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(or_(
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.email.ilike(pattern),
            ))

        total = await db.scalar(
            select(func.count(MemberRetentionRisk.id))
            .join(Member, Member.id == MemberRetentionRisk.member_id)
            .join(User, User.id == Member.user_id)
            .where(*conditions)
        )
        result = await db.execute(
            select(MemberRetentionRisk, User)
            .join(Member, Member.id == MemberRetentionRisk.member_id)
            .join(User, User.id == Member.user_id)
            .where(*conditions)
            .order_by(
                RISK_LEVEL_RANK.desc(),
                MemberRetentionRisk.score.desc(),
                MemberRetentionRisk.last_evaluated_at.desc(),
                MemberRetentionRisk.member_id,
            )
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )

        data = [RetentionService._to_member_dto(risk, user) for risk, user in result.all()]
        return Paginated[RetentionMember].build(data, filters.page, filters.limit, total or 0)

    @staticmethod
    async def get_member_detail(
        db: AsyncSession,
        member_id: str,
        actor: CurrentUser
    ) -> RetentionMemberDetail:
        result = await db.execute(
            select(MemberRetentionRisk, User)
            .join(Member, Member.id == MemberRetentionRisk.member_id)
            .join(User, User.id == Member.user_id)
            .where(MemberRetentionRisk.member_id == member_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundError(f"Retention risk profile not found for member {member_id}")
        risk, user = row

        authorize(actor, Action.VIEW_MEMBER_RISK, resource_owner_id=user.id)

        tasks = await db.scalars(
            select(RetentionTask)
            .options(selectinload(RetentionTask.assigned_to))
            .where(RetentionTask.member_id == member_id)
            .order_by(RetentionTask.created_at.desc())
            .limit(10)
        )
        subscriptions = await db.scalars(
            select(Subscription)
            .options(selectinload(Subscription.membership_plan))
            .where(Subscription.member_id == member_id)
            .order_by(Subscription.end_date.desc())
            .limit(3)
        )

        return RetentionMemberDetail(
            risk=RetentionService._to_member_dto(risk, user),
            tasks=[
                RetentionMemberTask(
                    id=task.id,
                    title=task.title,
                    note=task.note,
                    status=task.status,
                    priority=task.priority,
                    due_date=task.due_date,
                    created_at=task.created_at,
                    assigned_to_email=task.assigned_to.email if task.assigned_to else None,
                )
                for task in tasks
            ],
            recent_subscriptions=[
                RetentionMemberSubscription(
                    id=sub.id,
                    status=sub.status,
                    start_date=sub.start_date,
                    end_date=sub.end_date,
                    plan_name=sub.membership_plan.name if sub.membership_plan else None,
                )
                for sub in subscriptions
            ],
        )

    # =========================================================================
    # EVALUATION PASS
    # =========================================================================

    @staticmethod
    async def recalculate_all(
        db: AsyncSession,
        rules: Optional[RiskRuleTable] = None,
        member_ids: Optional[List[str]] = None,
        now: Optional[datetime] = None
    ) -> RecalculateResult:
        """
        Recompute risk snapshots for the member scope.

        Args:
            db: Database session (the caller commits)
            rules: Rule table; defaults to the configured one
            member_ids: Restrict the pass to these members
            now: Evaluation instant (naive UTC)

        Returns:
            Counters for processed members per level plus skipped members.
        """
        rules = rules or RiskRuleTable.from_settings()
        now = now or utcnow()
        summary = RecalculateResult()

        activities = await RetentionService._load_activity(db, rules, now, member_ids)
        previous = await RetentionService._load_previous_levels(db, [a.member_id for a in activities])

        for activity in activities:
            try:
                snapshot = score_member(activity, rules, now)
            except MalformedMemberDataError as e:
                logger.warning(f"Skipping retention evaluation: {e}")
                summary.skipped += 1
                summary.skipped_member_ids.append(activity.member_id)
                continue

            try:
                async with db.begin_nested():
                    await RetentionService._upsert_risk(
                        db, snapshot, RetentionService._high_since(snapshot, previous.get(activity.member_id), now)
                    )
                    if snapshot.risk_level == RetentionRiskLevel.HIGH:
                        await RetentionService.ensure_follow_up_task(db, snapshot, now)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to persist retention risk for member {activity.member_id}: {e}")
                summary.skipped += 1
                summary.skipped_member_ids.append(activity.member_id)
                continue

            summary.processed += 1
            if snapshot.risk_level == RetentionRiskLevel.HIGH:
                summary.high += 1
            elif snapshot.risk_level == RetentionRiskLevel.MEDIUM:
                summary.medium += 1
            else:
                summary.low += 1

        # Snapshots were written with Core upserts; drop any stale ORM copies
        for obj in list(db.identity_map.values()):
            if isinstance(obj, MemberRetentionRisk):
                db.expire(obj)

        logger.info(
            f"Retention recomputation: processed={summary.processed}, high={summary.high}, "
            f"medium={summary.medium}, low={summary.low}, skipped={summary.skipped}"
        )
        return summary

    @staticmethod
    async def _load_activity(
        db: AsyncSession,
        rules: RiskRuleTable,
        now: datetime,
        member_ids: Optional[List[str]] = None
    ) -> List[MemberActivity]:
        """Gather scoring inputs for every member in scope with a handful of queries."""
        scope = (
            select(Member.id)
            .join(User, User.id == Member.user_id)
            .where(User.status == UserStatus.ACTIVE.value)
        )
        if member_ids:
            scope = scope.where(Member.id.in_(member_ids))

        members = await db.execute(
            select(Member.id, User.first_name, User.last_name, User.email)
            .join(User, User.id == Member.user_id)
            .where(Member.id.in_(scope))
            .order_by(Member.created_at, Member.id)
        )

        last_check_ins = dict((await db.execute(
            select(AttendanceRecord.member_id, func.max(AttendanceRecord.check_in_time))
            .where(AttendanceRecord.member_id.in_(scope))
            .group_by(AttendanceRecord.member_id)
        )).all())

        subscriptions: Dict[str, List[Tuple[str, datetime, datetime]]] = {}
        sub_rows = await db.execute(
            select(Subscription.member_id, Subscription.status, Subscription.start_date, Subscription.end_date)
            .where(
                Subscription.member_id.in_(scope),
                Subscription.status.in_(CURRENT_SUBSCRIPTION_STATUSES + (SubscriptionStatus.EXPIRED.value,))
            )
        )
        for member_id, status, start_date, end_date in sub_rows.all():
            subscriptions.setdefault(member_id, []).append((status, start_date, end_date))

        pending_counts: Dict[str, int] = {}
        rejected_recently = set()
        rejected_cutoff = now - timedelta(days=rules.rejected_lookback_days)
        payment_rows = await db.execute(
            select(Payment.member_id, Payment.status)
            .where(
                Payment.member_id.in_(scope),
                or_(
                    Payment.status == PaymentStatus.PENDING.value,
                    and_(
                        Payment.status == PaymentStatus.REJECTED.value,
                        Payment.created_at >= rejected_cutoff
                    )
                )
            )
        )
        for member_id, status in payment_rows.all():
            if status == PaymentStatus.PENDING.value:
                pending_counts[member_id] = pending_counts.get(member_id, 0) + 1
            else:
                rejected_recently.add(member_id)

        activities = []
        for member_id, first_name, last_name, email in members.all():
            starts_at, ends_at = RetentionService._current_subscription(subscriptions.get(member_id, []))
            activities.append(MemberActivity(
                member_id=member_id,
                full_name=f"{first_name} {last_name or ''}".strip(),
                email=email,
                last_check_in_at=last_check_ins.get(member_id),
                subscription_starts_at=starts_at,
                subscription_ends_at=ends_at,
                unpaid_pending_count=pending_counts.get(member_id, 0),
                has_recent_rejected_payment=member_id in rejected_recently,
            ))
        return activities

    @staticmethod
    def _current_subscription(
        rows: List[Tuple[str, datetime, datetime]]
    ) -> Tuple[Optional[datetime], Optional[datetime]]:
        """Soonest-ending current subscription, else the latest expired one."""
        current = [r for r in rows if r[0] in CURRENT_SUBSCRIPTION_STATUSES]
        if current:
            _, start, end = min(current, key=lambda r: r[2])
            return start, end
        expired = [r for r in rows if r[0] == SubscriptionStatus.EXPIRED.value]
        if expired:
            _, start, end = max(expired, key=lambda r: r[2])
            return start, end
        return None, None

    @staticmethod
    async def _load_previous_levels(
        db: AsyncSession,
        member_ids: List[str]
    ) -> Dict[str, Tuple[str, Optional[datetime]]]:
        if not member_ids:
            return {}
        result = await db.execute(
            select(MemberRetentionRisk.member_id, MemberRetentionRisk.risk_level, MemberRetentionRisk.high_since)
            .where(MemberRetentionRisk.member_id.in_(member_ids))
        )
        return {member_id: (level, high_since) for member_id, level, high_since in result.all()}

    @staticmethod
    def _high_since(
        snapshot: RiskSnapshot,
        previous: Optional[Tuple[str, Optional[datetime]]],
        now: datetime
    ) -> Optional[datetime]:
        if snapshot.risk_level != RetentionRiskLevel.HIGH:
            return None
        if previous and previous[0] == RetentionRiskLevel.HIGH.value and previous[1] is not None:
            return previous[1]
        return now

    @staticmethod
    async def _upsert_risk(
        db: AsyncSession,
        snapshot: RiskSnapshot,
        high_since: Optional[datetime]
    ) -> None:
        """Overwrite the member's snapshot row wholesale."""
        values = {
            "risk_level": snapshot.risk_level.value,
            "score": snapshot.score,
            "reasons": list(snapshot.reasons),
            "last_check_in_at": snapshot.last_check_in_at,
            "days_since_check_in": snapshot.days_since_check_in,
            "subscription_ends_at": snapshot.subscription_ends_at,
            "unpaid_pending_count": snapshot.unpaid_pending_count,
            "high_since": high_since,
            "last_evaluated_at": snapshot.last_evaluated_at,
            "updated_at": snapshot.last_evaluated_at,
        }

        insert = UPSERT_INSERTS.get(db.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(MemberRetentionRisk).values(
                id=new_id(),
                member_id=snapshot.member_id,
                created_at=snapshot.last_evaluated_at,
                **values
            )
            stmt = stmt.on_conflict_do_update(index_elements=["member_id"], set_=values)
            await db.execute(stmt)
            return

        risk = await db.scalar(
            select(MemberRetentionRisk).where(MemberRetentionRisk.member_id == snapshot.member_id)
        )
        if risk is None:
            risk = MemberRetentionRisk(member_id=snapshot.member_id)
            db.add(risk)
        for key, value in values.items():
            setattr(risk, key, value)
        await db.flush()

    # =========================================================================
    # FOLLOW-UP TASKS
    # =========================================================================

    @staticmethod
    async def ensure_follow_up_task(
        db: AsyncSession,
        snapshot: RiskSnapshot,
        now: datetime
    ) -> Optional[RetentionTask]:
        """
        Open a follow-up task for a HIGH member unless one is already active
        or one was resolved within the cooldown.
        """
        active = await db.scalar(
            select(RetentionTask.id).where(
                RetentionTask.member_id == snapshot.member_id,
                RetentionTask.status.in_(ACTIVE_TASK_STATUSES)
            ).limit(1)
        )
        if active:
            return None

        cooldown_cutoff = now - timedelta(days=settings.RETENTION_TASK_COOLDOWN_DAYS)
        recently_resolved = await db.scalar(
            select(RetentionTask.id).where(
                RetentionTask.member_id == snapshot.member_id,
                RetentionTask.status.in_(RESOLVED_TASK_STATUSES),
                or_(
                    RetentionTask.resolved_at >= cooldown_cutoff,
                    RetentionTask.updated_at >= cooldown_cutoff
                )
            ).limit(1)
        )
        if recently_resolved:
            return None

        task = RetentionTask(
            member_id=snapshot.member_id,
            assigned_to_id=await RetentionService.find_auto_assignee_id(db),
            status=RetentionTaskStatus.OPEN.value,
            priority=RetentionService.FOLLOW_UP_PRIORITY,
            title=RetentionService.FOLLOW_UP_TITLE,
            note=RetentionService.FOLLOW_UP_NOTE,
            due_date=now + timedelta(days=settings.RETENTION_TASK_DUE_DAYS),
            created_at=now,
            updated_at=now,
        )
        db.add(task)
        await db.flush()
        logger.info(f"Created follow-up task {task.id} for high-risk member {snapshot.full_name} ({snapshot.member_id})")
        return task

    @staticmethod
    async def find_auto_assignee_id(db: AsyncSession) -> Optional[str]:
        """Active ADMIN/STAFF user with the fewest open tasks (oldest account wins ties)."""
        candidates = (await db.execute(
            select(User.id, User.created_at).where(
                User.status == UserStatus.ACTIVE.value,
                User.role.in_([UserRole.ADMIN.value, UserRole.STAFF.value])
            )
        )).all()
        if not candidates:
            return None

        workloads = dict((await db.execute(
            select(RetentionTask.assigned_to_id, func.count())
            .where(
                RetentionTask.assigned_to_id.in_([c.id for c in candidates]),
                RetentionTask.status.in_(ACTIVE_TASK_STATUSES)
            )
            .group_by(RetentionTask.assigned_to_id)
        )).all())

        best = min(candidates, key=lambda c: (workloads.get(c.id, 0), c.created_at, c.id))
        return best.id

    # =========================================================================
    # MAPPING
    # =========================================================================

    @staticmethod
    def _to_member_dto(risk: MemberRetentionRisk, user: User) -> RetentionMember:
        return RetentionMember(
            member_id=risk.member_id,
            full_name=user.full_name,
            email=user.email,
            risk_level=risk.risk_level,
            score=risk.score,
            reasons=list(risk.reasons or []),
            last_check_in_at=risk.last_check_in_at,
            days_since_check_in=risk.days_since_check_in,
            subscription_ends_at=risk.subscription_ends_at,
            unpaid_pending_count=risk.unpaid_pending_count,
            last_evaluated_at=risk.last_evaluated_at,
        )
