from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from gym_retention.exceptions import ForbiddenError, NotFoundError
from gym_retention.models.database_models import MemberRetentionRisk, RetentionTask
from gym_retention.schemas.schemas import RetentionMemberFilters, RetentionRiskLevel, UserRole
from gym_retention.services.policy import CurrentUser
from gym_retention.services.retention_service import RetentionService
from tests.utils.factories import add_payment, add_subscription, create_member, create_task, create_user


async def get_risk(db, member_id) -> MemberRetentionRisk:
    return await db.scalar(select(MemberRetentionRisk).where(MemberRetentionRisk.member_id == member_id))


async def count_tasks(db, member_id) -> int:
    return await db.scalar(
        select(func.count()).select_from(RetentionTask).where(RetentionTask.member_id == member_id)
    )


@pytest.mark.asyncio
async def test_recalculate_scores_and_counts_levels(db, now):
    high = await create_member(
        db, now, first_name="High",
        last_check_in_days_ago=45, subscription_ends_in_days=3, pending_payments=2
    )
    medium = await create_member(db, now, first_name="Medium", subscription_ends_in_days=60)
    low = await create_member(db, now, first_name="Low", last_check_in_days_ago=2, subscription_ends_in_days=60)

    result = await RetentionService.recalculate_all(db, now=now)

    assert result.processed == 3
    assert (result.high, result.medium, result.low) == (1, 1, 1)
    assert result.skipped == 0

    high_risk = await get_risk(db, high.id)
    assert high_risk.risk_level == "HIGH"
    assert high_risk.score == 95
    assert high_risk.reasons == ["NO_CHECKIN_14_DAYS", "SUBSCRIPTION_ENDING_7_DAYS", "HAS_PENDING_PAYMENTS"]
    assert high_risk.days_since_check_in == 45
    assert high_risk.unpaid_pending_count == 2
    assert high_risk.high_since == now
    assert high_risk.last_evaluated_at == now

    medium_risk = await get_risk(db, medium.id)
    assert medium_risk.risk_level == "MEDIUM"
    assert medium_risk.days_since_check_in is None
    assert medium_risk.last_check_in_at is None
    assert medium_risk.reasons == ["NO_CHECKIN_HISTORY"]

    assert (await get_risk(db, low.id)).risk_level == "LOW"


@pytest.mark.asyncio
async def test_recalculate_is_idempotent(db, now):
    member = await create_member(db, now, last_check_in_days_ago=30, subscription_ends_in_days=5, pending_payments=1)
    await create_user(db, role="STAFF", first_name="Sam")

    first = await RetentionService.recalculate_all(db, now=now)
    snapshot = await get_risk(db, member.id)
    before = (snapshot.risk_level, snapshot.score, list(snapshot.reasons))

    second = await RetentionService.recalculate_all(db, now=now)
    snapshot = await get_risk(db, member.id)

    assert first == second
    assert (snapshot.risk_level, snapshot.score, list(snapshot.reasons)) == before
    assert await db.scalar(select(func.count()).select_from(MemberRetentionRisk)) == 1
    assert await count_tasks(db, member.id) == 1


@pytest.mark.asyncio
async def test_extra_pending_payment_raises_score(db, now):
    member = await create_member(db, now, last_check_in_days_ago=1, subscription_ends_in_days=60)

    await RetentionService.recalculate_all(db, now=now)
    before = (await get_risk(db, member.id)).score

    await add_payment(db, member, now, status="PENDING")
    await RetentionService.recalculate_all(db, now=now)
    after = await get_risk(db, member.id)

    assert after.score - before == 10
    assert after.unpaid_pending_count == 1
    assert "HAS_PENDING_PAYMENTS" in after.reasons


@pytest.mark.asyncio
async def test_recent_rejected_payment_is_scored(db, now):
    recent = await create_member(db, now, first_name="Recent", last_check_in_days_ago=1, rejected_payment_days_ago=5)
    old = await create_member(db, now, first_name="Old", last_check_in_days_ago=1, rejected_payment_days_ago=60)

    await RetentionService.recalculate_all(db, now=now)

    assert (await get_risk(db, recent.id)).reasons == ["RECENT_REJECTED_PAYMENT"]
    assert (await get_risk(db, old.id)).reasons == []


@pytest.mark.asyncio
async def test_current_subscription_preferred_over_expired(db, now):
    member = await create_member(db, now, last_check_in_days_ago=1)
    await add_subscription(db, member, now, ends_in_days=-10, status="EXPIRED", starts_days_ago=40)
    renewed = await add_subscription(db, member, now, ends_in_days=90, status="ACTIVE", starts_days_ago=9)

    await RetentionService.recalculate_all(db, now=now)
    risk = await get_risk(db, member.id)

    assert risk.subscription_ends_at == renewed.end_date
    assert risk.score == 0


@pytest.mark.asyncio
async def test_inactive_users_are_not_evaluated(db, now):
    member = await create_member(db, now, user_status="INACTIVE")

    result = await RetentionService.recalculate_all(db, now=now)

    assert result.processed == 0
    assert await get_risk(db, member.id) is None


@pytest.mark.asyncio
async def test_recalculate_restricted_to_member_ids(db, now):
    chosen = await create_member(db, now, first_name="Chosen")
    other = await create_member(db, now, first_name="Other")

    result = await RetentionService.recalculate_all(db, member_ids=[chosen.id], now=now)

    assert result.processed == 1
    assert await get_risk(db, chosen.id) is not None
    assert await get_risk(db, other.id) is None


@pytest.mark.asyncio
async def test_malformed_member_is_skipped(db, now):
    broken = await create_member(db, now, first_name="Broken")
    await add_subscription(db, broken, now, ends_in_days=-40, starts_days_ago=10)
    healthy = await create_member(db, now, first_name="Healthy", last_check_in_days_ago=1)

    result = await RetentionService.recalculate_all(db, now=now)

    assert result.processed == 1
    assert result.skipped == 1
    assert result.skipped_member_ids == [broken.id]
    assert await get_risk(db, broken.id) is None
    assert await get_risk(db, healthy.id) is not None


@pytest.mark.asyncio
async def test_high_risk_member_gets_one_follow_up_task(db, now):
    busy = await create_user(db, role="STAFF", first_name="Busy", created_at=now - timedelta(days=100))
    free = await create_user(db, role="STAFF", first_name="Free", created_at=now - timedelta(days=10))
    await create_user(db, role="TRAINER", first_name="Trainer", created_at=now - timedelta(days=200))

    other = await create_member(db, now, first_name="Other", last_check_in_days_ago=1)
    await create_task(db, other, now, status="OPEN", assigned_to=busy)

    member = await create_member(db, now, last_check_in_days_ago=30, subscription_ends_in_days=2)

    await RetentionService.recalculate_all(db, now=now)
    await RetentionService.recalculate_all(db, now=now + timedelta(hours=1))

    tasks = (await db.scalars(select(RetentionTask).where(RetentionTask.member_id == member.id))).all()
    assert len(tasks) == 1
    task = tasks[0]
    assert task.status == "OPEN"
    assert task.priority == 1
    assert task.assigned_to_id == free.id
    assert task.due_date == now + timedelta(days=2)


@pytest.mark.asyncio
async def test_follow_up_task_respects_cooldown(db, now):
    recent = await create_member(db, now, first_name="Recent", last_check_in_days_ago=30, subscription_ends_in_days=2)
    await create_task(db, recent, now, status="DONE", resolved_days_ago=3)
    lapsed = await create_member(db, now, first_name="Lapsed", last_check_in_days_ago=30, subscription_ends_in_days=2)
    await create_task(db, lapsed, now, status="DISMISSED", resolved_days_ago=20)

    await RetentionService.recalculate_all(db, now=now)

    assert await count_tasks(db, recent.id) == 1
    assert await count_tasks(db, lapsed.id) == 2


@pytest.mark.asyncio
async def test_follow_up_task_without_staff_is_unassigned(db, now):
    member = await create_member(db, now, last_check_in_days_ago=30, subscription_ends_in_days=2)

    await RetentionService.recalculate_all(db, now=now)

    task = await db.scalar(select(RetentionTask).where(RetentionTask.member_id == member.id))
    assert task.assigned_to_id is None


@pytest.mark.asyncio
async def test_high_since_is_kept_while_member_stays_high(db, now):
    member = await create_member(db, now, last_check_in_days_ago=30, subscription_ends_in_days=2)

    await RetentionService.recalculate_all(db, now=now)
    await RetentionService.recalculate_all(db, now=now + timedelta(days=1))

    assert (await get_risk(db, member.id)).high_since == now


@pytest.mark.asyncio
async def test_overview_counts(db, now):
    await create_member(db, now, first_name="High", last_check_in_days_ago=30, subscription_ends_in_days=2)
    await create_member(db, now, first_name="Medium")
    await create_member(db, now, first_name="Low", last_check_in_days_ago=1)
    await RetentionService.recalculate_all(db, now=now)

    overview = await RetentionService.get_overview(db, now=now)

    assert overview.high_risk == 1
    assert overview.medium_risk == 1
    assert overview.low_risk == 1
    assert overview.new_high_this_week == 1
    assert overview.open_tasks == 1
    assert overview.evaluated_members == 3

    later = await RetentionService.get_overview(db, now=now + timedelta(days=8))
    assert later.new_high_this_week == 0
    assert later.high_risk == 1


@pytest.mark.asyncio
async def test_overview_is_empty_before_first_pass(db):
    overview = await RetentionService.get_overview(db)

    assert overview.evaluated_members == 0
    assert overview.high_risk == 0
    assert overview.open_tasks == 0


@pytest.mark.asyncio
async def test_get_members_orders_by_risk_then_score(db, now):
    await create_member(db, now, first_name="Low", last_check_in_days_ago=1)
    await create_member(db, now, first_name="Medium", pending_payments=3, last_check_in_days_ago=1)
    await create_member(db, now, first_name="Worst", last_check_in_days_ago=30, subscription_ends_in_days=2, pending_payments=3)
    await create_member(db, now, first_name="High", last_check_in_days_ago=30, subscription_ends_in_days=2)
    await RetentionService.recalculate_all(db, now=now)

    page = await RetentionService.get_members(db, RetentionMemberFilters())

    assert page.total == 4
    assert [m.full_name.split()[0] for m in page.data] == ["Worst", "High", "Medium", "Low"]
    assert page.data[0].score == 100


@pytest.mark.asyncio
async def test_get_members_filters_and_paginates(db, now):
    await create_member(db, now, first_name="Hannah", last_check_in_days_ago=30, subscription_ends_in_days=2)
    await create_member(db, now, first_name="Henry", last_check_in_days_ago=30, subscription_ends_in_days=2)
    await create_member(db, now, first_name="Lara", last_check_in_days_ago=1)
    await RetentionService.recalculate_all(db, now=now)

    high = await RetentionService.get_members(db, RetentionMemberFilters(risk_level=RetentionRiskLevel.HIGH, limit=1))
    assert high.total == 2
    assert high.total_pages == 2
    assert len(high.data) == 1

    searched = await RetentionService.get_members(db, RetentionMemberFilters(search="lara"))
    assert [m.full_name for m in searched.data] == ["Lara Member"]

    scored = await RetentionService.get_members(db, RetentionMemberFilters(min_score=60))
    assert scored.total == 2


@pytest.mark.asyncio
async def test_member_detail_includes_tasks_and_subscriptions(db, now):
    staff = await create_user(db, role="STAFF", first_name="Sam")
    member = await create_member(db, now, last_check_in_days_ago=30, subscription_ends_in_days=2)
    for ends_in in (-300, -200, -100):
        await add_subscription(db, member, now, ends_in_days=ends_in, status="EXPIRED", starts_days_ago=-ends_in + 30)
    await RetentionService.recalculate_all(db, now=now)

    detail = await RetentionService.get_member_detail(
        db, member.id, CurrentUser(id=staff.id, role=UserRole.STAFF)
    )

    assert detail.risk.member_id == member.id
    assert detail.risk.risk_level == RetentionRiskLevel.HIGH
    assert len(detail.tasks) == 1
    assert detail.tasks[0].assigned_to_email == staff.email
    assert len(detail.recent_subscriptions) == 3
    assert detail.recent_subscriptions[0].plan_name == "Monthly"
    assert detail.recent_subscriptions[0].end_date > detail.recent_subscriptions[1].end_date


@pytest.mark.asyncio
async def test_member_detail_owner_scoping(db, now):
    member = await create_member(db, now)
    other = await create_member(db, now, first_name="Other")
    await RetentionService.recalculate_all(db, now=now)

    own = await RetentionService.get_member_detail(
        db, member.id, CurrentUser(id=member.user_id, role=UserRole.MEMBER)
    )
    assert own.risk.member_id == member.id

    with pytest.raises(ForbiddenError):
        await RetentionService.get_member_detail(
            db, other.id, CurrentUser(id=member.user_id, role=UserRole.MEMBER)
        )


@pytest.mark.asyncio
async def test_member_detail_not_found(db):
    with pytest.raises(NotFoundError):
        await RetentionService.get_member_detail(
            db, "missing-member", CurrentUser(id="admin", role=UserRole.ADMIN)
        )
