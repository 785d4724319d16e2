"""
Row factories for retention tests.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from gym_retention.models.database_models import (
    User, Member, MembershipPlan, Subscription, AttendanceRecord, Payment,
    RetentionTask
)


async def create_user(
    db: AsyncSession,
    role: str = "MEMBER",
    first_name: str = "Test",
    last_name: str = "User",
    status: str = "ACTIVE",
    created_at: Optional[datetime] = None,
    email: Optional[str] = None
) -> User:
    user = User(
        email=email or f"{first_name.lower()}.{uuid4().hex[:8]}@gym.test",
        first_name=first_name,
        last_name=last_name,
        role=role,
        status=status,
    )
    if created_at is not None:
        user.created_at = created_at
    db.add(user)
    await db.flush()
    return user


async def create_member(
    db: AsyncSession,
    now: datetime,
    first_name: str = "Alice",
    last_name: str = "Member",
    last_check_in_days_ago: Optional[int] = None,
    subscription_ends_in_days: Optional[int] = None,
    subscription_status: str = "ACTIVE",
    pending_payments: int = 0,
    rejected_payment_days_ago: Optional[int] = None,
    user_status: str = "ACTIVE",
    email: Optional[str] = None
) -> Member:
    user = await create_user(
        db, role="MEMBER", first_name=first_name, last_name=last_name,
        status=user_status, email=email
    )
    member = Member(user_id=user.id, joined_at=now - timedelta(days=365), created_at=now - timedelta(days=365))
    db.add(member)
    await db.flush()

    if last_check_in_days_ago is not None:
        db.add(AttendanceRecord(
            member_id=member.id,
            check_in_time=now - timedelta(days=last_check_in_days_ago, hours=1),
        ))
        # older visit that must not win over the latest one
        db.add(AttendanceRecord(
            member_id=member.id,
            check_in_time=now - timedelta(days=last_check_in_days_ago + 20),
        ))

    if subscription_ends_in_days is not None:
        await add_subscription(
            db, member, now,
            ends_in_days=subscription_ends_in_days,
            status=subscription_status
        )

    for _ in range(pending_payments):
        await add_payment(db, member, now, status="PENDING")

    if rejected_payment_days_ago is not None:
        await add_payment(db, member, now - timedelta(days=rejected_payment_days_ago), status="REJECTED")

    await db.flush()
    return member


async def add_subscription(
    db: AsyncSession,
    member: Member,
    now: datetime,
    ends_in_days: int,
    status: str = "ACTIVE",
    starts_days_ago: int = 30,
    plan_name: str = "Monthly"
) -> Subscription:
    plan = MembershipPlan(name=plan_name, duration_months=1, price=Decimal("49.00"))
    db.add(plan)
    await db.flush()
    subscription = Subscription(
        member_id=member.id,
        membership_plan_id=plan.id,
        status=status,
        start_date=now - timedelta(days=starts_days_ago),
        end_date=now + timedelta(days=ends_in_days, hours=1),
    )
    db.add(subscription)
    await db.flush()
    return subscription


async def add_payment(db: AsyncSession, member: Member, created_at: datetime, status: str = "PENDING") -> Payment:
    payment = Payment(member_id=member.id, amount=Decimal("49.00"), status=status, created_at=created_at)
    db.add(payment)
    await db.flush()
    return payment


async def create_task(
    db: AsyncSession,
    member: Member,
    now: datetime,
    status: str = "OPEN",
    priority: int = 2,
    due_in_days: Optional[int] = None,
    assigned_to: Optional[User] = None,
    resolved_days_ago: Optional[int] = None,
    title: str = "Call member"
) -> RetentionTask:
    task = RetentionTask(
        member_id=member.id,
        assigned_to_id=assigned_to.id if assigned_to else None,
        status=status,
        priority=priority,
        title=title,
        due_date=now + timedelta(days=due_in_days) if due_in_days is not None else None,
        resolved_at=now - timedelta(days=resolved_days_ago) if resolved_days_ago is not None else None,
        created_at=now - timedelta(days=30),
        updated_at=now - timedelta(days=resolved_days_ago if resolved_days_ago is not None else 30),
    )
    db.add(task)
    await db.flush()
    return task
