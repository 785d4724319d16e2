"""
SQLAlchemy Database Models for the Gym Retention API.

Members own their subscriptions, payments and attendance. Retention risk
snapshots and follow-up tasks reference a member by id for lookup only.
"""
import uuid
from sqlalchemy import (
    Column, String, Integer, Text, Boolean,
    ForeignKey, DateTime, Numeric, JSON,
    CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from gym_retention.database import Base, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================
# USERS (accounts for owners, staff, trainers and members)
# ============================================
class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    role = Column(String(20), nullable=False, default="MEMBER")
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    member = relationship("Member", back_populates="user", uselist=False)

    __table_args__ = (
        CheckConstraint("role IN ('OWNER', 'ADMIN', 'STAFF', 'TRAINER', 'MEMBER')", name="ck_users_role"),
        CheckConstraint("status IN ('ACTIVE', 'INACTIVE')", name="ck_users_status"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ============================================
# MEMBERSHIP PLANS
# ============================================
class MembershipPlan(Base):
    __tablename__ = "membership_plans"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    duration_months = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ============================================
# MEMBERS (aggregate root for attendance, payments, subscriptions)
# ============================================
class Member(Base):
    __tablename__ = "members"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    phone = Column(String(32))
    joined_at = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="member")
    subscriptions = relationship("Subscription", back_populates="member", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="member", cascade="all, delete-orphan")
    attendance = relationship("AttendanceRecord", back_populates="member", cascade="all, delete-orphan")


# ============================================
# SUBSCRIPTIONS
# ============================================
class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    membership_plan_id = Column(String(36), ForeignKey("membership_plans.id", ondelete="SET NULL"))
    status = Column(String(20), nullable=False, default="ACTIVE")
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    member = relationship("Member", back_populates="subscriptions")
    membership_plan = relationship("MembershipPlan")

    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE', 'EXPIRED', 'CANCELLED', 'PENDING', 'FROZEN')",
            name="ck_subscriptions_status"
        ),
    )


# ============================================
# ATTENDANCE (check-in / check-out)
# ============================================
class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(String(36), primary_key=True, default=new_id)
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    class_schedule_id = Column(String(36))
    check_in_time = Column(DateTime, nullable=False)
    check_out_time = Column(DateTime)

    member = relationship("Member", back_populates="attendance")

    __table_args__ = (
        Index("ix_attendance_member_check_in", "member_id", "check_in_time"),
    )


# ============================================
# PAYMENTS
# ============================================
class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(String(36), ForeignKey("subscriptions.id", ondelete="SET NULL"))
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    member = relationship("Member", back_populates="payments")

    __table_args__ = (
        CheckConstraint("status IN ('PENDING', 'PAID', 'REJECTED')", name="ck_payments_status"),
    )


# ============================================
# MEMBER RETENTION RISK (point-in-time snapshot, one row per member)
# ============================================
class MemberRetentionRisk(Base):
    __tablename__ = "member_retention_risks"

    id = Column(String(36), primary_key=True, default=new_id)
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    risk_level = Column(String(10), nullable=False)
    score = Column(Integer, nullable=False, default=0)
    reasons = Column(JSON, nullable=False, default=list)
    last_check_in_at = Column(DateTime)
    days_since_check_in = Column(Integer)
    subscription_ends_at = Column(DateTime)
    unpaid_pending_count = Column(Integer, nullable=False, default=0)
    # Set when the member enters HIGH, kept while it stays HIGH
    high_since = Column(DateTime)
    last_evaluated_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    member = relationship("Member")

    __table_args__ = (
        UniqueConstraint("member_id", name="uq_member_retention_risk_member"),
        CheckConstraint("risk_level IN ('LOW', 'MEDIUM', 'HIGH')", name="ck_retention_risk_level"),
        Index("ix_retention_risk_level_score", "risk_level", "score"),
    )


# ============================================
# RETENTION TASKS (staff follow-ups)
# ============================================
class RetentionTask(Base):
    __tablename__ = "retention_tasks"

    id = Column(String(36), primary_key=True, default=new_id)
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    status = Column(String(20), nullable=False, default="OPEN")
    priority = Column(Integer, nullable=False, default=2)
    title = Column(String(200), nullable=False)
    note = Column(Text)
    due_date = Column(DateTime)
    resolved_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    member = relationship("Member")
    assigned_to = relationship("User")

    __table_args__ = (
        CheckConstraint(
            "status IN ('OPEN', 'IN_PROGRESS', 'DONE', 'DISMISSED')",
            name="ck_retention_tasks_status"
        ),
        CheckConstraint("priority >= 1 AND priority <= 3", name="ck_retention_tasks_priority"),
        Index("ix_retention_tasks_status_priority", "status", "priority"),
    )


# ============================================
# RETENTION TASK HISTORY (audit of task changes)
# ============================================
class RetentionTaskHistory(Base):
    __tablename__ = "retention_task_history"

    id = Column(String(36), primary_key=True, default=new_id)
    task_id = Column(String(36), ForeignKey("retention_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    changed_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    from_status = Column(String(20))
    to_status = Column(String(20))
    from_priority = Column(Integer)
    to_priority = Column(Integer)
    from_assigned_to_id = Column(String(36))
    to_assigned_to_id = Column(String(36))
    from_note = Column(Text)
    to_note = Column(Text)
    from_due_date = Column(DateTime)
    to_due_date = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ============================================
# IN-APP NOTIFICATIONS (role-targeted)
# ============================================
class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    role = Column(String(20), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default="info")
    action_url = Column(String(255))
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("type IN ('info', 'success', 'warning', 'error')", name="ck_notifications_type"),
    )
