"""
Pydantic Schemas for the Gym Retention API.
Request and Response models for all endpoints.

Field names are snake_case in Python and camelCase on the wire.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Generic, Optional, List, TypeVar
from datetime import datetime, timezone
from enum import Enum
import math

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================
# ENUMS
# ============================================
class UserRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    TRAINER = "TRAINER"
    MEMBER = "MEMBER"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    PENDING = "PENDING"
    FROZEN = "FROZEN"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REJECTED = "REJECTED"


class RetentionRiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RetentionTaskStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    DISMISSED = "DISMISSED"


ACTIVE_TASK_STATUSES = (RetentionTaskStatus.OPEN.value, RetentionTaskStatus.IN_PROGRESS.value)
RESOLVED_TASK_STATUSES = (RetentionTaskStatus.DONE.value, RetentionTaskStatus.DISMISSED.value)


# ============================================
# ENVELOPES
# ============================================
class Envelope(CamelModel, Generic[T]):
    """Success envelope wrapped around every response body."""
    data: T
    status_code: int
    timestamp: datetime
    path: str


class ErrorEnvelope(CamelModel):
    status_code: int
    message: str | List[str]
    error: str
    timestamp: datetime
    path: str


class Paginated(CamelModel, Generic[T]):
    data: List[T]
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, data: List[T], page: int, limit: int, total: int) -> "Paginated[T]":
        return cls(
            data=data,
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        )


# ============================================
# RETENTION RISK SCHEMAS
# ============================================
class RetentionOverview(CamelModel):
    """Risk distribution and open follow-up counts."""
    high_risk: int = 0
    medium_risk: int = 0
    low_risk: int = 0
    new_high_this_week: int = 0
    open_tasks: int = 0
    evaluated_members: int = 0


class RetentionMemberFilters(CamelModel):
    risk_level: Optional[RetentionRiskLevel] = None
    min_score: Optional[int] = Field(None, ge=0, le=100)
    search: Optional[str] = Field(None, max_length=100)
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class RetentionMember(CamelModel):
    member_id: str
    full_name: str
    email: str
    risk_level: RetentionRiskLevel
    score: int
    reasons: List[str]
    last_check_in_at: Optional[datetime] = None
    days_since_check_in: Optional[int] = None
    subscription_ends_at: Optional[datetime] = None
    unpaid_pending_count: int
    last_evaluated_at: datetime


class RetentionMemberTask(CamelModel):
    id: str
    title: str
    note: Optional[str] = None
    status: RetentionTaskStatus
    priority: int
    due_date: Optional[datetime] = None
    created_at: datetime
    assigned_to_email: Optional[str] = None


class RetentionMemberSubscription(CamelModel):
    id: str
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    plan_name: Optional[str] = None


class RetentionMemberDetail(CamelModel):
    risk: RetentionMember
    tasks: List[RetentionMemberTask]
    recent_subscriptions: List[RetentionMemberSubscription]


class RecalculateRequest(CamelModel):
    """Optional batch filter; omit to evaluate every active member."""
    model_config = ConfigDict(extra="forbid")

    member_ids: Optional[List[str]] = Field(None, min_length=1, max_length=1000)


class RecalculateResult(CamelModel):
    processed: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    skipped: int = 0
    skipped_member_ids: List[str] = []


# ============================================
# RETENTION TASK SCHEMAS
# ============================================
class RetentionTaskFilters(CamelModel):
    status: Optional[RetentionTaskStatus] = None
    priority: Optional[int] = Field(None, ge=1, le=3)
    assigned_to_id: Optional[str] = None
    member_id: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class UpdateRetentionTask(CamelModel):
    """Partial update; only fields present in the request are applied."""
    model_config = ConfigDict(extra="forbid")

    status: Optional[RetentionTaskStatus] = None
    priority: Optional[int] = Field(None, ge=1, le=3)
    assigned_to_id: Optional[str] = None
    note: Optional[str] = Field(None, max_length=2000)
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def due_date_to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def changes(self) -> dict:
        """
        Fields the caller actually sent.

        An explicit null clears note, assignee or due date; status and
        priority cannot be cleared, so a null there counts as absent.
        """
        sent = {}
        for name in ("status", "priority", "assigned_to_id", "note", "due_date"):
            if name not in self.model_fields_set:
                continue
            value = getattr(self, name)
            if value is None and name in ("status", "priority"):
                continue
            sent[name] = value.value if isinstance(value, Enum) else value
        return sent


class BulkUpdateRetentionTasks(UpdateRetentionTask):
    task_ids: List[str] = Field(..., min_length=1, max_length=500)


class BulkUpdateResult(CamelModel):
    updated_count: int
    missing_ids: List[str] = []


class RetentionTaskResponse(CamelModel):
    id: str
    member_id: str
    member_name: str
    member_email: str
    assigned_to_id: Optional[str] = None
    assigned_to_email: Optional[str] = None
    status: RetentionTaskStatus
    priority: int
    title: str
    note: Optional[str] = None
    due_date: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ============================================
# SYSTEM SCHEMAS
# ============================================
class HealthResponse(BaseModel):
    status: str
    database: Optional[str] = None
    error: Optional[str] = None
