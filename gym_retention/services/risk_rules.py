"""
Retention risk rule table.

Point-accumulation scoring over a member's activity. Pure functions only:
the evaluator gathers the inputs, this module turns them into a snapshot.

Rules (defaults, all overridable through RETENTION_* settings):

| Rule                         | Points            | Reason                         |
|------------------------------|-------------------|--------------------------------|
| never checked in             | 50                | NO_CHECKIN_HISTORY             |
| no check-in for >= 14 days   | 50                | NO_CHECKIN_14_DAYS             |
| subscription ends in 0-7 d   | 25                | SUBSCRIPTION_ENDING_7_DAYS     |
| subscription already ended   | 25                | SUBSCRIPTION_EXPIRED           |
| pending payments             | 10 each, cap 30   | HAS_PENDING_PAYMENTS           |
| payment rejected in 30 days  | 15                | RECENT_REJECTED_PAYMENT        |

Score is clamped to [0, 100]. Level: HIGH >= 60, MEDIUM >= 30, else LOW.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import List, Optional

from gym_retention.config import Settings, settings as default_settings
from gym_retention.exceptions import MalformedMemberDataError
from gym_retention.schemas.schemas import RetentionRiskLevel

ONE_DAY = timedelta(days=1)

REASON_NO_CHECKIN_HISTORY = "NO_CHECKIN_HISTORY"
REASON_SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
REASON_PENDING_PAYMENTS = "HAS_PENDING_PAYMENTS"
REASON_REJECTED_PAYMENT = "RECENT_REJECTED_PAYMENT"


@dataclass(frozen=True)
class RiskRuleTable:
    """Point values, day windows and level cutoffs for one evaluation pass."""
    inactivity_days: int = 14
    no_checkin_points: int = 50
    expiry_window_days: int = 7
    expiry_points: int = 25
    pending_payment_points: int = 10
    pending_payment_cap: int = 30
    rejected_payment_points: int = 15
    rejected_lookback_days: int = 30
    max_score: int = 100
    medium_threshold: int = 30
    high_threshold: int = 60

    def __post_init__(self):
        if not 0 < self.medium_threshold <= self.high_threshold:
            raise ValueError("Risk thresholds must satisfy 0 < medium <= high")
        if self.pending_payment_cap < 0 or self.max_score <= 0:
            raise ValueError("Caps must be non-negative and max_score positive")

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "RiskRuleTable":
        return cls(
            inactivity_days=settings.RETENTION_INACTIVITY_DAYS,
            no_checkin_points=settings.RETENTION_NO_CHECKIN_POINTS,
            expiry_window_days=settings.RETENTION_EXPIRY_WINDOW_DAYS,
            expiry_points=settings.RETENTION_EXPIRY_POINTS,
            pending_payment_points=settings.RETENTION_PENDING_PAYMENT_POINTS,
            pending_payment_cap=settings.RETENTION_PENDING_PAYMENT_CAP,
            rejected_payment_points=settings.RETENTION_REJECTED_PAYMENT_POINTS,
            rejected_lookback_days=settings.RETENTION_REJECTED_LOOKBACK_DAYS,
            max_score=settings.RETENTION_MAX_SCORE,
            medium_threshold=settings.RETENTION_MEDIUM_THRESHOLD,
            high_threshold=settings.RETENTION_HIGH_THRESHOLD,
        )

    def override(self, **changes) -> "RiskRuleTable":
        return replace(self, **changes)

    @property
    def inactivity_reason(self) -> str:
        return f"NO_CHECKIN_{self.inactivity_days}_DAYS"

    @property
    def expiring_reason(self) -> str:
        return f"SUBSCRIPTION_ENDING_{self.expiry_window_days}_DAYS"

    def level_for(self, score: int) -> RetentionRiskLevel:
        if score >= self.high_threshold:
            return RetentionRiskLevel.HIGH
        if score >= self.medium_threshold:
            return RetentionRiskLevel.MEDIUM
        return RetentionRiskLevel.LOW


@dataclass
class MemberActivity:
    """Raw inputs for one member, as read from the database."""
    member_id: str
    full_name: str
    email: str
    last_check_in_at: Optional[datetime] = None
    subscription_starts_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    unpaid_pending_count: int = 0
    has_recent_rejected_payment: bool = False


@dataclass
class RiskSnapshot:
    member_id: str
    full_name: str
    email: str
    risk_level: RetentionRiskLevel
    score: int
    reasons: List[str] = field(default_factory=list)
    last_check_in_at: Optional[datetime] = None
    days_since_check_in: Optional[int] = None
    subscription_ends_at: Optional[datetime] = None
    unpaid_pending_count: int = 0
    last_evaluated_at: Optional[datetime] = None


def whole_days(delta: timedelta) -> int:
    """Floor of a timedelta in days (negative deltas round down)."""
    return delta // ONE_DAY


def score_member(activity: MemberActivity, rules: RiskRuleTable, now: datetime) -> RiskSnapshot:
    """
    Accumulate points for one member and map the total to a risk level.

    Raises:
        MalformedMemberDataError: subscription dates are inconsistent or the
            payment count is negative.
    """
    _check_activity(activity)

    reasons: List[str] = []
    score = 0

    days_since_check_in = None
    if activity.last_check_in_at is None:
        score += rules.no_checkin_points
        reasons.append(REASON_NO_CHECKIN_HISTORY)
    else:
        days_since_check_in = max(0, whole_days(now - activity.last_check_in_at))
        if days_since_check_in >= rules.inactivity_days:
            score += rules.no_checkin_points
            reasons.append(rules.inactivity_reason)

    if activity.subscription_ends_at is not None:
        days_to_expiry = whole_days(activity.subscription_ends_at - now)
        if days_to_expiry < 0:
            score += rules.expiry_points
            reasons.append(REASON_SUBSCRIPTION_EXPIRED)
        elif days_to_expiry <= rules.expiry_window_days:
            score += rules.expiry_points
            reasons.append(rules.expiring_reason)

    if activity.unpaid_pending_count > 0:
        score += min(
            rules.pending_payment_cap,
            rules.pending_payment_points * activity.unpaid_pending_count,
        )
        reasons.append(REASON_PENDING_PAYMENTS)

    if activity.has_recent_rejected_payment:
        score += rules.rejected_payment_points
        reasons.append(REASON_REJECTED_PAYMENT)

    score = min(rules.max_score, max(0, score))

    return RiskSnapshot(
        member_id=activity.member_id,
        full_name=activity.full_name,
        email=activity.email,
        risk_level=rules.level_for(score),
        score=score,
        reasons=reasons,
        last_check_in_at=activity.last_check_in_at,
        days_since_check_in=days_since_check_in,
        subscription_ends_at=activity.subscription_ends_at,
        unpaid_pending_count=activity.unpaid_pending_count,
        last_evaluated_at=now,
    )


def _check_activity(activity: MemberActivity) -> None:
    if activity.unpaid_pending_count < 0:
        raise MalformedMemberDataError(activity.member_id, "negative pending payment count")
    starts, ends = activity.subscription_starts_at, activity.subscription_ends_at
    if starts is not None and ends is not None and ends < starts:
        raise MalformedMemberDataError(
            activity.member_id,
            f"subscription ends ({ends.isoformat()}) before it starts ({starts.isoformat()})"
        )
