from gym_retention.models.database_models import (
    User, MembershipPlan, Member, Subscription, AttendanceRecord, Payment,
    MemberRetentionRisk, RetentionTask, RetentionTaskHistory, Notification
)
