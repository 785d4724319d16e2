"""
Services module initialization.
"""
from gym_retention.services.retention_service import RetentionService
from gym_retention.services.task_service import RetentionTaskService
from gym_retention.services.notification_service import NotificationService
from gym_retention.services.system_service import SystemService

__all__ = [
    "RetentionService",
    "RetentionTaskService",
    "NotificationService",
    "SystemService",
]
