from app.models.automation import (
    AutomationJob,
    CommunicationAutomation,
    DeliveryChannel,
    EntityKind,
    EntityRef,
    JobStatus,
    TriggerEvent,
)
from app.models.constraints import CommunicationOptOut, QuietHoursConfig, RateLimitConfig
from app.models.notification import Notification, NotificationPreference
from app.models.user import Supplier, User, UserRole

__all__ = [
    "AutomationJob",
    "CommunicationAutomation",
    "CommunicationOptOut",
    "DeliveryChannel",
    "EntityKind",
    "EntityRef",
    "JobStatus",
    "Notification",
    "NotificationPreference",
    "QuietHoursConfig",
    "RateLimitConfig",
    "Supplier",
    "TriggerEvent",
    "User",
    "UserRole",
]
