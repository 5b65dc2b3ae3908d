from . import (
    automation_executor,
    automation_scheduler,
    automation_service,
    constraint_service,
    notification_service,
    user_service,
)

__all__ = [
    "automation_executor",
    "automation_scheduler",
    "automation_service",
    "constraint_service",
    "notification_service",
    "user_service",
]
"""Service-layer helpers for API operations."""
