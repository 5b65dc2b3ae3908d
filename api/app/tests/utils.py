"""Shared helpers for API tests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import create_access_token
from app.models.automation import AutomationJob, CommunicationAutomation, DeliveryChannel, EntityKind, JobStatus, TriggerEvent
from app.models.user import Supplier, User, UserRole
from app.utils.datetime import utcnow


@dataclass(slots=True)
class AuthContext:
    """A persisted user plus the bearer headers that authenticate as them."""

    user: User
    token: str

    @property
    def user_id(self) -> str:
        return str(self.user.id)

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class UserFactory:
    """Create users, suppliers, rules, and jobs directly in the test session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def user(self, *, prefix: str = "user", role: UserRole = UserRole.CLIENT) -> AuthContext:
        suffix = uuid.uuid4().hex[:8]
        user = User(email=f"{prefix}_{suffix}@example.com", display_name=f"{prefix.title()} {suffix}", role=role)
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        return AuthContext(user=user, token=create_access_token(str(user.id)))

    async def admin(self) -> AuthContext:
        return await self.user(prefix="admin", role=UserRole.ADMIN)

    async def supplier(self, owner: AuthContext | None = None, *, timezone: str = "UTC") -> tuple[AuthContext, Supplier]:
        owner = owner or await self.user(prefix="supplier", role=UserRole.SUPPLIER)
        supplier = Supplier(owner_id=owner.user.id, name=f"Supplier {uuid.uuid4().hex[:6]}", timezone=timezone)
        self.session.add(supplier)
        await self.session.commit()
        await self.session.refresh(supplier)
        return owner, supplier

    async def rule(
        self,
        *,
        supplier_id: uuid.UUID | None,
        trigger_event: TriggerEvent = TriggerEvent.LEAD_NEW,
        channel: DeliveryChannel = DeliveryChannel.NOTIFICATION,
        delay_hours: int = 0,
        **fields: Any,
    ) -> CommunicationAutomation:
        rule = CommunicationAutomation(
            supplier_id=supplier_id,
            name=fields.pop("name", f"Rule {uuid.uuid4().hex[:6]}"),
            trigger_event=trigger_event,
            channel=channel,
            delay_hours=delay_hours,
            **fields,
        )
        self.session.add(rule)
        await self.session.commit()
        await self.session.refresh(rule)
        return rule

    async def job(
        self,
        *,
        supplier_id: uuid.UUID | None,
        recipient_user_id: uuid.UUID | None,
        channel: DeliveryChannel = DeliveryChannel.NOTIFICATION,
        trigger_event: TriggerEvent = TriggerEvent.LEAD_NEW,
        scheduled_for: datetime | None = None,
        status: JobStatus = JobStatus.PENDING,
        **fields: Any,
    ) -> AutomationJob:
        job = AutomationJob(
            automation_id=fields.pop("automation_id", uuid.uuid4()),
            entity_type=fields.pop("entity_type", EntityKind.LEAD),
            entity_id=fields.pop("entity_id", uuid.uuid4()),
            recipient_user_id=recipient_user_id,
            supplier_id=supplier_id,
            automation_name=fields.pop("automation_name", "Follow up"),
            trigger_event=trigger_event,
            channel=channel,
            scheduled_for=scheduled_for or utcnow(),
            status=status,
            **fields,
        )
        self.session.add(job)
        await self.session.commit()
        await self.session.refresh(job)
        return job


def entity_payload(
    *,
    supplier_id: uuid.UUID | None,
    recipient_user_id: uuid.UUID | None = None,
    kind: str = "lead",
    **attributes: Any,
) -> dict[str, Any]:
    return {
        "kind": kind,
        "id": str(uuid.uuid4()),
        "supplier_id": str(supplier_id) if supplier_id else None,
        "recipient_user_id": str(recipient_user_id) if recipient_user_id else None,
        "attributes": attributes,
    }
