"""Seed script for demo data in local/dev environments."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import create_access_token
from app.db.session import async_session
from app.models.automation import CommunicationAutomation, DeliveryChannel, TriggerEvent
from app.models.user import Supplier, User, UserRole
from app.services import user_service

ADMIN_EMAIL = "admin@comms.local"
SUPPLIER_EMAIL = "supplier@comms.local"
SUPPLIER_NAME = "Demo Events Co."


@dataclass(frozen=True)
class SeedTemplateDefinition:
    """Global automation template seeded for every supplier to copy."""
    name: str
    trigger_event: TriggerEvent
    channel: DeliveryChannel
    delay_hours: int
    message_template: Mapping[str, Any]
    description: str | None = None


SEED_TEMPLATES: tuple[SeedTemplateDefinition, ...] = (
    SeedTemplateDefinition(
        name="New lead alert",
        trigger_event=TriggerEvent.LEAD_NEW,
        channel=DeliveryChannel.NOTIFICATION,
        delay_hours=0,
        message_template={
            "title": "New lead from {{client_name}}",
            "message": "{{client_name}} asked about {{event_type}} on {{event_date}}.",
            "action_url": "/supplier/leads/{{entity_id}}",
        },
        description="Tell the supplier as soon as a lead arrives.",
    ),
    SeedTemplateDefinition(
        name="Quote not opened reminder",
        trigger_event=TriggerEvent.QUOTE_SENT_NO_OPEN,
        channel=DeliveryChannel.EMAIL,
        delay_hours=24,
        message_template={
            "subject": "Your quote from {{supplier_name}} is waiting",
            "body": "Hi {{client_name}}, your quote for {{event_type}} is ready to review.",
        },
    ),
    SeedTemplateDefinition(
        name="Quote viewed follow-up",
        trigger_event=TriggerEvent.QUOTE_VIEWED_NO_ACCEPT,
        channel=DeliveryChannel.WHATSAPP,
        delay_hours=48,
        message_template={"body": "Hi {{client_name}}, any questions about the quote? Reply here and we'll help."},
    ),
    SeedTemplateDefinition(
        name="Payment reminder",
        trigger_event=TriggerEvent.PAYMENT_DUE,
        channel=DeliveryChannel.SMS,
        delay_hours=0,
        message_template={"body": "Reminder: payment of {{amount}} for order {{order_number}} is due {{due_date}}."},
    ),
    SeedTemplateDefinition(
        name="Review request",
        trigger_event=TriggerEvent.ORDER_COMPLETED_REVIEW,
        channel=DeliveryChannel.EMAIL,
        delay_hours=72,
        message_template={
            "subject": "How was {{supplier_name}}?",
            "body": "Thanks for booking with {{supplier_name}}. We'd love a quick review.",
        },
    ),
)


async def seed(session: AsyncSession | None = None) -> None:
    """Seed demo data into the database."""
    if session is None:
        async with async_session() as managed_session:
            await _seed_session(managed_session)
    else:
        await _seed_session(session)


async def _seed_session(session: AsyncSession) -> None:
    """Populate a session with an admin, a supplier, and global templates."""
    admin = await _ensure_user(session, ADMIN_EMAIL, "Demo Admin", UserRole.ADMIN)
    owner = await _ensure_user(session, SUPPLIER_EMAIL, "Demo Supplier", UserRole.SUPPLIER)
    supplier = await _ensure_supplier(session, owner)
    created = await _ensure_templates(session, admin)
    await session.commit()

    print(f"Seed complete - supplier {supplier.id}, {created} new template(s)")
    print(f"Admin token: {create_access_token(str(admin.id))}")
    print(f"Supplier token: {create_access_token(str(owner.id))}")


async def _ensure_user(session: AsyncSession, email: str, display_name: str, role: UserRole) -> User:
    user = await user_service.get_user_by_email(session, email)
    if user:
        return user
    user = User(email=email, display_name=display_name, role=role)
    session.add(user)
    await session.flush()
    return user


async def _ensure_supplier(session: AsyncSession, owner: User) -> Supplier:
    result = await session.execute(
        select(Supplier).where(Supplier.owner_id == owner.id, Supplier.name == SUPPLIER_NAME)
    )
    supplier = result.scalar_one_or_none()
    if supplier:
        return supplier
    supplier = Supplier(owner_id=owner.id, name=SUPPLIER_NAME, timezone="Asia/Jerusalem")
    session.add(supplier)
    await session.flush()
    return supplier


async def _ensure_templates(session: AsyncSession, admin: User) -> int:
    """Create any missing global templates, matched by trigger and name."""
    result = await session.execute(
        select(CommunicationAutomation.trigger_event, CommunicationAutomation.name).where(
            CommunicationAutomation.supplier_id.is_(None)
        )
    )
    existing = {(trigger_event, name) for trigger_event, name in result.all()}
    created = 0
    for definition in SEED_TEMPLATES:
        if (definition.trigger_event, definition.name) in existing:
            continue
        session.add(
            CommunicationAutomation(
                supplier_id=None,
                name=definition.name,
                description=definition.description,
                trigger_event=definition.trigger_event,
                delay_hours=definition.delay_hours,
                channel=definition.channel,
                message_template=dict(definition.message_template),
                is_active=True,
                created_by=admin.id,
            )
        )
        created += 1
    return created


def main() -> None:
    """CLI entrypoint for seeding data."""
    asyncio.run(seed())


if __name__ == "__main__":
    main()
