"""User lookup and supplier ownership checks.

Invariants:
- Admins may act on any supplier and on global (supplier-less) records.
- Everyone else may only act on suppliers they own.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, PermissionDeniedError
from app.models.user import Supplier, User


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: str | uuid.UUID) -> User | None:
    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        return None
    return await session.get(User, user_uuid)


async def owned_supplier_ids(session: AsyncSession, user: User) -> set[uuid.UUID]:
    """Return the IDs of suppliers owned by the user."""
    result = await session.execute(select(Supplier.id).where(Supplier.owner_id == user.id))
    return set(result.scalars().all())


async def get_supplier(session: AsyncSession, supplier_id: uuid.UUID) -> Supplier:
    supplier = await session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier not found")
    return supplier


async def ensure_supplier_access(
    session: AsyncSession, *, user: User, supplier_id: uuid.UUID | None
) -> Supplier | None:
    """Authorize the user to manage records scoped to ``supplier_id``."""
    if supplier_id is None:
        if not user.is_admin:
            raise PermissionDeniedError("Only admins may manage global templates")
        return None
    supplier = await get_supplier(session, supplier_id)
    if user.is_admin or supplier.owner_id == user.id:
        return supplier
    raise PermissionDeniedError("Not allowed to manage this supplier")
