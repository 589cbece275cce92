"""Local mirror of identity-provider users."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User
from services.errors import NotFound


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: str) -> User:
    """Return a known user; crediting an id nobody has signed in with is refused."""
    user = await get_user(db, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found.")
    return user


async def ensure_user(db: AsyncSession, user_id: str, email: Optional[str] = None, role: str = "user") -> User:
    """Create the row for an authenticated actor on first contact (flush only)."""
    user = await get_user(db, user_id)
    if user:
        return user

    user = User(id=user_id, email=email or f"{user_id}@local.invalid", role=role)
    db.add(user)
    await db.flush()
    return user
