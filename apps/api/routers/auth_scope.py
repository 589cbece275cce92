"""Authentication dependencies for API user scoping."""

from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.errors import Forbidden
from services.identity import Actor, Role
from services.session_token import actor_from_session_token
from services.users import ensure_user


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    role: Role = Role.USER

    @property
    def actor(self) -> Actor:
        return Actor(user_id=self.user_id, role=self.role)


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user and role from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        actor = actor_from_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(user_id=actor.user_id, role=actor.role)


async def get_registered_auth(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Authenticated context whose user row exists, created on first contact."""
    try:
        await ensure_user(db, auth.user_id, role=auth.role.value)
        await db.commit()
    except IntegrityError:
        # registered concurrently by another request
        await db.rollback()
    return auth


async def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Reject non-admin sessions before the route body runs."""
    if not auth.actor.is_admin:
        raise Forbidden()
    return auth
