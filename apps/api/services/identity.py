"""Verified caller identity as supplied by the identity provider."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from services.errors import Forbidden


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


def normalize_role(value: object) -> Role:
    """Map a raw role claim onto a Role, defaulting to USER."""
    text = str(value or "").strip().lower()
    if text == Role.ADMIN.value:
        return Role.ADMIN
    return Role.USER


@dataclass
class Actor:
    user_id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def ensure_admin(actor: Actor) -> None:
    """Reject non-admin callers before any target resource is looked up."""
    if not actor.is_admin:
        raise Forbidden()
