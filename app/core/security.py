"""
Actor identity and role checks.

Sessions and credentials live in the fronting gateway; it forwards the
authenticated actor as X-Actor-Id / X-Actor-Name / X-Actor-Role headers.
"""

from __future__ import annotations

import enum
from typing import Optional

from fastapi import Depends, Header
from pydantic import BaseModel

from app.core.exceptions import AuthenticationError, AuthorizationError


class ActorRole(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANUFACTURER = "manufacturer"
    CLIENT = "client"


ADMIN_ROLES = frozenset({ActorRole.SUPER_ADMIN, ActorRole.ADMIN})
ELEVATED_ROLES = frozenset({ActorRole.SUPER_ADMIN})


class Actor(BaseModel):
    id: str
    name: str = ""
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    @property
    def routing_party(self) -> str:
        """Routing classification this actor acts as (admin/manufacturer/client)."""
        return "admin" if self.is_admin else self.role.value

    @property
    def display_name(self) -> str:
        return self.name or self.id


def get_current_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    if not x_actor_id or not x_actor_role:
        raise AuthenticationError("Actor identity headers are required")
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise AuthenticationError("Unknown actor role", extra={"role": x_actor_role})
    return Actor(id=x_actor_id.strip(), name=(x_actor_name or "").strip(), role=role)


def ensure_admin(actor: Actor, action: str = "perform this action") -> None:
    if not actor.is_admin:
        raise AuthorizationError(f"Only admins may {action}")


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    ensure_admin(actor)
    return actor


__all__ = [
    "ActorRole",
    "Actor",
    "ADMIN_ROLES",
    "ELEVATED_ROLES",
    "get_current_actor",
    "ensure_admin",
    "require_admin",
]
