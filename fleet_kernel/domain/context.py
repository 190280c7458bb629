"""
Actor context -- who is calling, in which role, for which organization.

Supplied by the identity layer on every mutating call and trusted as given.
There is no ambient "current user"; services only see what is passed in.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Workflow roles.  ADMIN passes every role check (never a status check)."""

    DRIVER = "driver"
    EMD = "emd"
    SPMS = "spms"
    ADMIN = "admin"


@dataclass(frozen=True)
class ActorContext:
    actor_id: str
    role: Role
    organization_id: str

    def __post_init__(self) -> None:
        if not self.actor_id:
            raise ValueError("actor_id is required")
        if not self.organization_id:
            raise ValueError("organization_id is required")
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def has_role(self, roles: frozenset[Role]) -> bool:
        return self.is_admin or self.role in roles


SYSTEM_ACTOR_ID = "system"
