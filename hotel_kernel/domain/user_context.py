"""
UserContext -- the caller identity threaded into core operations.

Core services never read ambient request state; the façade resolves the
caller once and passes a UserContext down.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    GUEST = "guest"
    TRAVEL_AGENT = "travel_agent"


APPROVER_ROLES = frozenset({Role.ADMIN, Role.MANAGER})


@dataclass(frozen=True)
class UserContext:
    """
    Authenticated caller.

    hotel_id is the hotel a staff member is scoped to; None for roles that
    are not hotel-bound (admin).
    """

    user_id: str
    role: Role
    hotel_id: str | None = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id is required")
        object.__setattr__(self, "role", Role(self.role))

    @property
    def is_approver(self) -> bool:
        return self.role in APPROVER_ROLES

    @classmethod
    def system(cls) -> UserContext:
        """Identity used by scheduled jobs."""
        return cls(user_id="system", role=Role.ADMIN)
