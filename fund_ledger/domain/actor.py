"""
Actor -- the identity collaborator's view of the caller.

The web layer authenticates the user and passes an Actor into every engine
call.  The ledger trusts it and never re-authenticates.
"""

from dataclasses import dataclass
from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def admin(cls, user_id: int) -> "Actor":
        return cls(user_id=user_id, role=UserRole.ADMIN)

    @classmethod
    def user(cls, user_id: int) -> "Actor":
        return cls(user_id=user_id, role=UserRole.USER)
