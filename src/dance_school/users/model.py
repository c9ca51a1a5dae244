from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.enums import Role


@dataclass(frozen=True)
class User:
    """Domain entity: a login identity stored at ``users/{id}`` with its role.

    Note: Plain data object, no persistence code here.
    """

    user_id: str
    email: str
    password_hash: str
    role: Role
    student_id: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SessionUser:
    """What we store into Flask session after login."""

    user_id: str
    email: str
    role: Role
    student_id: Optional[str]
    display_name: str

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "role": self.role.value,
            "student_id": self.student_id,
            "display_name": self.display_name,
        }
