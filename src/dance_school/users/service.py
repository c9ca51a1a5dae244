from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from typing import Callable, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from ..common.datetime_utils import now_local
from ..common.validators import require_min_length, require_non_empty
from ..core.enums import EnrollmentStatus, Role
from ..core.exceptions import AuthenticationError, NotFoundError, ValidationError
from ..students.model import Student
from ..students.service import StudentDirectory
from .model import SessionUser, User
from .repository import UserRepository

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def _clean_email(email: str) -> str:
    email = require_non_empty(email, "Email").lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"Invalid email address {email!r}")
    return email


class RoleStore:
    """Role lookup keyed by user id; unknown users are anonymous."""

    def __init__(self, users: UserRepository):
        self._users = users

    def get_role(self, user_id: Optional[str]) -> Role:
        if not user_id:
            return Role.ANONYMOUS
        user = self._users.get_by_id(str(user_id))
        if not user or not user.is_active:
            return Role.ANONYMOUS
        return user.role

    def set_role(self, user_id: str, role: Role | str) -> None:
        try:
            role = Role(role)
        except ValueError:
            raise ValidationError(f"Invalid role {role!r}")
        if role == Role.ANONYMOUS:
            raise ValidationError("Cannot assign the anonymous role")
        if not self._users.set_role(str(user_id), role):
            raise NotFoundError(f"User {user_id} not found")
        logger.info("Role of user %s set to %s", user_id, role.value)


class _Identities:
    def __init__(self, users: UserRepository, clock: Callable[[], datetime]):
        self._users = users
        self._clock = clock

    def create(self, *, email: str, password: str, role: Role, student_id: Optional[str] = None) -> User:
        email = _clean_email(email)
        require_min_length(password, "Password", MIN_PASSWORD_LENGTH)
        if self._users.get_by_email(email):
            raise ValidationError("Email is already registered")
        user = User(
            user_id=uuid.uuid4().hex,
            email=email,
            password_hash=generate_password_hash(password),
            role=role,
            student_id=student_id,
            created_at=self._clock(),
        )
        return self._users.create(user)


class AuthService:
    """Use case: authenticate user (login) and self sign-up."""

    def __init__(
        self,
        users: UserRepository,
        students: StudentDirectory,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._users = users
        self._students = students
        self._identities = _Identities(users, clock or now_local)

    def _session_user(self, user: User) -> SessionUser:
        display_name = user.email
        if user.student_id:
            student = self._students.find(user.student_id)
            if student:
                display_name = student.full_name
        return SessionUser(
            user_id=user.user_id,
            email=user.email,
            role=user.role,
            student_id=user.student_id,
            display_name=display_name,
        )

    def authenticate(self, email: str, password: str) -> SessionUser:
        user = self._users.get_by_email((email or "").strip().lower()) if email else None
        if not user or not user.is_active:
            raise AuthenticationError("Invalid email or password")

        try:
            ok = check_password_hash(user.password_hash, password or "")
        except ValueError:
            # e.g. placeholder hashes or corrupted values
            ok = False

        if not ok:
            raise AuthenticationError("Invalid email or password")

        logger.info("User %s signed in", user.user_id)
        return self._session_user(user)

    def sign_up(self, *, email: str, password: str, first_name: str, last_name: str) -> SessionUser:
        """Self registration: a student identity with a Pending student profile."""
        email = _clean_email(email)
        if self._users.get_by_email(email):
            raise ValidationError("Email is already registered")
        require_min_length(password, "Password", MIN_PASSWORD_LENGTH)
        student = self._students.create({"first_name": first_name, "last_name": last_name, "email": email})
        user = self._identities.create(email=email, password=password, role=Role.STUDENT, student_id=student.student_id)
        return self._session_user(user)


class UserService:
    """Use case: manage users (admin).

    ``provision_student`` is the privileged path: it creates identity, role
    and student profile server-side and never touches the caller's session.
    """

    def __init__(
        self,
        users: UserRepository,
        roles: RoleStore,
        students: StudentDirectory,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._users = users
        self._roles = roles
        self._students = students
        self._identities = _Identities(users, clock or now_local)

    def provision_student(
        self,
        *,
        email: str,
        password: str,
        profile: dict,
        enrollment_status: EnrollmentStatus | str = EnrollmentStatus.ENROLLED,
    ) -> tuple[User, Student]:
        email = _clean_email(email)
        if self._users.get_by_email(email):
            raise ValidationError("Email is already registered")
        require_min_length(password, "Password", MIN_PASSWORD_LENGTH)
        try:
            status = EnrollmentStatus(enrollment_status)
        except ValueError:
            raise ValidationError(f"Invalid enrollment status {enrollment_status!r}")

        student = self._students.create({**profile, "email": email}, enrollment_status=status)
        user = self._identities.create(email=email, password=password, role=Role.STUDENT, student_id=student.student_id)
        logger.info("Provisioned student %s with user %s", student.student_id, user.user_id)
        return user, student

    def create_admin(self, *, email: str, password: str) -> User:
        user = self._identities.create(email=email, password=password, role=Role.ADMIN)
        logger.info("Admin user %s created", user.user_id)
        return user

    def set_role(self, user_id: str, role: Role | str) -> None:
        self._roles.set_role(user_id, role)

    def list_users(self) -> list[dict]:
        return [
            {
                "user_id": u.user_id,
                "email": u.email,
                "role": u.role.value,
                "student_id": u.student_id,
                "is_active": u.is_active,
            }
            for u in sorted(self._users.list_all(), key=lambda u: u.email)
        ]
