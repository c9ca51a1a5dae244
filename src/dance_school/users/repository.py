from __future__ import annotations

from typing import Optional, Protocol, Sequence

from ..common.datetime_utils import from_timestamp, to_timestamp
from ..core.constants import USERS
from ..core.enums import Role
from ..database.document_store import DocumentStore, QueryFilter
from .model import User


class UserRepository(Protocol):
    """Repository interface for User.

    Note (DIP): services depend on this interface, not on a concrete store.
    """

    def get_by_id(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    def get_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    def create(self, user: User) -> User:
        raise NotImplementedError

    def set_role(self, user_id: str, role: Role) -> bool:
        raise NotImplementedError

    def list_all(self) -> Sequence[User]:
        raise NotImplementedError


def _to_document(u: User) -> dict:
    return {
        "email": u.email,
        "password_hash": u.password_hash,
        "role": u.role.value,
        "student_id": u.student_id,
        "is_active": bool(u.is_active),
        "created_at": to_timestamp(u.created_at) if u.created_at else None,
    }


def _from_document(user_id: str, doc: dict) -> User:
    return User(
        user_id=user_id,
        email=doc["email"],
        password_hash=doc.get("password_hash") or "",
        role=Role(doc.get("role", Role.STUDENT.value)),
        student_id=doc.get("student_id"),
        is_active=bool(doc.get("is_active", True)),
        created_at=from_timestamp(doc["created_at"]) if doc.get("created_at") else None,
    )


class DocumentUserRepository(UserRepository):
    def __init__(self, store: DocumentStore):
        self._store = store

    def get_by_id(self, user_id: str) -> Optional[User]:
        doc = self._store.get(USERS, str(user_id))
        return _from_document(str(user_id), doc) if doc else None

    def get_by_email(self, email: str) -> Optional[User]:
        docs = self._store.query(USERS, [QueryFilter("email", "==", email.strip().lower())], limit=1)
        return _from_document(docs[0].id, docs[0].data) if docs else None

    def create(self, user: User) -> User:
        self._store.set(USERS, user.user_id, _to_document(user))
        return user

    def set_role(self, user_id: str, role: Role) -> bool:
        if self._store.get(USERS, str(user_id)) is None:
            return False
        self._store.set(USERS, str(user_id), {"role": role.value}, merge=True)
        return True

    def list_all(self) -> Sequence[User]:
        return [_from_document(d.id, d.data) for d in self._store.query(USERS)]
