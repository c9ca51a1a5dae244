from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    """Base exception for business rule violations.

    Every error carries a ``kind`` from the closed taxonomy so the HTTP layer
    can render a structured error without inspecting the class hierarchy.
    """

    kind = "DomainError"

    def __init__(self, message: str = "", *, details: Optional[dict[str, Any]] = None):
        self.message = message or self.__class__.__doc__ or self.kind
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class NotFoundError(DomainError):
    """Requested entity does not exist."""

    kind = "NotFound"


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""

    kind = "ValidationFailed"


class InvalidDateError(ValidationError):
    """Raised when a date or day-key cannot be parsed."""


class UnconfirmedHolidayChangeError(DomainError):
    """A holiday change was requested without explicit confirmation."""

    kind = "UnconfirmedHolidayChange"


class ConcurrencyConflictError(DomainError):
    """A balance write lost a race with another writer."""

    kind = "ConcurrencyConflict"


class TransientError(DomainError):
    """Network or persistence failure that may succeed on retry."""

    kind = "Transient"


class AuditLogUnavailableError(TransientError):
    """Audit events cannot be stored and the retry queue is full."""


class PermissionDeniedError(DomainError):
    """Raised when a user lacks permission for an action."""

    kind = "PermissionDenied"


class AuthenticationError(PermissionDeniedError):
    """Raised when login credentials are invalid."""


class InconsistentError(DomainError):
    """An invariant would be violated; never recovered automatically."""

    kind = "Inconsistent"
