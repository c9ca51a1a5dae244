from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..core.enums import AuditEventType


@dataclass(frozen=True)
class AuditEvent:
    """Append-only record of a balance, attendance or calendar mutation."""

    event_id: str
    type: AuditEventType
    user_id: Optional[str]
    entity_id: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)
    sequence: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.event_id,
            "type": self.type.value,
            "user_id": self.user_id,
            "entity_id": self.entity_id,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


@dataclass(frozen=True)
class AuditPage:
    items: list[AuditEvent]
    page: int
    limit: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total

    def to_dict(self) -> dict:
        return {
            "items": [e.to_dict() for e in self.items],
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "has_more": self.has_more,
        }
