from __future__ import annotations

from typing import Optional, Protocol, Sequence

from ..common.datetime_utils import from_timestamp, to_timestamp
from ..core.constants import AUDIT_LOGS
from ..core.enums import AuditEventType
from ..database.document_store import DocumentStore, OrderBy, QueryFilter
from .model import AuditEvent


class AuditRepository(Protocol):
    def append(self, event: AuditEvent) -> None:
        raise NotImplementedError

    def find(
        self,
        *,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> Sequence[AuditEvent]:
        """Matching events, newest first."""

        raise NotImplementedError


def _to_document(e: AuditEvent) -> dict:
    return {
        "type": e.type.value,
        "user_id": e.user_id,
        "entity_id": e.entity_id,
        "timestamp": to_timestamp(e.timestamp),
        # Sortable form of the timestamp; ISO strings with different offsets are not.
        "epoch": e.timestamp.timestamp(),
        "details": e.details,
        "sequence": e.sequence,
    }


def _from_document(event_id: str, doc: dict) -> AuditEvent:
    return AuditEvent(
        event_id=event_id,
        type=AuditEventType(doc["type"]),
        user_id=doc.get("user_id"),
        entity_id=doc["entity_id"],
        timestamp=from_timestamp(doc["timestamp"]),
        details=dict(doc.get("details") or {}),
        sequence=int(doc.get("sequence", 0)),
    )


class DocumentAuditRepository(AuditRepository):
    def __init__(self, store: DocumentStore):
        self._store = store

    def append(self, event: AuditEvent) -> None:
        # Keyed by event id, so a retried append never duplicates.
        self._store.set(AUDIT_LOGS, event.event_id, _to_document(event))

    def find(
        self,
        *,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> Sequence[AuditEvent]:
        filters = []
        if entity_id is not None:
            filters.append(QueryFilter("entity_id", "==", str(entity_id)))
        if user_id is not None:
            filters.append(QueryFilter("user_id", "==", str(user_id)))
        if event_type is not None:
            filters.append(QueryFilter("type", "==", AuditEventType(event_type).value))
        docs = self._store.query(
            AUDIT_LOGS,
            filters,
            order_by=[OrderBy("epoch", descending=True), OrderBy("sequence", descending=True)],
        )
        return [_from_document(d.id, d.data) for d in docs]
