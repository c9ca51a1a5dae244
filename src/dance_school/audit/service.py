from __future__ import annotations

import itertools
import logging
import threading
import uuid
from collections import deque
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

from ..common.datetime_utils import now_local
from ..core.constants import DEFAULT_AUDIT_QUEUE_SIZE, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..core.enums import AuditEventType
from ..core.exceptions import AuditLogUnavailableError, TransientError, ValidationError
from .model import AuditEvent, AuditPage
from .repository import AuditRepository

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_jsonable(v) for v in value]
        return sorted(items) if isinstance(value, (set, frozenset)) else items
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    return value


class AuditLog:
    """Append-only audit trail.

    A write that fails with a transient error is parked in a bounded
    in-memory queue and replayed before the next write. Mutating services
    call ``ensure_writable(n)`` with the number of events they will emit
    before their first state write; it raises ``AuditLogUnavailableError``
    when the queue has no room for them, so the mutation fails with nothing
    changed. ``record`` runs after state is committed and never drops an
    event: when concurrent writers outrun their reservation it parks past
    the bound and logs an error.
    """

    def __init__(
        self,
        repository: AuditRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        queue_size: int = DEFAULT_AUDIT_QUEUE_SIZE,
    ):
        self._repo = repository
        self._clock = clock or now_local
        self._pending: deque[AuditEvent] = deque()
        self._queue_size = max(0, int(queue_size))
        self._lock = threading.RLock()
        self._sequence = itertools.count(1)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush_pending(self) -> int:
        """Replay parked events in order; stops at the first failure."""
        flushed = 0
        with self._lock:
            while self._pending:
                event = self._pending[0]
                try:
                    self._repo.append(event)
                except TransientError as e:
                    logger.warning("Audit replay still failing (%d pending): %s", len(self._pending), e)
                    break
                self._pending.popleft()
                flushed += 1
        if flushed:
            logger.info("Replayed %d parked audit events", flushed)
        return flushed

    def ensure_writable(self, events: int = 1) -> None:
        """Refuse up front unless ``events`` more entries fit in the retry queue."""
        with self._lock:
            if not self._pending:
                return
            self.flush_pending()
            if self._pending and len(self._pending) + events > self._queue_size:
                raise AuditLogUnavailableError(
                    "Audit log is unavailable and its retry queue is full",
                    details={"pending": len(self._pending), "needed": events, "capacity": self._queue_size},
                )

    def record(
        self,
        event_type: AuditEventType,
        *,
        user_id: Optional[str],
        entity_id: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            event_id=uuid.uuid4().hex,
            type=AuditEventType(event_type),
            user_id=str(user_id) if user_id is not None else None,
            entity_id=str(entity_id),
            timestamp=self._clock(),
            details=_jsonable(details or {}),
            sequence=next(self._sequence),
        )
        with self._lock:
            if self._pending:
                self.flush_pending()
            if self._pending:
                self._park(event, "earlier events still pending")
                return event
            try:
                self._repo.append(event)
            except TransientError as e:
                self._park(event, str(e))
        return event

    def _park(self, event: AuditEvent, reason: str) -> None:
        if len(self._pending) >= self._queue_size:
            logger.error(
                "Audit retry queue over capacity (%d), keeping %s on %s",
                len(self._pending) + 1, event.type.value, event.entity_id,
            )
        self._pending.append(event)
        logger.warning("Audit event %s parked for retry (%s)", event.event_id, reason)

    # -- reads ----------------------------------------------------------------

    def list_by_entity(self, entity_id: str, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> AuditPage:
        return self._page(self._repo.find(entity_id=str(entity_id)), page, limit)

    def list_by_user(self, user_id: str, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> AuditPage:
        return self._page(self._repo.find(user_id=str(user_id)), page, limit)

    def list_by_type(self, event_type: AuditEventType | str, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> AuditPage:
        try:
            event_type = AuditEventType(event_type)
        except ValueError:
            raise ValidationError(f"Unknown audit event type {event_type!r}")
        return self._page(self._repo.find(event_type=event_type), page, limit)

    def list_all(self, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> AuditPage:
        return self._page(self._repo.find(), page, limit)

    @staticmethod
    def _page(events, page: int, limit: int) -> AuditPage:
        try:
            page, limit = int(page), int(limit)
        except (TypeError, ValueError):
            raise ValidationError("page and limit must be integers")
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}")
        events = list(events)
        start = (page - 1) * limit
        return AuditPage(items=events[start:start + limit], page=page, limit=limit, total=len(events))
