from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Protocol, Sequence

from ..common.datetime_utils import from_timestamp, parse_iso_date, to_timestamp
from ..common.locks import KeyedLocks
from ..common.validators import require_known_fields
from ..core.constants import ATTENDANCE, DAY_KEY_FORMAT
from ..core.enums import AttendanceAttribute, AttendanceStatus
from ..database.document_store import DocumentStore, OrderBy, QueryFilter
from .model import AttendanceRecord

RECORD_FIELDS = ("status", "attributes", "fee_charged", "timestamp", "marked_by")


class AttendanceStore(Protocol):
    def get_by_date(self, day: date) -> dict[str, AttendanceRecord]:
        raise NotImplementedError

    def get_record(self, day: date, student_id: str) -> Optional[AttendanceRecord]:
        raise NotImplementedError

    def get_by_student(self, student_id: str, start: date, end: date) -> Sequence[AttendanceRecord]:
        raise NotImplementedError

    def get_by_range(self, start: date, end: date) -> Sequence[AttendanceRecord]:
        raise NotImplementedError

    def upsert(self, record: AttendanceRecord) -> Optional[AttendanceRecord]:
        """Write ``record``; returns the record it replaced (None on first mark)."""

        raise NotImplementedError

    def bulk_upsert(
        self,
        day: date,
        student_ids: Iterable[str],
        status: AttendanceStatus,
        *,
        timestamp: datetime,
        fee_charged: Decimal = Decimal("0.00"),
        marked_by: Optional[str] = None,
    ) -> dict[str, Optional[AttendanceRecord]]:
        """Set every listed student to ``status`` with no attributes; returns the priors."""

        raise NotImplementedError

    def remove(self, day: date, student_id: str) -> Optional[AttendanceRecord]:
        raise NotImplementedError


def record_to_document(r: AttendanceRecord) -> dict:
    return {
        "status": r.status.value,
        "attributes": sorted(a.value for a in r.attributes),
        "fee_charged": str(r.fee_charged),
        "timestamp": to_timestamp(r.timestamp) if r.timestamp else None,
        "marked_by": r.marked_by,
    }


def record_from_document(day: date, student_id: str, doc: dict) -> AttendanceRecord:
    require_known_fields(doc, RECORD_FIELDS, "attendance record")
    return AttendanceRecord(
        day=day,
        student_id=str(student_id),
        status=AttendanceStatus(doc["status"]),
        attributes=frozenset(AttendanceAttribute(a) for a in doc.get("attributes") or []),
        fee_charged=Decimal(str(doc.get("fee_charged", "0"))),
        timestamp=from_timestamp(doc["timestamp"]) if doc.get("timestamp") else None,
        marked_by=doc.get("marked_by"),
    )


def _same_mark(a: AttendanceRecord, b: AttendanceRecord) -> bool:
    return a.status == b.status and a.attributes == b.attributes and a.fee_charged == b.fee_charged


class DocumentAttendanceStore(AttendanceStore):
    """One ``attendance/{YYYY-MM-DD}`` document per day: ``{date, records: {studentId: record}}``.

    Writes to a day hold that day's lock so two administrators cannot race a
    bulk update of the same day.
    """

    def __init__(self, store: DocumentStore, *, locks: Optional[KeyedLocks] = None):
        self._store = store
        self._locks = locks if locks is not None else KeyedLocks()

    def _key(self, day: date) -> str:
        return day.strftime(DAY_KEY_FORMAT)

    def _records(self, day: date, doc: Optional[dict]) -> dict[str, AttendanceRecord]:
        if not doc:
            return {}
        return {sid: record_from_document(day, sid, r) for sid, r in (doc.get("records") or {}).items()}

    def get_by_date(self, day: date) -> dict[str, AttendanceRecord]:
        return self._records(day, self._store.get(ATTENDANCE, self._key(day)))

    def get_record(self, day: date, student_id: str) -> Optional[AttendanceRecord]:
        return self.get_by_date(day).get(str(student_id))

    def get_by_range(self, start: date, end: date) -> Sequence[AttendanceRecord]:
        docs = self._store.query(
            ATTENDANCE,
            [
                QueryFilter("date", ">=", self._key(start)),
                QueryFilter("date", "<=", self._key(end)),
            ],
            order_by=[OrderBy("date")],
        )
        out: list[AttendanceRecord] = []
        for d in docs:
            day = parse_iso_date(d.data["date"])
            out.extend(sorted(self._records(day, d.data).values(), key=lambda r: r.student_id))
        return out

    def get_by_student(self, student_id: str, start: date, end: date) -> Sequence[AttendanceRecord]:
        return [r for r in self.get_by_range(start, end) if r.student_id == str(student_id)]

    def upsert(self, record: AttendanceRecord) -> Optional[AttendanceRecord]:
        key = self._key(record.day)
        with self._locks.hold(("day", key)):
            prior = self.get_record(record.day, record.student_id)
            if prior is not None and _same_mark(prior, record):
                return prior
            self._store.set(
                ATTENDANCE,
                key,
                {"date": key, "records": {record.student_id: record_to_document(record)}},
                merge=True,
            )
            return prior

    def bulk_upsert(
        self,
        day: date,
        student_ids: Iterable[str],
        status: AttendanceStatus,
        *,
        timestamp: datetime,
        fee_charged: Decimal = Decimal("0.00"),
        marked_by: Optional[str] = None,
    ) -> dict[str, Optional[AttendanceRecord]]:
        key = self._key(day)
        with self._locks.hold(("day", key)):
            current = self.get_by_date(day)
            priors: dict[str, Optional[AttendanceRecord]] = {}
            patch: dict[str, dict] = {}
            for sid in dict.fromkeys(str(s) for s in student_ids):
                prior = current.get(sid)
                priors[sid] = prior
                record = AttendanceRecord(
                    day=day,
                    student_id=sid,
                    status=AttendanceStatus(status),
                    fee_charged=fee_charged,
                    timestamp=timestamp,
                    marked_by=marked_by,
                )
                if prior is None or not _same_mark(prior, record):
                    patch[sid] = record_to_document(record)
            if patch:
                self._store.set(ATTENDANCE, key, {"date": key, "records": patch}, merge=True)
            return priors

    def remove(self, day: date, student_id: str) -> Optional[AttendanceRecord]:
        key = self._key(day)
        with self._locks.hold(("day", key)):
            doc = self._store.get(ATTENDANCE, key)
            if not doc or str(student_id) not in (doc.get("records") or {}):
                return None
            prior = record_from_document(day, student_id, doc["records"][str(student_id)])
            records = {sid: r for sid, r in doc["records"].items() if sid != str(student_id)}
            if records:
                self._store.set(ATTENDANCE, key, {"date": key, "records": records})
            else:
                self._store.delete(ATTENDANCE, key)
            return prior
