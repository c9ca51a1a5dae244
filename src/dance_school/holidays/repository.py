from __future__ import annotations

from datetime import date
from typing import Optional, Protocol, Sequence

from ..common.datetime_utils import from_timestamp, parse_iso_date, to_timestamp
from ..core.constants import HOLIDAYS
from ..core.enums import OverrideKind
from ..database.document_store import DocumentStore
from .model import HolidayOverride


class HolidayRepository(Protocol):
    def list_all(self) -> Sequence[HolidayOverride]:
        raise NotImplementedError

    def get(self, day: date) -> Optional[HolidayOverride]:
        raise NotImplementedError

    def save(self, override: HolidayOverride) -> None:
        raise NotImplementedError

    def delete(self, day: date) -> bool:
        raise NotImplementedError


def _to_document(o: HolidayOverride) -> dict:
    return {
        "date": o.date.strftime("%Y-%m-%d"),
        "name": o.name,
        "kind": o.kind.value,
        "created_by": o.created_by,
        "created_at": to_timestamp(o.created_at) if o.created_at else None,
    }


def _from_document(doc: dict) -> HolidayOverride:
    return HolidayOverride(
        date=parse_iso_date(doc["date"]),
        name=doc.get("name") or "",
        kind=OverrideKind(doc.get("kind", OverrideKind.ADDED.value)),
        created_by=doc.get("created_by"),
        created_at=from_timestamp(doc["created_at"]) if doc.get("created_at") else None,
    )


class DocumentHolidayRepository(HolidayRepository):
    def __init__(self, store: DocumentStore):
        self._store = store

    def list_all(self) -> Sequence[HolidayOverride]:
        return [_from_document(d.data) for d in self._store.query(HOLIDAYS)]

    def get(self, day: date) -> Optional[HolidayOverride]:
        doc = self._store.get(HOLIDAYS, day.strftime("%Y-%m-%d"))
        return _from_document(doc) if doc else None

    def save(self, override: HolidayOverride) -> None:
        self._store.set(HOLIDAYS, override.date.strftime("%Y-%m-%d"), _to_document(override))

    def delete(self, day: date) -> bool:
        return self._store.delete(HOLIDAYS, day.strftime("%Y-%m-%d"))
