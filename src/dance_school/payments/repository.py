from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from ..common.datetime_utils import from_timestamp, parse_iso_date, to_timestamp
from ..core.constants import DAY_KEY_FORMAT, PAYMENTS
from ..core.enums import PaymentMethod
from ..database.document_store import DocumentStore, OrderBy, QueryFilter
from .model import Payment


class PaymentRepository(Protocol):
    def create(self, payment: Payment) -> Payment:
        raise NotImplementedError

    def get_by_id(self, payment_id: str) -> Optional[Payment]:
        raise NotImplementedError

    def get_by_student(self, student_id: str) -> Sequence[Payment]:
        """Newest first."""

        raise NotImplementedError

    def get_by_date_range(self, start: date, end: date) -> Sequence[Payment]:
        """Oldest first."""

        raise NotImplementedError

    def get_all(self) -> Sequence[Payment]:
        raise NotImplementedError


def _to_document(p: Payment) -> dict:
    return {
        "student_id": p.student_id,
        "amount": str(p.amount),
        "date": p.date.strftime(DAY_KEY_FORMAT),
        "payment_method": p.payment_method.value,
        "notes": p.notes,
        "admin_id": p.admin_id,
        "created_at": to_timestamp(p.created_at) if p.created_at else None,
    }


def _from_document(payment_id: str, doc: dict) -> Payment:
    return Payment(
        payment_id=payment_id,
        student_id=str(doc["student_id"]),
        amount=Decimal(str(doc["amount"])),
        date=parse_iso_date(doc["date"]),
        payment_method=PaymentMethod(doc.get("payment_method", PaymentMethod.OTHER.value)),
        notes=doc.get("notes"),
        admin_id=doc.get("admin_id"),
        created_at=from_timestamp(doc["created_at"]) if doc.get("created_at") else None,
    )


class DocumentPaymentRepository(PaymentRepository):
    def __init__(self, store: DocumentStore):
        self._store = store

    def create(self, payment: Payment) -> Payment:
        self._store.set(PAYMENTS, payment.payment_id, _to_document(payment))
        return payment

    def get_by_id(self, payment_id: str) -> Optional[Payment]:
        doc = self._store.get(PAYMENTS, str(payment_id))
        return _from_document(str(payment_id), doc) if doc else None

    def get_by_student(self, student_id: str) -> Sequence[Payment]:
        docs = self._store.query(
            PAYMENTS,
            [QueryFilter("student_id", "==", str(student_id))],
            order_by=[OrderBy("date", descending=True)],
        )
        return [_from_document(d.id, d.data) for d in docs]

    def get_by_date_range(self, start: date, end: date) -> Sequence[Payment]:
        docs = self._store.query(
            PAYMENTS,
            [
                QueryFilter("date", ">=", start.strftime(DAY_KEY_FORMAT)),
                QueryFilter("date", "<=", end.strftime(DAY_KEY_FORMAT)),
            ],
            order_by=[OrderBy("date")],
        )
        return [_from_document(d.id, d.data) for d in docs]

    def get_all(self) -> Sequence[Payment]:
        docs = self._store.query(PAYMENTS, order_by=[OrderBy("date", descending=True)])
        return [_from_document(d.id, d.data) for d in docs]
