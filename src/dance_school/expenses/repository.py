from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol, Sequence

from ..common.datetime_utils import parse_iso_date
from ..core.constants import DAY_KEY_FORMAT, EXPENSES
from ..database.document_store import DocumentStore, OrderBy, QueryFilter
from .model import Expense


class ExpenseRepository(Protocol):
    """Read side of the expense collaborator; its CRUD lives elsewhere."""

    def get_by_date_range(self, start: date, end: date) -> Sequence[Expense]:
        raise NotImplementedError


class DocumentExpenseRepository(ExpenseRepository):
    def __init__(self, store: DocumentStore):
        self._store = store

    def get_by_date_range(self, start: date, end: date) -> Sequence[Expense]:
        docs = self._store.query(
            EXPENSES,
            [
                QueryFilter("date", ">=", start.strftime(DAY_KEY_FORMAT)),
                QueryFilter("date", "<=", end.strftime(DAY_KEY_FORMAT)),
            ],
            order_by=[OrderBy("date")],
        )
        return [
            Expense(
                expense_id=d.id,
                amount=Decimal(str(d.data.get("amount", "0"))),
                date=parse_iso_date(d.data["date"]),
                category=d.data.get("category") or "other",
                description=d.data.get("description"),
            )
            for d in docs
        ]
