from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class Expense:
    expense_id: str
    amount: Decimal
    date: date
    category: str
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.expense_id,
            "amount": str(self.amount),
            "date": self.date.strftime("%Y-%m-%d"),
            "category": self.category,
            "description": self.description,
        }
