from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionStatus(str, Enum):
    ACTUAL = "actual"
    FORECASTED = "forecasted"


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str | None = None
    is_anonymous: bool = False
    id_token: str | None = None


@dataclass(frozen=True)
class Transaction:
    """A ledger entry.

    `effective_at` is when the money moves (server time for actual entries,
    user-chosen for forecasted ones). `created_at` is when the record was
    written and only drives list ordering.
    """

    id: str
    amount: float
    category: str
    type: TransactionType | None
    status: TransactionStatus | None
    effective_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class BudgetItem:
    id: str
    amount: float
    description: str
    type: TransactionType | None
    date: date | None = None


@dataclass(frozen=True)
class BudgetSummary:
    budget: float = 0.0
    income: float = 0.0
    expense: float = 0.0

    def apply(self, txn_type: TransactionType, amount: float) -> "BudgetSummary":
        if txn_type == TransactionType.INCOME:
            return replace(self, budget=self.budget + amount, income=self.income + amount)
        return replace(self, budget=self.budget - amount, expense=self.expense + amount)

    def as_record(self) -> dict[str, float]:
        return {"budget": self.budget, "income": self.income, "expense": self.expense}
