from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Sequence

from application.validator import coerce_amount
from domain.models import BudgetItem, BudgetSummary, Transaction, TransactionStatus, TransactionType

logger = logging.getLogger(__name__)

WINDOW_DAYS = 30


@dataclass(frozen=True)
class CashFlow:
    income: float = 0.0
    expenses: float = 0.0

    @property
    def net(self) -> float:
        return self.income - self.expenses


@dataclass(frozen=True)
class LedgerMetrics:
    total_income: float = 0.0
    total_expenses: float = 0.0
    actual_cash_flow: CashFlow = field(default_factory=CashFlow)
    forecast_cash_flow: CashFlow = field(default_factory=CashFlow)

    @property
    def balance(self) -> float:
        return self.total_income - self.total_expenses


def _local_now(now: datetime | None, tz: tzinfo | None) -> datetime:
    if now is None:
        return datetime.now(tz or timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz or timezone.utc)
    return now.astimezone(tz) if tz is not None else now


def _aware(value: datetime, tz: tzinfo) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=tz)


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def end_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def trailing_window_start(now: datetime | None = None, tz: tzinfo | None = None, days: int = WINDOW_DAYS) -> datetime:
    local = _local_now(now, tz)
    return start_of_day(local.date() - timedelta(days=days), local.tzinfo)


def forward_window(now: datetime | None = None, tz: tzinfo | None = None, days: int = WINDOW_DAYS) -> tuple[datetime, datetime]:
    local = _local_now(now, tz)
    today = local.date()
    return start_of_day(today, local.tzinfo), end_of_day(today + timedelta(days=days), local.tzinfo)


def _sum(transactions: Iterable[Transaction], txn_type: TransactionType, status: TransactionStatus | None = None) -> float:
    return sum(
        coerce_amount(t.amount)
        for t in transactions
        if t.type == txn_type and (status is None or t.status == status)
    )


def total_income(transactions: Iterable[Transaction]) -> float:
    return _sum(transactions, TransactionType.INCOME, TransactionStatus.ACTUAL)


def total_expenses(transactions: Iterable[Transaction]) -> float:
    return _sum(transactions, TransactionType.EXPENSE, TransactionStatus.ACTUAL)


def balance(transactions: Sequence[Transaction]) -> float:
    return total_income(transactions) - total_expenses(transactions)


def _cash_flow(transactions: Iterable[Transaction], status: TransactionStatus, start: datetime, end: datetime | None) -> CashFlow:
    income = 0.0
    expenses = 0.0
    for t in transactions:
        if t.status != status or t.effective_at is None:
            continue
        when = _aware(t.effective_at, start.tzinfo)
        if when < start or (end is not None and when > end):
            continue
        if t.type == TransactionType.INCOME:
            income += coerce_amount(t.amount)
        elif t.type == TransactionType.EXPENSE:
            expenses += coerce_amount(t.amount)
    return CashFlow(income=income, expenses=expenses)


def actual_cash_flow(
    transactions: Iterable[Transaction],
    now: datetime | None = None,
    tz: tzinfo | None = None,
    days: int = WINDOW_DAYS,
) -> CashFlow:
    """Actual entries dated on or after the start of the day `days` days ago."""
    return _cash_flow(transactions, TransactionStatus.ACTUAL, trailing_window_start(now, tz, days), None)


def forecast_cash_flow(
    transactions: Iterable[Transaction],
    now: datetime | None = None,
    tz: tzinfo | None = None,
    days: int = WINDOW_DAYS,
) -> CashFlow:
    """Forecasted entries from the start of today through the end of day `today + days`."""
    start, end = forward_window(now, tz, days)
    return _cash_flow(transactions, TransactionStatus.FORECASTED, start, end)


def compute_metrics(transactions: Sequence[Transaction], now: datetime | None = None, tz: tzinfo | None = None) -> LedgerMetrics:
    local = _local_now(now, tz)
    return LedgerMetrics(
        total_income=total_income(transactions),
        total_expenses=total_expenses(transactions),
        actual_cash_flow=actual_cash_flow(transactions, local),
        forecast_cash_flow=forecast_cash_flow(transactions, local),
    )


def summarize_items(items: Iterable[BudgetItem]) -> BudgetSummary:
    summary = BudgetSummary()
    for item in items:
        if item.type is not None:
            summary = summary.apply(item.type, coerce_amount(item.amount))
    return summary


class MetricsEngine:
    """
    Recomputes ledger metrics only when the transaction tuple is replaced.

    Both windows move on local day boundaries, so a cached result stays exact
    for the rest of the calendar day it was computed on.
    """

    def __init__(self, tz: tzinfo | None = None):
        self._tz = tz or timezone.utc
        self._key: tuple[int, date] | None = None
        self._source: Sequence[Transaction] | None = None
        self._cached: LedgerMetrics | None = None
        self._lock = threading.Lock()

    def metrics_for(self, transactions: Sequence[Transaction], now: datetime | None = None) -> LedgerMetrics:
        local = _local_now(now, self._tz)
        key = (id(transactions), local.date())
        with self._lock:
            if self._cached is not None and self._key == key and self._source is transactions:
                return self._cached
        metrics = compute_metrics(transactions, local)
        with self._lock:
            self._key = key
            self._source = transactions
            self._cached = metrics
        logger.debug("MetricsEngine recomputed transactions=%d", len(transactions))
        return metrics
