from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

CalendarDate = date

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%m-%d-%Y")


def coerce_calendar_date(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return value

    text = value.strip()
    if not text:
        return None

    # Canonical format first.
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return value


class Credentials(BaseModel):
    email: str = ""
    password: str = ""


class AuthModeUpdate(BaseModel):
    mode: Literal["login", "register"]


class SessionOut(BaseModel):
    uid: Optional[str] = None
    email: Optional[str] = None
    is_anonymous: bool = False
    ready: bool = False
    busy: bool = False
    auth_mode: str = "login"
    error: Optional[str] = None


class TransactionCreate(BaseModel):
    """
    Form payload for a new ledger entry.

    `amount` is accepted raw (string or number) and checked by the adapter so
    that bad input surfaces as a user notice rather than a schema rejection.
    `date` is required only when `status == "forecasted"`.
    """

    amount: Any = None
    category: str = ""
    type: Literal["income", "expense"] = "expense"
    status: Literal["actual", "forecasted"] = "actual"
    date: Optional[CalendarDate] = Field(default=None, description="Calendar date in YYYY-MM-DD format.")

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value: Any) -> Any:
        return coerce_calendar_date(value)


class TransactionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    id: str
    amount: float
    category: str
    type: Optional[str] = None
    status: Optional[str] = None
    date: Optional[datetime] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class CashFlowOut(BaseModel):
    income: float = 0.0
    expenses: float = 0.0
    net: float = 0.0


class LedgerMetricsOut(BaseModel):
    total_income: float = 0.0
    total_expenses: float = 0.0
    balance: float = 0.0
    actual_cash_flow_30d: CashFlowOut = Field(default_factory=CashFlowOut)
    forecast_cash_flow_30d: CashFlowOut = Field(default_factory=CashFlowOut)


class TransactionListOut(BaseModel):
    transactions: List[TransactionOut] = Field(default_factory=list)
    metrics: LedgerMetricsOut = Field(default_factory=LedgerMetricsOut)
    error: Optional[str] = None


class ConfirmationOut(BaseModel):
    token: str
    message: str


class ConfirmationDecision(BaseModel):
    confirm: bool


class ItemCreate(BaseModel):
    amount: Any = None
    description: str = ""
    type: Literal["income", "expense"] = "expense"
    date: Optional[CalendarDate] = Field(default=None, description="Calendar date in YYYY-MM-DD format; defaults to today.")

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value: Any) -> Any:
        return coerce_calendar_date(value)


class ItemOut(BaseModel):
    id: str
    amount: float
    description: str
    type: Optional[str] = None
    date: Optional[CalendarDate] = None


class SummaryOut(BaseModel):
    budget: float = 0.0
    income: float = 0.0
    expense: float = 0.0
    consistent: bool = True


class BudgetOut(BaseModel):
    items: List[ItemOut] = Field(default_factory=list)
    summary: SummaryOut = Field(default_factory=SummaryOut)
    error: Optional[str] = None


class ForecastRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    month: str
    predicted_budget: float = Field(alias="predictedBudget")
    predicted_income: float = Field(alias="predictedIncome")
    predicted_expense: float = Field(alias="predictedExpense")


class ForecastOut(BaseModel):
    forecasts: List[ForecastRecord] = Field(default_factory=list)
    chart: Dict[str, List[Any]] = Field(default_factory=dict)
    busy: bool = False
    error: Optional[str] = None
