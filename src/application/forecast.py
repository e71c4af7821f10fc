from __future__ import annotations

import logging
from typing import Any, Sequence

from application.busy import BusyFlag
from domain.errors import ForecastError, ValidationError
from domain.models import BudgetItem
from domain.schemas import ForecastRecord
from llm.forecaster import ForecastLLM

logger = logging.getLogger(__name__)


class ForecastService:
    """Holds the latest monthly forecast; a new one replaces it only on success."""

    def __init__(self, forecast_llm: ForecastLLM):
        self._forecast_llm = forecast_llm
        self._forecasts: tuple[ForecastRecord, ...] = ()
        self.busy_flag = BusyFlag("ForecastService")
        self.last_error: str | None = None

    @property
    def forecasts(self) -> tuple[ForecastRecord, ...]:
        return self._forecasts

    @property
    def busy(self) -> bool:
        return self.busy_flag.busy

    def generate(self, history: Sequence[BudgetItem]) -> tuple[ForecastRecord, ...]:
        if not history:
            raise ValidationError("Add at least one budget item before generating a forecast.")

        with self.busy_flag.hold("generate"):
            self.last_error = None
            try:
                records = self._forecast_llm.generate_forecast(history)
            except ForecastError as exc:
                logger.warning("ForecastService generate failed: %s", exc.message)
                self.last_error = exc.message
                raise
            self._forecasts = tuple(records)
        return self._forecasts

    def chart_series(self) -> dict[str, list[Any]]:
        forecasts = self._forecasts
        return {
            "labels": [f.month for f in forecasts],
            "budget": [f.predicted_budget for f in forecasts],
            "income": [f.predicted_income for f in forecasts],
            "expense": [f.predicted_expense for f in forecasts],
        }

    def clear(self) -> None:
        self._forecasts = ()
