from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError as PydanticValidationError

from domain.errors import ForecastError
from domain.models import BudgetItem
from domain.schemas import ForecastRecord
from infrastructure.llm.gemini_client import GeminiClient

logger = logging.getLogger(__name__)

# Structured-output schema handed to the provider alongside the prompt.
FORECAST_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "month": {"type": "STRING"},
            "predictedBudget": {"type": "NUMBER"},
            "predictedIncome": {"type": "NUMBER"},
            "predictedExpense": {"type": "NUMBER"},
        },
        "required": ["month", "predictedBudget", "predictedIncome", "predictedExpense"],
        "propertyOrdering": ["month", "predictedBudget", "predictedIncome", "predictedExpense"],
    },
}


def format_item_date(item: BudgetItem) -> str:
    return item.date.strftime("%m/%d/%Y") if item.date else "N/A"


class ForecastLLM:
    """Builds forecast prompts and parses the provider's constrained JSON reply."""

    def __init__(self, client: GeminiClient, months_ahead: int = 3):
        self._client = client
        self._months_ahead = months_ahead

    def build_prompt(self, history: Sequence[BudgetItem]) -> str:
        lines = [
            f"- {item.type.value if item.type else 'unknown'}: {item.amount:.2f} ({item.description}) on {format_item_date(item)}"
            for item in history
        ]
        return "\n".join(
            [
                "Based on the following budget transaction history, predict the total budget, "
                f"income and expense for each of the next {self._months_ahead} months.",
                "Return a JSON array where each element has the fields "
                "month (e.g. \"January 2026\"), predictedBudget, predictedIncome and predictedExpense.",
                "",
                "Transaction history:",
                *lines,
            ]
        )

    def parse_response(self, body: Dict[str, Any]) -> List[ForecastRecord]:
        text = self._extract_text(body)
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("ForecastLLM response text is not valid JSON: %s", exc)
            raise ForecastError("Failed to parse the forecast response.") from exc

        if not isinstance(payload, list):
            raise ForecastError("Forecast response was not a list of monthly predictions.")
        try:
            return [ForecastRecord.model_validate(row) for row in payload]
        except PydanticValidationError as exc:
            logger.warning("ForecastLLM response rows did not match schema: %s", exc)
            raise ForecastError("Forecast response did not match the expected schema.") from exc

    def generate_forecast(self, history: Sequence[BudgetItem]) -> List[ForecastRecord]:
        logger.info("ForecastLLM generate_forecast start history=%d months=%d", len(history), self._months_ahead)
        prompt = self.build_prompt(history)
        body = self._client.generate_content(prompt, FORECAST_RESPONSE_SCHEMA)
        records = self.parse_response(body)
        logger.info("ForecastLLM accepted forecast months=%d", len(records))
        return records

    def _extract_text(self, body: Dict[str, Any]) -> str:
        try:
            text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            logger.warning("ForecastLLM response missing candidate text")
            raise ForecastError("Forecast response did not contain any text.") from exc
        if not isinstance(text, str) or not text.strip():
            raise ForecastError("Forecast response did not contain any text.")
        return text
