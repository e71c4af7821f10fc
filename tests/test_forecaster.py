from __future__ import annotations

import json
import unittest
from datetime import date

from application.forecast import ForecastService
from domain.errors import ForecastError, ValidationError
from domain.models import BudgetItem, TransactionType
from llm.forecaster import FORECAST_RESPONSE_SCHEMA, ForecastLLM

HISTORY = (
    BudgetItem(id="a", amount=1200.0, description="Salary", type=TransactionType.INCOME, date=date(2026, 9, 1)),
    BudgetItem(id="b", amount=45.5, description="Groceries", type=TransactionType.EXPENSE, date=None),
)

GOOD_ROWS = [
    {"month": "November 2026", "predictedBudget": 900, "predictedIncome": 1200, "predictedExpense": 300},
    {"month": "December 2026", "predictedBudget": 850.5, "predictedIncome": 1200, "predictedExpense": 349.5},
]


def _body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class _StubClient:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def generate_content(self, prompt, response_schema):
        self.calls.append((prompt, response_schema))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class ForecastLLMTests(unittest.TestCase):
    def test_prompt_lists_every_item(self) -> None:
        llm = ForecastLLM(_StubClient([]), months_ahead=3)

        prompt = llm.build_prompt(HISTORY)

        self.assertIn("next 3 months", prompt)
        self.assertIn("- income: 1200.00 (Salary) on 09/01/2026", prompt)
        self.assertIn("- expense: 45.50 (Groceries) on N/A", prompt)

    def test_schema_is_sent_with_prompt(self) -> None:
        client = _StubClient([_body(json.dumps(GOOD_ROWS))])

        records = ForecastLLM(client).generate_forecast(HISTORY)

        self.assertIs(client.calls[0][1], FORECAST_RESPONSE_SCHEMA)
        self.assertEqual([r.month for r in records], ["November 2026", "December 2026"])
        self.assertEqual(records[1].predicted_budget, 850.5)

    def test_invalid_replies_raise_forecast_error(self) -> None:
        llm = ForecastLLM(_StubClient([]))
        bad_bodies = [
            {},
            _body(""),
            _body("not json at all"),
            _body(json.dumps({"month": "November 2026"})),
            _body(json.dumps([{"month": "November 2026", "predictedBudget": "lots"}])),
        ]
        for body in bad_bodies:
            with self.assertRaises(ForecastError):
                llm.parse_response(body)


class ForecastServiceTests(unittest.TestCase):
    def test_successful_forecast_replaces_previous(self) -> None:
        client = _StubClient([_body(json.dumps(GOOD_ROWS)), _body(json.dumps(GOOD_ROWS[:1]))])
        service = ForecastService(ForecastLLM(client))

        service.generate(HISTORY)
        service.generate(HISTORY)

        self.assertEqual(len(service.forecasts), 1)
        self.assertFalse(service.busy)

    def test_failure_keeps_previous_forecast(self) -> None:
        client = _StubClient([_body(json.dumps(GOOD_ROWS)), _body("{broken")])
        service = ForecastService(ForecastLLM(client))
        service.generate(HISTORY)
        previous = service.forecasts

        with self.assertLogs("application.forecast", level="WARNING"):
            with self.assertRaises(ForecastError):
                service.generate(HISTORY)

        self.assertIs(service.forecasts, previous)
        self.assertEqual(service.last_error, "Failed to parse the forecast response.")
        self.assertFalse(service.busy)

    def test_provider_failure_releases_busy(self) -> None:
        client = _StubClient([ForecastError("Forecast provider returned HTTP 503.")])
        service = ForecastService(ForecastLLM(client))

        with self.assertRaises(ForecastError):
            service.generate(HISTORY)

        self.assertFalse(service.busy)
        self.assertEqual(service.forecasts, ())

    def test_empty_history_is_rejected_without_calling_provider(self) -> None:
        client = _StubClient([])
        service = ForecastService(ForecastLLM(client))

        with self.assertRaises(ValidationError):
            service.generate(())

        self.assertEqual(client.calls, [])

    def test_chart_series_and_clear(self) -> None:
        service = ForecastService(ForecastLLM(_StubClient([_body(json.dumps(GOOD_ROWS))])))
        service.generate(HISTORY)

        chart = service.chart_series()

        self.assertEqual(chart["labels"], ["November 2026", "December 2026"])
        self.assertEqual(chart["budget"], [900.0, 850.5])
        self.assertEqual(chart["expense"], [300.0, 349.5])

        service.clear()
        self.assertEqual(service.chart_series()["labels"], [])


if __name__ == "__main__":
    unittest.main()
