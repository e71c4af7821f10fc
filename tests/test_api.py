from __future__ import annotations

import json
import unittest

from fastapi.testclient import TestClient

from domain.errors import ForecastError
from infrastructure.identity.memory_provider import InMemoryIdentityProvider
from infrastructure.settings import Settings
from infrastructure.store.memory_store import InMemoryDocumentStore
from interface.api import create_app
from interface.container import build_budget_app, build_ledger_app
from llm.forecaster import ForecastLLM

ROWS = [{"month": "November 2026", "predictedBudget": 500, "predictedIncome": 800, "predictedExpense": 300}]


class _StubClient:
    def __init__(self) -> None:
        self.responses: list = []

    def generate_content(self, prompt, response_schema):
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return {"candidates": [{"content": {"parts": [{"text": response}]}}]}


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        settings = Settings(variant="both", timezone="America/New_York", app_id="api-test")
        store = InMemoryDocumentStore()
        self.llm_client = _StubClient()
        ledger = build_ledger_app(settings, identity_provider=InMemoryIdentityProvider(), store=store)
        budget = build_budget_app(
            settings,
            identity_provider=InMemoryIdentityProvider(),
            store=store,
            forecast_llm=ForecastLLM(self.llm_client),
        )
        self.client = TestClient(create_app(settings, ledger=ledger, budget=budget))

    def test_health_and_index(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok", "variant": "both"})
        self.assertIn("Budget Pulse", self.client.get("/").text)

    def test_session_starts_anonymous(self) -> None:
        body = self.client.get("/session").json()

        self.assertTrue(body["ready"])
        self.assertTrue(body["is_anonymous"])
        self.assertEqual(body["auth_mode"], "login")

    def test_add_list_and_metrics(self) -> None:
        res = self.client.post("/transactions", json={"amount": "100", "category": "Salary", "type": "income"})
        self.assertEqual(res.status_code, 201)
        self.client.post("/transactions", json={"amount": 40, "category": "Groceries", "type": "expense"})

        body = self.client.get("/transactions").json()

        self.assertEqual([t["category"] for t in body["transactions"]], ["Groceries", "Salary"])
        self.assertIn("createdAt", body["transactions"][0])
        self.assertEqual(body["metrics"]["balance"], 60.0)
        self.assertEqual(self.client.get("/metrics").json()["actual_cash_flow_30d"]["net"], 60.0)

    def test_validation_error_maps_to_400(self) -> None:
        res = self.client.post("/transactions", json={"amount": "abc", "category": "Salary"})

        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json(), {"error": "Please enter a valid positive amount.", "kind": "validation"})
        self.assertEqual(self.client.get("/transactions").json()["transactions"], [])

    def test_forecasted_entry_requires_date(self) -> None:
        res = self.client.post("/transactions", json={"amount": 10, "category": "Trip", "status": "forecasted"})

        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["error"], "Please select a date for forecasted transactions.")

    def test_delete_requires_confirmation(self) -> None:
        doc_id = self.client.post("/transactions", json={"amount": 5, "category": "Coffee"}).json()["id"]

        prompt = self.client.post(f"/transactions/{doc_id}/delete").json()
        self.assertEqual(prompt["message"], "Are you sure you want to delete this transaction?")
        self.assertEqual(len(self.client.get("/transactions").json()["transactions"]), 1)

        res = self.client.post(f"/confirmations/{prompt['token']}", json={"confirm": True})

        self.assertEqual(res.json(), {"status": "confirmed"})
        self.assertEqual(self.client.get("/transactions").json()["transactions"], [])

    def test_cancel_and_unknown_token(self) -> None:
        doc_id = self.client.post("/transactions", json={"amount": 5, "category": "Coffee"}).json()["id"]
        prompt = self.client.post(f"/transactions/{doc_id}/delete").json()

        self.assertEqual(self.client.post(f"/confirmations/{prompt['token']}", json={"confirm": False}).json(), {"status": "cancelled"})
        self.assertEqual(self.client.post(f"/confirmations/{prompt['token']}", json={"confirm": True}).status_code, 404)
        self.assertEqual(len(self.client.get("/transactions").json()["transactions"]), 1)

    def test_auth_flow(self) -> None:
        bad = self.client.post("/session/login", json={"email": "nobody@example.com", "password": "whatever1"})
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(bad.json(), {"error": "INVALID_LOGIN_CREDENTIALS", "kind": "auth"})

        empty = self.client.post("/session/login", json={"email": "", "password": ""})
        self.assertEqual(empty.status_code, 400)

        self.assertEqual(self.client.put("/session/mode", json={"mode": "register"}).json()["auth_mode"], "register")
        registered = self.client.post("/session/register", json={"email": "sam@example.com", "password": "hunter22"}).json()
        self.assertEqual(registered["email"], "sam@example.com")
        self.assertFalse(registered["is_anonymous"])

        out = self.client.post("/session/logout").json()
        self.assertIsNone(out["uid"])
        self.assertEqual(out["auth_mode"], "login")

        res = self.client.post("/transactions", json={"amount": 5, "category": "Coffee"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["error"], "Please log in to add transactions.")

    def test_user_data_is_isolated(self) -> None:
        self.client.post("/transactions", json={"amount": 5, "category": "Anonymous coffee"})
        self.client.post("/session/register", json={"email": "sam@example.com", "password": "hunter22"})

        self.assertEqual(self.client.get("/transactions").json()["transactions"], [])

    def test_budget_items_and_summary(self) -> None:
        res = self.client.post("/budget/items", json={"amount": 800, "description": "Paycheck", "type": "income", "date": "2026-10-01"})
        self.assertEqual(res.status_code, 201)
        self.client.post("/budget/items", json={"amount": 300, "description": "Rent", "type": "expense", "date": "2026-10-02"})

        body = self.client.get("/budget").json()

        self.assertEqual([i["description"] for i in body["items"]], ["Rent", "Paycheck"])
        self.assertEqual(body["summary"], {"budget": 500.0, "income": 800.0, "expense": 300.0, "consistent": True})
        self.assertTrue(self.client.get("/budget/session").json()["ready"])

    def test_forecast_success_then_failure_keeps_previous(self) -> None:
        self.client.post("/budget/items", json={"amount": 800, "description": "Paycheck", "type": "income"})
        self.llm_client.responses = [json.dumps(ROWS), ForecastError("Forecast provider returned HTTP 503.")]

        first = self.client.post("/budget/forecast").json()
        self.assertEqual(first["chart"]["labels"], ["November 2026"])
        self.assertEqual(first["forecasts"][0]["predictedBudget"], 500.0)

        failed = self.client.post("/budget/forecast")
        self.assertEqual(failed.status_code, 502)
        self.assertEqual(failed.json()["kind"], "forecast")

        kept = self.client.get("/budget/forecast").json()
        self.assertEqual(len(kept["forecasts"]), 1)
        self.assertEqual(kept["error"], "Forecast provider returned HTTP 503.")
        self.assertFalse(kept["busy"])

    def test_forecast_without_history_is_rejected(self) -> None:
        res = self.client.post("/budget/forecast")

        self.assertEqual(res.status_code, 400)

    def test_reconcile_endpoint(self) -> None:
        self.client.post("/budget/items", json={"amount": 20, "description": "Tip", "type": "income"})

        body = self.client.post("/budget/reconcile").json()

        self.assertEqual(body["summary"]["budget"], 20.0)
        self.assertTrue(body["summary"]["consistent"])


class LedgerOnlyAppTests(unittest.TestCase):
    def test_budget_routes_absent_for_ledger_variant(self) -> None:
        settings = Settings(variant="ledger")
        ledger = build_ledger_app(settings, identity_provider=InMemoryIdentityProvider(), store=InMemoryDocumentStore())
        client = TestClient(create_app(settings, ledger=ledger))

        self.assertEqual(client.get("/budget").status_code, 404)
        self.assertEqual(client.get("/transactions").status_code, 200)


    def test_index_drives_ledger_endpoints(self) -> None:
        settings = Settings(variant="ledger")
        ledger = build_ledger_app(settings, identity_provider=InMemoryIdentityProvider(), store=InMemoryDocumentStore())
        page = TestClient(create_app(settings, ledger=ledger)).get("/").text

        self.assertIn("fetch('/transactions'", page)
        self.assertNotIn("/budget/items", page)


class BudgetOnlyAppTests(unittest.TestCase):
    def setUp(self) -> None:
        settings = Settings(variant="budget")
        budget = build_budget_app(
            settings,
            identity_provider=InMemoryIdentityProvider(),
            store=InMemoryDocumentStore(),
            forecast_llm=ForecastLLM(_StubClient()),
        )
        self.client = TestClient(create_app(settings, budget=budget))

    def test_index_drives_budget_endpoints(self) -> None:
        page = self.client.get("/").text

        self.assertIn("Budget Pulse", page)
        self.assertIn("/budget/items", page)
        self.assertIn("/budget/forecast", page)
        self.assertNotIn("fetch('/transactions'", page)

    def test_ledger_routes_absent_for_budget_variant(self) -> None:
        self.assertEqual(self.client.get("/transactions").status_code, 404)
        self.assertEqual(self.client.get("/budget").status_code, 200)


if __name__ == "__main__":
    unittest.main()
