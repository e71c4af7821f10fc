from __future__ import annotations

import logging

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse

from application.metrics import CashFlow, LedgerMetrics
from application.session import SessionManager
from domain.errors import BudgetAppError
from domain.models import BudgetItem, Transaction
from domain.schemas import (
    AuthModeUpdate,
    BudgetOut,
    CashFlowOut,
    ConfirmationDecision,
    ConfirmationOut,
    Credentials,
    ForecastOut,
    ItemCreate,
    ItemOut,
    LedgerMetricsOut,
    SessionOut,
    SummaryOut,
    TransactionCreate,
    TransactionListOut,
    TransactionOut,
)
from infrastructure.settings import Settings
from interface.container import BudgetApp, LedgerApp, build_budget_app, build_ledger_app, build_store

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "validation": 400,
    "auth": 401,
    "store": 502,
    "forecast": 502,
}

INDEX_HTML = """
<!doctype html>
<html>
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Budget Pulse</title>
    <style>
      body { font-family: sans-serif; margin: 2rem; max-width: 900px; }
      form { display: grid; gap: .5rem; margin-bottom: 1.5rem; }
      input, select, button { font: inherit; padding: .5rem; }
      .row { display: grid; grid-template-columns: repeat(4, 1fr); gap: .5rem; }
      pre { background: #111; color: #eee; padding: 1rem; overflow: auto; border-radius: 8px; }
    </style>
  </head>
  <body>
    <h1>Budget Pulse</h1>
    <form id="tx-form">
      <div class="row">
        <input name="amount" placeholder="Amount" />
        <input name="category" placeholder="Category" />
        <select name="type"><option>expense</option><option>income</option></select>
        <select name="status"><option>actual</option><option>forecasted</option></select>
      </div>
      <input name="date" type="date" />
      <button type="submit">Add transaction</button>
    </form>
    <button id="refresh">Refresh</button>
    <pre id="result">Loading...</pre>
    <script>
      const result = document.getElementById('result');
      async function refresh() {
        const res = await fetch('/transactions');
        result.textContent = JSON.stringify(await res.json(), null, 2);
      }
      document.getElementById('refresh').addEventListener('click', refresh);
      document.getElementById('tx-form').addEventListener('submit', async (e) => {
        e.preventDefault();
        const form = e.target;
        const payload = {
          amount: form.amount.value,
          category: form.category.value,
          type: form.type.value,
          status: form.status.value,
          date: form.date.value || null
        };
        const res = await fetch('/transactions', {
          method: 'POST',
          headers: { 'Content-Type': 'application/json' },
          body: JSON.stringify(payload)
        });
        if (!res.ok) { alert((await res.json()).error); return; }
        form.reset();
        refresh();
      });
      refresh();
    </script>
  </body>
</html>
"""

BUDGET_INDEX_HTML = """
<!doctype html>
<html>
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Budget Pulse</title>
    <style>
      body { font-family: sans-serif; margin: 2rem; max-width: 900px; }
      form { display: grid; gap: .5rem; margin-bottom: 1.5rem; }
      input, select, button { font: inherit; padding: .5rem; }
      .row { display: grid; grid-template-columns: repeat(4, 1fr); gap: .5rem; }
      pre { background: #111; color: #eee; padding: 1rem; overflow: auto; border-radius: 8px; }
    </style>
  </head>
  <body>
    <h1>Budget Pulse</h1>
    <form id="item-form">
      <div class="row">
        <input name="amount" placeholder="Amount" />
        <input name="description" placeholder="Description" />
        <select name="type"><option>expense</option><option>income</option></select>
        <input name="date" type="date" />
      </div>
      <button type="submit">Add item</button>
    </form>
    <button id="forecast">Generate forecast</button>
    <pre id="result">Loading...</pre>
    <pre id="forecast-result"></pre>
    <script>
      const result = document.getElementById('result');
      const forecastResult = document.getElementById('forecast-result');
      async function refresh() {
        const res = await fetch('/budget');
        result.textContent = JSON.stringify(await res.json(), null, 2);
      }
      document.getElementById('forecast').addEventListener('click', async () => {
        forecastResult.textContent = 'Generating...';
        const res = await fetch('/budget/forecast', { method: 'POST' });
        const body = await res.json();
        forecastResult.textContent = res.ok ? JSON.stringify(body.forecasts, null, 2) : body.error;
      });
      document.getElementById('item-form').addEventListener('submit', async (e) => {
        e.preventDefault();
        const form = e.target;
        const payload = {
          amount: form.amount.value,
          description: form.description.value,
          type: form.type.value,
          date: form.date.value || null
        };
        const res = await fetch('/budget/items', {
          method: 'POST',
          headers: { 'Content-Type': 'application/json' },
          body: JSON.stringify(payload)
        });
        if (!res.ok) { alert((await res.json()).error); return; }
        form.reset();
        refresh();
      });
      refresh();
    </script>
  </body>
</html>
"""


# ---- response mapping ----
def _session_out(session: SessionManager) -> SessionOut:
    identity = session.identity
    return SessionOut(
        uid=identity.uid if identity else None,
        email=identity.email if identity else None,
        is_anonymous=identity.is_anonymous if identity else False,
        ready=session.ready,
        busy=session.busy,
        auth_mode=session.auth_mode,
        error=session.last_error,
    )


def _cash_flow_out(flow: CashFlow) -> CashFlowOut:
    return CashFlowOut(income=flow.income, expenses=flow.expenses, net=flow.net)


def _metrics_out(metrics: LedgerMetrics) -> LedgerMetricsOut:
    return LedgerMetricsOut(
        total_income=metrics.total_income,
        total_expenses=metrics.total_expenses,
        balance=metrics.balance,
        actual_cash_flow_30d=_cash_flow_out(metrics.actual_cash_flow),
        forecast_cash_flow_30d=_cash_flow_out(metrics.forecast_cash_flow),
    )


def _transaction_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        amount=txn.amount,
        category=txn.category,
        type=txn.type.value if txn.type else None,
        status=txn.status.value if txn.status else None,
        date=txn.effective_at,
        created_at=txn.created_at,
    )


def _item_out(item: BudgetItem) -> ItemOut:
    return ItemOut(
        id=item.id,
        amount=item.amount,
        description=item.description,
        type=item.type.value if item.type else None,
        date=item.date,
    )


# ---- routers ----
def ledger_router(ledger: LedgerApp) -> APIRouter:
    router = APIRouter(tags=["ledger"])

    @router.get("/session", response_model=SessionOut)
    def get_session() -> SessionOut:
        return _session_out(ledger.session)

    @router.post("/session/register", response_model=SessionOut)
    def register(body: Credentials) -> SessionOut:
        ledger.session.register(body.email, body.password)
        return _session_out(ledger.session)

    @router.post("/session/login", response_model=SessionOut)
    def login(body: Credentials) -> SessionOut:
        ledger.session.login(body.email, body.password)
        return _session_out(ledger.session)

    @router.post("/session/logout", response_model=SessionOut)
    def logout() -> SessionOut:
        ledger.session.logout()
        return _session_out(ledger.session)

    @router.put("/session/mode", response_model=SessionOut)
    def set_mode(body: AuthModeUpdate) -> SessionOut:
        ledger.session.set_auth_mode(body.mode)
        return _session_out(ledger.session)

    @router.get("/transactions", response_model=TransactionListOut)
    def list_transactions() -> TransactionListOut:
        adapter = ledger.transactions
        snapshot = adapter.transactions
        return TransactionListOut(
            transactions=[_transaction_out(t) for t in snapshot],
            metrics=_metrics_out(adapter.metrics()),
            error=adapter.last_error,
        )

    @router.post("/transactions", status_code=201)
    def create_transaction(body: TransactionCreate) -> dict[str, str]:
        return {"id": ledger.transactions.create(body)}

    @router.post("/transactions/{transaction_id}/delete", response_model=ConfirmationOut)
    def request_delete(transaction_id: str) -> ConfirmationOut:
        prompt = ledger.transactions.request_delete(transaction_id)
        return ConfirmationOut(token=prompt.token, message=prompt.message)

    @router.post("/confirmations/{token}")
    def resolve_confirmation(token: str, body: ConfirmationDecision) -> dict[str, str]:
        gate = ledger.transactions.confirmations
        try:
            if body.confirm:
                gate.confirm(token)
                return {"status": "confirmed"}
            gate.cancel(token)
            return {"status": "cancelled"}
        except KeyError:
            raise HTTPException(status_code=404, detail="No pending confirmation for this token.") from None

    @router.get("/metrics", response_model=LedgerMetricsOut)
    def get_metrics() -> LedgerMetricsOut:
        return _metrics_out(ledger.transactions.metrics())

    return router


def budget_router(budget: BudgetApp) -> APIRouter:
    router = APIRouter(prefix="/budget", tags=["budget"])

    def _budget_out() -> BudgetOut:
        adapter = budget.items
        summary = adapter.summary
        return BudgetOut(
            items=[_item_out(item) for item in adapter.items],
            summary=SummaryOut(
                budget=summary.budget,
                income=summary.income,
                expense=summary.expense,
                consistent=adapter.summary_consistent,
            ),
            error=adapter.last_error,
        )

    def _forecast_out() -> ForecastOut:
        service = budget.forecasts
        return ForecastOut(
            forecasts=list(service.forecasts),
            chart=service.chart_series(),
            busy=service.busy,
            error=service.last_error,
        )

    @router.get("/session", response_model=SessionOut)
    def get_session() -> SessionOut:
        return _session_out(budget.session)

    @router.get("", response_model=BudgetOut)
    def get_budget() -> BudgetOut:
        return _budget_out()

    @router.post("/items", status_code=201)
    def create_item(body: ItemCreate) -> dict[str, str]:
        return {"id": budget.items.create(body)}

    @router.post("/reconcile", response_model=BudgetOut)
    def reconcile() -> BudgetOut:
        budget.items.reconcile()
        return _budget_out()

    @router.get("/forecast", response_model=ForecastOut)
    def get_forecast() -> ForecastOut:
        return _forecast_out()

    @router.post("/forecast", response_model=ForecastOut)
    def generate_forecast() -> ForecastOut:
        budget.forecasts.generate(budget.items.items)
        return _forecast_out()

    return router


def create_app(
    settings: Settings | None = None,
    ledger: LedgerApp | None = None,
    budget: BudgetApp | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    wants_ledger = settings.variant in ("ledger", "both")
    wants_budget = settings.variant in ("budget", "both")
    if (wants_ledger and ledger is None) or (wants_budget and budget is None):
        store = build_store(settings)
        if wants_ledger and ledger is None:
            ledger = build_ledger_app(settings, store=store)
        if wants_budget and budget is None:
            budget = build_budget_app(settings, store=store)

    app = FastAPI(title="Budget Pulse API")
    app.state.ledger = ledger
    app.state.budget = budget

    @app.exception_handler(BudgetAppError)
    async def handle_app_error(_request: Request, exc: BudgetAppError) -> JSONResponse:
        status = ERROR_STATUS.get(exc.kind, 500)
        if status >= 500:
            logger.warning("Request failed kind=%s message=%s", exc.kind, exc.message)
        return JSONResponse(status_code=status, content={"error": exc.message, "kind": exc.kind})

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return INDEX_HTML if ledger is not None else BUDGET_INDEX_HTML

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "variant": settings.variant}

    if ledger is not None:
        app.include_router(ledger_router(ledger))
    if budget is not None:
        app.include_router(budget_router(budget))
    return app


app = create_app()
