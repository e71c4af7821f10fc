from __future__ import annotations

import logging
from dataclasses import dataclass

from application.budget import BudgetStoreAdapter
from application.forecast import ForecastService
from application.session import SessionManager
from application.transactions import TransactionStoreAdapter
from infrastructure.identity.firebase_provider import FirebaseIdentityProvider
from infrastructure.identity.memory_provider import InMemoryIdentityProvider
from infrastructure.identity.provider import IdentityProvider
from infrastructure.llm.gemini_client import GeminiClient
from infrastructure.settings import Settings
from infrastructure.store.document_store import DocumentStore
from infrastructure.store.json_store import JsonFileDocumentStore
from infrastructure.store.memory_store import InMemoryDocumentStore
from llm.forecaster import ForecastLLM

logger = logging.getLogger(__name__)


@dataclass
class LedgerApp:
    settings: Settings
    session: SessionManager
    transactions: TransactionStoreAdapter


@dataclass
class BudgetApp:
    settings: Settings
    session: SessionManager
    items: BudgetStoreAdapter
    forecasts: ForecastService


def build_identity_provider(settings: Settings) -> IdentityProvider:
    if settings.identity_backend == "firebase":
        return FirebaseIdentityProvider()
    if settings.identity_backend == "memory":
        return InMemoryIdentityProvider()
    raise ValueError(f"Unknown IDENTITY_BACKEND: {settings.identity_backend!r}")


def build_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "json":
        return JsonFileDocumentStore(settings.store_path)
    if settings.store_backend == "memory":
        return InMemoryDocumentStore()
    raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend!r}")


def build_ledger_app(
    settings: Settings | None = None,
    identity_provider: IdentityProvider | None = None,
    store: DocumentStore | None = None,
) -> LedgerApp:
    settings = settings or Settings.from_env()
    session = SessionManager(
        identity_provider or build_identity_provider(settings),
        initial_auth_token=settings.initial_auth_token,
    )
    transactions = TransactionStoreAdapter(
        store or build_store(settings),
        namespace=settings.namespace,
        tz=settings.tzinfo,
    )
    session.subscribe(transactions.bind)
    session.on_logout(transactions.clear)
    session.start()
    logger.info("Ledger app ready namespace=%s uid=%s", settings.namespace, session.identity.uid if session.identity else None)
    return LedgerApp(settings=settings, session=session, transactions=transactions)


def build_budget_app(
    settings: Settings | None = None,
    identity_provider: IdentityProvider | None = None,
    store: DocumentStore | None = None,
    forecast_llm: ForecastLLM | None = None,
) -> BudgetApp:
    settings = settings or Settings.from_env()
    session = SessionManager(
        identity_provider or build_identity_provider(settings),
        initial_auth_token=settings.initial_auth_token,
    )
    items = BudgetStoreAdapter(
        store or build_store(settings),
        namespace=settings.namespace,
        tz=settings.tzinfo,
        atomic_summary=settings.atomic_summary,
    )
    forecasts = ForecastService(forecast_llm or ForecastLLM(GeminiClient(), months_ahead=settings.forecast_months))
    session.subscribe(items.bind)
    session.on_logout(items.clear)
    session.on_logout(forecasts.clear)
    session.start()
    logger.info("Budget app ready namespace=%s uid=%s", settings.namespace, session.identity.uid if session.identity else None)
    return BudgetApp(settings=settings, session=session, items=items, forecasts=forecasts)
