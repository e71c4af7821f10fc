from __future__ import annotations

import logging
import threading
from datetime import datetime, time, timezone, tzinfo
from typing import Any

from application.busy import BusyFlag
from application.confirmation import ConfirmationGate, PendingConfirmation
from application.metrics import LedgerMetrics, MetricsEngine
from application.validator import coerce_amount, parse_amount, require_label
from domain.errors import StoreError, ValidationError
from domain.models import Identity, Transaction, TransactionStatus, TransactionType
from domain.schemas import TransactionCreate
from infrastructure.events import Subscription
from infrastructure.store.document_store import (
    SERVER_TIMESTAMP,
    Document,
    DocumentStore,
    OrderBy,
    collection_path,
)

logger = logging.getLogger(__name__)

COLLECTION = "transactions"
FORECAST_TIME_OF_DAY = time(12, 0)
DELETE_PROMPT = "Are you sure you want to delete this transaction?"
LOAD_FAILED = "Failed to load transactions. Please try again."


def _coerce_enum(enum_cls: Any, raw: Any) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        return None


def _coerce_datetime(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str) and raw:
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None
    return None


class TransactionStoreAdapter:
    """
    Mirrors one user's ledger collection and issues writes against it.

    The mirror is an immutable tuple replaced wholesale on every snapshot.
    Snapshots from a subscription opened for an earlier identity are dropped.
    """

    def __init__(
        self,
        store: DocumentStore,
        namespace: str,
        tz: tzinfo | None = None,
        confirmations: ConfirmationGate | None = None,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._tz = tz or timezone.utc
        self._confirmations = confirmations or ConfirmationGate()
        self._metrics = MetricsEngine(self._tz)
        self._transactions: tuple[Transaction, ...] = ()
        self._identity: Identity | None = None
        self._subscription: Subscription | None = None
        self._generation = 0
        self._lock = threading.RLock()
        self.busy_flag = BusyFlag("TransactionStoreAdapter")
        self.last_error: str | None = None

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        return self._transactions

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def busy(self) -> bool:
        return self.busy_flag.busy

    @property
    def confirmations(self) -> ConfirmationGate:
        return self._confirmations

    def path_for(self, identity: Identity) -> str:
        return collection_path(self._namespace, identity.uid, COLLECTION)

    # ---- subscription lifecycle ----
    def bind(self, identity: Identity | None) -> None:
        with self._lock:
            if identity is not None and self._identity is not None and identity.uid == self._identity.uid and self._subscription is not None:
                return
            self._teardown()
            self._identity = identity
            if identity is None:
                self._transactions = ()
                return
            self._generation += 1
            generation = self._generation
            path = self.path_for(identity)

        logger.info("TransactionStoreAdapter bind uid=%s generation=%d", identity.uid, generation)
        subscription = self._store.subscribe(
            path,
            lambda docs: self._apply_snapshot(generation, docs),
            order_by=OrderBy("createdAt", descending=True),
            on_error=lambda exc: self._on_subscription_error(generation, exc),
        )
        with self._lock:
            if generation == self._generation:
                self._subscription = subscription
                return
        subscription.unsubscribe()

    def clear(self) -> None:
        with self._lock:
            self._teardown()
            self._identity = None
            self._transactions = ()

    def _teardown(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _apply_snapshot(self, generation: int, docs: list[Document]) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("TransactionStoreAdapter dropped stale snapshot generation=%d", generation)
                return
            self._transactions = tuple(self._to_transaction(doc) for doc in docs)
            if self.last_error == LOAD_FAILED:
                self.last_error = None
        logger.info("TransactionStoreAdapter snapshot applied count=%d", len(docs))

    def _on_subscription_error(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        logger.error("TransactionStoreAdapter subscription failed: %s", exc)
        self.last_error = LOAD_FAILED

    def _to_transaction(self, doc: Document) -> Transaction:
        data = doc.data
        return Transaction(
            id=doc.id,
            amount=coerce_amount(data.get("amount")),
            category=str(data.get("category") or ""),
            type=_coerce_enum(TransactionType, data.get("type")),
            status=_coerce_enum(TransactionStatus, data.get("status")),
            effective_at=_coerce_datetime(data.get("date")),
            created_at=_coerce_datetime(data.get("createdAt")),
        )

    # ---- derived ----
    def metrics(self, now: datetime | None = None) -> LedgerMetrics:
        return self._metrics.metrics_for(self._transactions, now)

    # ---- writes ----
    def build_record(self, draft: TransactionCreate) -> dict[str, Any]:
        amount = parse_amount(draft.amount)
        category = require_label(draft.category, "Please enter a category.")
        status = TransactionStatus(draft.status)
        if status == TransactionStatus.FORECASTED:
            if draft.date is None:
                raise ValidationError("Please select a date for forecasted transactions.")
            effective: Any = datetime.combine(draft.date, FORECAST_TIME_OF_DAY, tzinfo=self._tz)
        else:
            effective = SERVER_TIMESTAMP
        return {
            "amount": amount,
            "category": category,
            "type": TransactionType(draft.type).value,
            "status": status.value,
            "date": effective,
            "createdAt": SERVER_TIMESTAMP,
        }

    def create(self, draft: TransactionCreate) -> str:
        identity = self._identity
        if identity is None:
            raise ValidationError("Please log in to add transactions.")
        record = self.build_record(draft)

        with self.busy_flag.hold("create"):
            self.last_error = None
            try:
                doc_id = self._store.insert(self.path_for(identity), record)
            except Exception as exc:
                logger.exception("TransactionStoreAdapter create failed uid=%s", identity.uid)
                self.last_error = "Failed to add transaction. Please try again."
                raise StoreError("Failed to add transaction. Please try again.") from exc
        logger.info("TransactionStoreAdapter created id=%s status=%s", doc_id, record["status"])
        return doc_id

    def request_delete(self, transaction_id: str) -> PendingConfirmation:
        return self._confirmations.request(DELETE_PROMPT, lambda: self.delete(transaction_id))

    def delete(self, transaction_id: str) -> None:
        identity = self._identity
        if identity is None:
            self.last_error = "Database or user not ready for deletion."
            raise StoreError("Database or user not ready for deletion.")

        with self.busy_flag.hold("delete"):
            self.last_error = None
            try:
                self._store.delete(self.path_for(identity), transaction_id)
            except Exception as exc:
                logger.exception("TransactionStoreAdapter delete failed id=%s", transaction_id)
                self.last_error = "Failed to delete transaction. Please try again."
                raise StoreError("Failed to delete transaction. Please try again.") from exc
        logger.info("TransactionStoreAdapter deleted id=%s", transaction_id)
