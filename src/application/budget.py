from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone, tzinfo
from typing import Any

from application.busy import BusyFlag
from application.metrics import summarize_items
from application.validator import coerce_amount, parse_amount, require_label
from domain.errors import StoreError, ValidationError
from domain.models import BudgetItem, BudgetSummary, Identity, TransactionType
from domain.schemas import ItemCreate, coerce_calendar_date
from infrastructure.events import Subscription
from infrastructure.store.document_store import Document, DocumentStore, collection_path

logger = logging.getLogger(__name__)

ITEMS_COLLECTION = "items"
SUMMARY_COLLECTION = "budget"
SUMMARY_DOC_ID = "summary"
LOAD_FAILED = "Failed to load budget data. Please try again."


def _item_sort_key(item: BudgetItem) -> tuple[bool, date]:
    return (item.date is not None, item.date or date.min)


class BudgetStoreAdapter:
    """
    Mirrors one user's budget items plus the running summary document.

    Creating an item also moves the summary. With a store that supports
    multi-document transactions both writes commit together. Without one
    they are two separate writes, and a failure between them leaves the
    summary behind the item list until `reconcile()` runs.
    """

    def __init__(
        self,
        store: DocumentStore,
        namespace: str,
        tz: tzinfo | None = None,
        atomic_summary: bool = True,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._tz = tz or timezone.utc
        self._atomic_summary = atomic_summary
        self._items: tuple[BudgetItem, ...] = ()
        self._summary = BudgetSummary()
        self._identity: Identity | None = None
        self._subscriptions: list[Subscription] = []
        self._generation = 0
        self._lock = threading.RLock()
        self.busy_flag = BusyFlag("BudgetStoreAdapter")
        self.summary_consistent = True
        self.last_error: str | None = None

    @property
    def items(self) -> tuple[BudgetItem, ...]:
        return self._items

    @property
    def summary(self) -> BudgetSummary:
        return self._summary

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def busy(self) -> bool:
        return self.busy_flag.busy

    @property
    def uses_transactions(self) -> bool:
        return self._atomic_summary and self._store.supports_transactions

    def items_path(self, identity: Identity) -> str:
        return collection_path(self._namespace, identity.uid, ITEMS_COLLECTION)

    def summary_path(self, identity: Identity) -> str:
        return collection_path(self._namespace, identity.uid, SUMMARY_COLLECTION)

    # ---- subscription lifecycle ----
    def bind(self, identity: Identity | None) -> None:
        with self._lock:
            if identity is not None and self._identity is not None and identity.uid == self._identity.uid and self._subscriptions:
                return
            self._teardown()
            self._identity = identity
            if identity is None:
                self._items = ()
                self._summary = BudgetSummary()
                return
            self._generation += 1
            generation = self._generation

        logger.info("BudgetStoreAdapter bind uid=%s generation=%d", identity.uid, generation)
        subscriptions = [
            self._store.subscribe(
                self.items_path(identity),
                lambda docs: self._apply_items(generation, docs),
                on_error=lambda exc: self._on_subscription_error(generation, exc),
            ),
            self._store.subscribe(
                self.summary_path(identity),
                lambda docs: self._apply_summary(generation, docs),
                on_error=lambda exc: self._on_subscription_error(generation, exc),
            ),
        ]
        with self._lock:
            if generation == self._generation:
                self._subscriptions = subscriptions
                return
        for subscription in subscriptions:
            subscription.unsubscribe()

    def clear(self) -> None:
        with self._lock:
            self._teardown()
            self._identity = None
            self._items = ()
            self._summary = BudgetSummary()

    def _teardown(self) -> None:
        self._generation += 1
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def _apply_items(self, generation: int, docs: list[Document]) -> None:
        items = sorted((self._to_item(doc) for doc in docs), key=_item_sort_key, reverse=True)
        with self._lock:
            if generation != self._generation:
                logger.debug("BudgetStoreAdapter dropped stale items snapshot generation=%d", generation)
                return
            self._items = tuple(items)
            if self.last_error == LOAD_FAILED:
                self.last_error = None
        logger.info("BudgetStoreAdapter items snapshot applied count=%d", len(items))

    def _apply_summary(self, generation: int, docs: list[Document]) -> None:
        data = next((doc.data for doc in docs if doc.id == SUMMARY_DOC_ID), {})
        summary = BudgetSummary(
            budget=coerce_amount(data.get("budget")),
            income=coerce_amount(data.get("income")),
            expense=coerce_amount(data.get("expense")),
        )
        with self._lock:
            if generation != self._generation:
                return
            self._summary = summary

    def _on_subscription_error(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        logger.error("BudgetStoreAdapter subscription failed: %s", exc)
        self.last_error = LOAD_FAILED

    def _to_item(self, doc: Document) -> BudgetItem:
        data = doc.data
        raw_date = coerce_calendar_date(data.get("date"))
        try:
            txn_type = TransactionType(data.get("type"))
        except ValueError:
            txn_type = None
        return BudgetItem(
            id=doc.id,
            amount=coerce_amount(data.get("amount")),
            description=str(data.get("description") or ""),
            type=txn_type,
            date=raw_date if isinstance(raw_date, date) else None,
        )

    # ---- writes ----
    def build_record(self, draft: ItemCreate) -> dict[str, Any]:
        amount = parse_amount(draft.amount)
        description = require_label(draft.description, "Please enter a description.")
        day = draft.date or datetime.now(self._tz).date()
        return {
            "amount": amount,
            "description": description,
            "type": TransactionType(draft.type).value,
            "date": day.isoformat(),
        }

    def create(self, draft: ItemCreate) -> str:
        identity = self._identity
        if identity is None:
            raise ValidationError("Please wait for sign-in to finish before adding items.")
        record = self.build_record(draft)
        txn_type = TransactionType(record["type"])

        with self.busy_flag.hold("create"):
            self.last_error = None
            if self.uses_transactions:
                doc_id = self._create_atomic(identity, record, txn_type)
            else:
                doc_id = self._create_sequential(identity, record, txn_type)
        logger.info("BudgetStoreAdapter created id=%s type=%s", doc_id, txn_type.value)
        return doc_id

    def _create_atomic(self, identity: Identity, record: dict[str, Any], txn_type: TransactionType) -> str:
        try:
            with self._store.batch() as batch:
                current = batch.get(self.summary_path(identity), SUMMARY_DOC_ID) or {}
                base = BudgetSummary(
                    budget=coerce_amount(current.get("budget")),
                    income=coerce_amount(current.get("income")),
                    expense=coerce_amount(current.get("expense")),
                )
                doc_id = batch.insert(self.items_path(identity), record)
                batch.set_merge(
                    self.summary_path(identity),
                    SUMMARY_DOC_ID,
                    base.apply(txn_type, record["amount"]).as_record(),
                )
        except Exception as exc:
            logger.exception("BudgetStoreAdapter atomic create failed uid=%s", identity.uid)
            self.last_error = "Failed to add item. Please try again."
            raise StoreError("Failed to add item. Please try again.") from exc
        return doc_id

    def _create_sequential(self, identity: Identity, record: dict[str, Any], txn_type: TransactionType) -> str:
        try:
            doc_id = self._store.insert(self.items_path(identity), record)
        except Exception as exc:
            logger.exception("BudgetStoreAdapter item insert failed uid=%s", identity.uid)
            self.last_error = "Failed to add item. Please try again."
            raise StoreError("Failed to add item. Please try again.") from exc

        updated = self._summary.apply(txn_type, record["amount"])
        try:
            self._store.set_merge(self.summary_path(identity), SUMMARY_DOC_ID, updated.as_record())
        except Exception as exc:
            # The item is stored but the summary is not; totals now lag the item list.
            logger.exception("BudgetStoreAdapter summary update failed after item id=%s; summary is inconsistent", doc_id)
            self.summary_consistent = False
            self.last_error = "Item saved but the budget summary could not be updated."
            raise StoreError("Item saved but the budget summary could not be updated.") from exc
        return doc_id

    def reconcile(self) -> BudgetSummary:
        """Rewrite the summary document from the items currently mirrored."""
        identity = self._identity
        if identity is None:
            raise ValidationError("Please wait for sign-in to finish before reconciling.")

        summary = summarize_items(self._items)
        with self.busy_flag.hold("reconcile"):
            try:
                self._store.set_merge(self.summary_path(identity), SUMMARY_DOC_ID, summary.as_record())
            except Exception as exc:
                logger.exception("BudgetStoreAdapter reconcile failed uid=%s", identity.uid)
                self.last_error = "Failed to reconcile the budget summary."
                raise StoreError("Failed to reconcile the budget summary.") from exc
        self.summary_consistent = True
        self.last_error = None
        logger.info("BudgetStoreAdapter reconciled items=%d budget=%.2f", len(self._items), summary.budget)
        return summary
