from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections import Counter
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterator

from domain.errors import StoreError
from infrastructure.events import SnapshotStream, Subscription
from infrastructure.store.document_store import (
    SERVER_TIMESTAMP,
    Document,
    DocumentStore,
    OrderBy,
    SnapshotListener,
    WriteBatch,
    normalize_path,
)

logger = logging.getLogger(__name__)

Collections = dict[str, dict[str, dict[str, Any]]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class _MemoryBatch(WriteBatch):
    def __init__(self, store: "InMemoryDocumentStore", now: datetime):
        self._store = store
        self._now = now
        self.staged: dict[str, dict[str, dict[str, Any] | None]] = {}

    def get(self, path: str, doc_id: str) -> dict[str, Any] | None:
        key = normalize_path(path)
        staged = self.staged.get(key, {})
        if doc_id in staged:
            value = staged[doc_id]
            return copy.deepcopy(value) if value is not None else None
        return self._store.get(key, doc_id)

    def insert(self, path: str, record: dict[str, Any]) -> str:
        doc_id = self._store._allocate_id()
        self.staged.setdefault(normalize_path(path), {})[doc_id] = self._resolve(record)
        return doc_id

    def set_merge(self, path: str, doc_id: str, partial: dict[str, Any]) -> None:
        merged = self.get(path, doc_id) or {}
        merged.update(self._resolve(partial))
        self.staged.setdefault(normalize_path(path), {})[doc_id] = merged

    def delete(self, path: str, doc_id: str) -> None:
        self.staged.setdefault(normalize_path(path), {})[doc_id] = None

    def _resolve(self, record: dict[str, Any]) -> dict[str, Any]:
        resolved: dict[str, Any] = {}
        for key, value in record.items():
            resolved[key] = self._now if value is SERVER_TIMESTAMP else copy.deepcopy(value)
        return resolved


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local realtime document store.

    Every committed write re-publishes the full snapshot of each touched
    collection to its subscribers, ordered per subscription.
    """

    name = "memory"
    supports_transactions = True

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._clock = clock or _utc_now
        self._id_factory = id_factory or _new_id
        self._collections: Collections = {}
        self._issued_ids: set[str] = set()
        self._streams: dict[str, SnapshotStream[list[Document]]] = {}
        self._lock = threading.RLock()

    def subscribe(
        self,
        path: str,
        listener: SnapshotListener,
        order_by: OrderBy | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        key = normalize_path(path)

        def deliver(docs: list[Document]) -> None:
            try:
                ordered = self._ordered(docs, order_by)
            except Exception as exc:
                logger.exception("Store snapshot ordering failed path=%s order_by=%s", key, order_by)
                if on_error is not None:
                    on_error(exc)
                return
            listener(ordered)

        with self._lock:
            stream = self._streams.setdefault(key, SnapshotStream(name=key))
            subscription = stream.subscribe(deliver, on_error)
            logger.info("Store subscribe store=%s path=%s order_by=%s", self.name, key, order_by)
            try:
                snapshot = self._snapshot(key)
            except Exception as exc:
                logger.exception("Store initial snapshot failed path=%s", key)
                if on_error is not None:
                    on_error(exc)
                return subscription
            try:
                deliver(snapshot)
            except Exception:
                logger.exception("Store initial snapshot listener failed path=%s", key)
        return subscription

    def insert(self, path: str, record: dict[str, Any]) -> str:
        with self.batch() as batch:
            doc_id = batch.insert(path, record)
        return doc_id

    def delete(self, path: str, doc_id: str) -> None:
        with self.batch() as batch:
            batch.delete(path, doc_id)

    def set_merge(self, path: str, doc_id: str, partial: dict[str, Any]) -> None:
        with self.batch() as batch:
            batch.set_merge(path, doc_id, partial)

    def get(self, path: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._collections.get(normalize_path(path), {}).get(doc_id)
            return copy.deepcopy(record) if record is not None else None

    @contextmanager
    def batch(self) -> Iterator[WriteBatch]:
        with self._lock:
            staged = _MemoryBatch(self, self._clock())
            yield staged
            self._commit(staged.staged)

    def subscriber_count(self, path: str) -> int:
        with self._lock:
            stream = self._streams.get(normalize_path(path))
            return stream.listener_count() if stream else 0

    # ---- internals ----
    def _allocate_id(self) -> str:
        with self._lock:
            doc_id = self._id_factory()
            if doc_id in self._issued_ids:
                raise StoreError(f"Document id already issued: {doc_id}")
            self._issued_ids.add(doc_id)
            return doc_id

    def _commit(self, staged: dict[str, dict[str, dict[str, Any] | None]]) -> None:
        if not staged:
            return
        previous = copy.deepcopy(self._collections)
        for path, docs in staged.items():
            collection = self._collections.setdefault(path, {})
            for doc_id, record in docs.items():
                if record is None:
                    collection.pop(doc_id, None)
                else:
                    collection[doc_id] = record
        try:
            self._after_commit()
        except Exception as exc:
            self._collections = previous
            raise StoreError(f"{self.name} store commit failed: {exc}") from exc

        logger.debug("Store commit store=%s paths=%s", self.name, sorted(staged))
        for path in staged:
            stream = self._streams.get(path)
            if stream is None:
                continue
            try:
                snapshot = self._snapshot(path)
            except Exception as exc:
                logger.exception("Store snapshot build failed store=%s path=%s", self.name, path)
                stream.fail(exc)
                continue
            stream.publish(snapshot)

    def _after_commit(self) -> None:
        """Hook for subclasses that persist committed state."""

    def _snapshot(self, path: str) -> list[Document]:
        docs = []
        for doc_id, record in self._collections.get(path, {}).items():
            if not isinstance(record, dict):
                raise StoreError(f"Malformed document {path}/{doc_id}: expected an object, got {type(record).__name__}")
            docs.append(Document(id=doc_id, data=copy.deepcopy(record)))
        return docs

    def _ordered(self, docs: list[Document], order_by: OrderBy | None) -> list[Document]:
        """
        Sort on `order_by.field`, comparing only values of the field's dominant kind.

        Documents without the field, or holding a value of any other kind,
        follow the sorted ones in their stored order.
        """
        if order_by is None:
            return docs
        kinds = [(doc, _sort_kind(doc.data.get(order_by.field))) for doc in docs]
        counts = Counter(kind for _, kind in kinds if kind is not None)
        if not counts:
            return docs
        dominant = min(counts, key=lambda kind: (-counts[kind], _KIND_RANK[kind]))
        present = [doc for doc, kind in kinds if kind == dominant]
        rest = [doc for doc, kind in kinds if kind != dominant]
        mismatched = sum(counts.values()) - len(present)
        if mismatched:
            logger.warning(
                "Store ordering skipped mixed-type values field=%s kind=%s skipped=%d",
                order_by.field,
                dominant,
                mismatched,
            )
        present.sort(key=lambda doc: _sort_value(doc.data[order_by.field]), reverse=order_by.descending)
        return present + rest


_KIND_RANK = {"number": 0, "datetime": 1, "date": 2, "text": 3}


def _sort_kind(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, date):
        return "date"
    if isinstance(value, str):
        return "text"
    return None


def _sort_value(value: Any) -> Any:
    # Naive and aware datetimes cannot be compared; naive ones are read as UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
