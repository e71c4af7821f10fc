from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, ContextManager

from infrastructure.events import Subscription


class _ServerTimestamp:
    """Sentinel replaced by the store's own clock when a record is written."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Document:
    id: str
    data: dict[str, Any]


SnapshotListener = Callable[[list[Document]], None]


def collection_path(namespace: str, uid: str, collection: str) -> str:
    return f"{namespace.strip('/')}/users/{uid}/{collection}"


def normalize_path(path: str) -> str:
    return "/".join(part for part in path.split("/") if part)


class WriteBatch(ABC):
    """Writes staged here commit together or not at all."""

    @abstractmethod
    def get(self, path: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def insert(self, path: str, record: dict[str, Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    def set_merge(self, path: str, doc_id: str, partial: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: str, doc_id: str) -> None:
        raise NotImplementedError


class DocumentStore(ABC):
    """Base contract for realtime per-user document collections."""

    name: str = "store"
    supports_transactions: bool = False

    @abstractmethod
    def subscribe(
        self,
        path: str,
        listener: SnapshotListener,
        order_by: OrderBy | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        raise NotImplementedError

    @abstractmethod
    def insert(self, path: str, record: dict[str, Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: str, doc_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_merge(self, path: str, doc_id: str, partial: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, path: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def batch(self) -> ContextManager[WriteBatch]:
        """
        Open an all-or-nothing write batch.

        Only stores that set `supports_transactions = True` provide one.
        Callers check that flag first and fall back to single writes.
        """
        raise NotImplementedError(f"{self.name} store does not support multi-document transactions")
