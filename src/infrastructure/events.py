from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]
ErrorListener = Callable[[Exception], None]


class Subscription:
    """Handle returned by SnapshotStream.subscribe; unsubscribe() is idempotent."""

    def __init__(self, stream: "SnapshotStream", handle: int):
        self._stream = stream
        self.handle = handle

    @property
    def active(self) -> bool:
        return self._stream.is_active(self.handle)

    def unsubscribe(self) -> None:
        self._stream.remove(self.handle)


class SnapshotStream(Generic[T]):
    """
    Fan-out of full snapshots to a set of listeners.

    Every publish delivers the complete value, never a diff. A listener removed
    while a publish is in flight does not receive the remainder of it.
    """

    def __init__(self, name: str = "stream"):
        self.name = name
        self._listeners: Dict[int, Tuple[Listener, Optional[ErrorListener]]] = {}
        self._handles = itertools.count(1)
        self._lock = threading.RLock()

    def subscribe(self, listener: Listener, on_error: Optional[ErrorListener] = None) -> Subscription:
        with self._lock:
            handle = next(self._handles)
            self._listeners[handle] = (listener, on_error)
        logger.debug("SnapshotStream subscribe stream=%s handle=%d", self.name, handle)
        return Subscription(self, handle)

    def remove(self, handle: int) -> None:
        with self._lock:
            removed = self._listeners.pop(handle, None)
        if removed is not None:
            logger.debug("SnapshotStream unsubscribe stream=%s handle=%d", self.name, handle)

    def is_active(self, handle: int) -> bool:
        with self._lock:
            return handle in self._listeners

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, value: T) -> int:
        delivered = 0
        for handle in self._handles_snapshot():
            entry = self._entry(handle)
            if entry is None:
                continue
            listener, _ = entry
            try:
                listener(value)
            except Exception:
                logger.exception("SnapshotStream listener failed stream=%s handle=%d", self.name, handle)
                continue
            delivered += 1
        return delivered

    def fail(self, exc: Exception) -> None:
        for handle in self._handles_snapshot():
            entry = self._entry(handle)
            if entry is None or entry[1] is None:
                continue
            try:
                entry[1](exc)
            except Exception:
                logger.exception("SnapshotStream error listener failed stream=%s handle=%d", self.name, handle)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def _handles_snapshot(self) -> list[int]:
        with self._lock:
            return list(self._listeners.keys())

    def _entry(self, handle: int) -> Optional[Tuple[Listener, Optional[ErrorListener]]]:
        with self._lock:
            return self._listeners.get(handle)
