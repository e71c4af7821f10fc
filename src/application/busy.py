from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class BusyFlag:
    """Counts in-flight operations; `busy` is true while any is running."""

    def __init__(self, name: str):
        self.name = name
        self._depth = 0
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._depth > 0

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        with self._lock:
            self._depth += 1
        t = time.perf_counter()
        try:
            yield
        finally:
            with self._lock:
                self._depth -= 1
            logger.debug("%s %s released after %.2fs", self.name, operation, time.perf_counter() - t)
