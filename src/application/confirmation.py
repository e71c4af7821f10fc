from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingConfirmation:
    token: str
    message: str


class ConfirmationGate:
    """
    Single-slot confirm/cancel prompt.

    An action runs only when its token is confirmed. Opening a new prompt
    replaces the one still showing, so at most one action is ever pending.
    """

    def __init__(self) -> None:
        self._pending: PendingConfirmation | None = None
        self._action: Callable[[], Any] | None = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> PendingConfirmation | None:
        return self._pending

    def request(self, message: str, action: Callable[[], Any]) -> PendingConfirmation:
        prompt = PendingConfirmation(token=secrets.token_urlsafe(12), message=message)
        with self._lock:
            if self._pending is not None:
                logger.info("ConfirmationGate replacing unanswered prompt token=%s", self._pending.token)
            self._pending = prompt
            self._action = action
        return prompt

    def confirm(self, token: str) -> Any:
        action = self._take(token)
        logger.info("ConfirmationGate confirmed token=%s", token)
        return action()

    def cancel(self, token: str) -> None:
        self._take(token)
        logger.info("ConfirmationGate cancelled token=%s", token)

    def _take(self, token: str) -> Callable[[], Any]:
        with self._lock:
            if self._pending is None or self._pending.token != token or self._action is None:
                raise KeyError(f"No pending confirmation: {token}")
            action = self._action
            self._pending = None
            self._action = None
        return action
