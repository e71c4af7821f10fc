from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from domain.models import Identity
from infrastructure.events import SnapshotStream, Subscription

logger = logging.getLogger(__name__)

AuthStateListener = Callable[[Identity | None], None]


class IdentityProvider(ABC):
    """Base provider contract for hosted sign-in services.

    Subclasses implement the `_`-prefixed calls; this class keeps the current
    identity and notifies listeners on every change.
    """

    name: str = "identity"

    def __init__(self) -> None:
        self._current: Identity | None = None
        self._changes: SnapshotStream[Identity | None] = SnapshotStream(name=f"auth:{self.name}")

    @property
    def current_identity(self) -> Identity | None:
        return self._current

    def on_auth_state_changed(self, listener: AuthStateListener) -> Subscription:
        subscription = self._changes.subscribe(listener)
        listener(self._current)
        return subscription

    def sign_in_anonymously(self) -> Identity:
        return self._set_identity(self._sign_in_anonymously())

    def sign_in_with_token(self, token: str) -> Identity:
        return self._set_identity(self._sign_in_with_token(token))

    def sign_in_with_password(self, email: str, password: str) -> Identity:
        return self._set_identity(self._sign_in_with_password(email, password))

    def create_account(self, email: str, password: str) -> Identity:
        return self._set_identity(self._create_account(email, password))

    def sign_out(self) -> None:
        self._sign_out()
        self._set_identity(None)

    def _set_identity(self, identity: Identity | None) -> Identity | None:
        self._current = identity
        logger.info(
            "Identity changed provider=%s uid=%s anonymous=%s",
            self.name,
            identity.uid if identity else None,
            identity.is_anonymous if identity else None,
        )
        self._changes.publish(identity)
        return identity

    @abstractmethod
    def _sign_in_anonymously(self) -> Identity:
        raise NotImplementedError

    @abstractmethod
    def _sign_in_with_token(self, token: str) -> Identity:
        raise NotImplementedError

    @abstractmethod
    def _sign_in_with_password(self, email: str, password: str) -> Identity:
        raise NotImplementedError

    @abstractmethod
    def _create_account(self, email: str, password: str) -> Identity:
        raise NotImplementedError

    def _sign_out(self) -> None:
        return None
