from __future__ import annotations

import logging
from typing import Callable

from application.busy import BusyFlag
from domain.errors import AuthError, ValidationError
from domain.models import Identity
from infrastructure.events import SnapshotStream, Subscription
from infrastructure.identity.provider import IdentityProvider

logger = logging.getLogger(__name__)

AUTO_SIGN_IN_FAILED = "Failed to auto-sign in. Please log in or register."
INITIAL_AUTH_MODE = "login"


class SessionManager:
    """
    Tracks the signed-in identity for this process.

    The first time the provider reports nobody signed in, one automatic
    sign-in is attempted (custom token if configured, else anonymous). It
    never fires again for the life of the process, including after logout.
    """

    def __init__(self, identity_provider: IdentityProvider, initial_auth_token: str | None = None):
        self._provider = identity_provider
        self._initial_auth_token = initial_auth_token
        self._auto_sign_in_attempted = False
        self._identity: Identity | None = None
        self._ready = False
        self._subscription: Subscription | None = None
        self._changes: SnapshotStream[Identity | None] = SnapshotStream(name="session")
        self._logout_hooks: list[Callable[[], None]] = []
        self.busy_flag = BusyFlag("SessionManager")
        self.auth_mode = INITIAL_AUTH_MODE
        self.last_error: str | None = None

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def busy(self) -> bool:
        return self.busy_flag.busy

    @property
    def auto_sign_in_attempted(self) -> bool:
        return self._auto_sign_in_attempted

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self._provider.on_auth_state_changed(self._handle_auth_change)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def subscribe(self, listener: Callable[[Identity | None], None]) -> Subscription:
        subscription = self._changes.subscribe(listener)
        listener(self._identity)
        return subscription

    def on_logout(self, hook: Callable[[], None]) -> None:
        self._logout_hooks.append(hook)

    def set_auth_mode(self, mode: str) -> None:
        if mode not in ("login", "register"):
            raise ValidationError(f"Unknown auth mode: {mode}")
        self.auth_mode = mode

    # ---- manual operations ----
    def register(self, email: str, password: str) -> Identity:
        self._require_credentials(email, password)
        with self.busy_flag.hold("register"):
            self.last_error = None
            try:
                return self._provider.create_account(email.strip(), password)
            except AuthError as exc:
                logger.warning("Registration rejected: %s", exc.message)
                self.last_error = exc.message
                raise

    def login(self, email: str, password: str) -> Identity:
        self._require_credentials(email, password)
        with self.busy_flag.hold("login"):
            self.last_error = None
            try:
                return self._provider.sign_in_with_password(email.strip(), password)
            except AuthError as exc:
                logger.warning("Login rejected: %s", exc.message)
                self.last_error = exc.message
                raise

    def logout(self) -> None:
        with self.busy_flag.hold("logout"):
            self.last_error = None
            try:
                self._provider.sign_out()
            except Exception as exc:
                logger.exception("Logout failed")
                self.last_error = "Failed to log out."
                raise AuthError("Failed to log out.") from exc
            for hook in self._logout_hooks:
                hook()
            self.auth_mode = INITIAL_AUTH_MODE

    # ---- provider callbacks ----
    def _handle_auth_change(self, identity: Identity | None) -> None:
        if identity is not None:
            self._identity = identity
            self._ready = True
            self.last_error = None
            self._changes.publish(identity)
            return

        self._identity = None
        self._ready = False
        self._changes.publish(None)
        if self._auto_sign_in_attempted:
            return

        self._auto_sign_in_attempted = True
        try:
            if self._initial_auth_token:
                logger.info("Auto sign-in with initial token")
                self._provider.sign_in_with_token(self._initial_auth_token)
            else:
                logger.info("Auto sign-in anonymously")
                self._provider.sign_in_anonymously()
        except AuthError as exc:
            logger.warning("Auto sign-in failed: %s", exc.message)
            self.last_error = AUTO_SIGN_IN_FAILED
        except Exception:
            logger.exception("Auto sign-in failed unexpectedly provider=%s", self._provider.name)
            self.last_error = AUTO_SIGN_IN_FAILED

    def _require_credentials(self, email: str, password: str) -> None:
        if not (email or "").strip() or not password:
            self.last_error = "Please enter email and password."
            raise ValidationError("Please enter email and password.")
