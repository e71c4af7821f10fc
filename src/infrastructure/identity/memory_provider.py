from __future__ import annotations

import re
import secrets
import threading
import uuid
from dataclasses import dataclass

from werkzeug.security import check_password_hash, generate_password_hash

from domain.errors import AuthError
from domain.models import Identity
from infrastructure.identity.provider import IdentityProvider

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


@dataclass
class _Account:
    uid: str
    email: str | None
    password_hash: str | None


class InMemoryIdentityProvider(IdentityProvider):
    """Local account registry with the same rejection messages as the hosted service."""

    name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._accounts_by_email: dict[str, _Account] = {}
        self._custom_tokens: dict[str, str] = {}
        self._lock = threading.Lock()

    def issue_custom_token(self, uid: str) -> str:
        token = secrets.token_urlsafe(24)
        with self._lock:
            self._custom_tokens[token] = uid
        return token

    def _sign_in_anonymously(self) -> Identity:
        return Identity(uid=uuid.uuid4().hex, is_anonymous=True)

    def _sign_in_with_token(self, token: str) -> Identity:
        with self._lock:
            uid = self._custom_tokens.get(token)
        if uid is None:
            raise AuthError("INVALID_CUSTOM_TOKEN")
        email = next((acct.email for acct in self._accounts_by_email.values() if acct.uid == uid), None)
        return Identity(uid=uid, email=email)

    def _sign_in_with_password(self, email: str, password: str) -> Identity:
        key = email.strip().lower()
        with self._lock:
            account = self._accounts_by_email.get(key)
        if account is None or not account.password_hash or not check_password_hash(account.password_hash, password):
            raise AuthError("INVALID_LOGIN_CREDENTIALS")
        return Identity(uid=account.uid, email=account.email)

    def _create_account(self, email: str, password: str) -> Identity:
        key = email.strip().lower()
        if not _EMAIL_RE.match(key):
            raise AuthError("INVALID_EMAIL")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"WEAK_PASSWORD : Password should be at least {MIN_PASSWORD_LENGTH} characters")
        with self._lock:
            if key in self._accounts_by_email:
                raise AuthError("EMAIL_EXISTS")
            account = _Account(uid=uuid.uuid4().hex, email=key, password_hash=generate_password_hash(password))
            self._accounts_by_email[key] = account
        return Identity(uid=account.uid, email=account.email)
