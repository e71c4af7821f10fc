from __future__ import annotations

import json
import logging
import os
import socket
import time
import urllib.error
import urllib.request
from typing import Any

from domain.errors import AuthError
from domain.models import Identity
from infrastructure.identity.provider import IdentityProvider

logger = logging.getLogger(__name__)


class FirebaseIdentityProvider(IdentityProvider):
    """Adapter for the hosted identity service's REST endpoints."""

    name = "firebase"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        super().__init__()
        self.api_key = api_key or os.getenv("FIREBASE_API_KEY", "")
        self.base_url = (base_url or os.getenv("FIREBASE_AUTH_BASE_URL", "https://identitytoolkit.googleapis.com/v1")).rstrip("/")
        self.timeout_seconds = timeout_seconds or float(os.getenv("FIREBASE_TIMEOUT_SECONDS", "30"))

    def _sign_in_anonymously(self) -> Identity:
        body = self._post("accounts:signUp", {"returnSecureToken": True})
        return self._identity(body, anonymous=True)

    def _sign_in_with_token(self, token: str) -> Identity:
        body = self._post("accounts:signInWithCustomToken", {"token": token, "returnSecureToken": True})
        return self._identity(body)

    def _sign_in_with_password(self, email: str, password: str) -> Identity:
        body = self._post(
            "accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._identity(body)

    def _create_account(self, email: str, password: str) -> Identity:
        body = self._post("accounts:signUp", {"email": email, "password": password, "returnSecureToken": True})
        return self._identity(body)

    def _identity(self, body: dict[str, Any], anonymous: bool = False) -> Identity:
        uid = body.get("localId")
        if not uid:
            raise AuthError("Identity service response did not include a user id.")
        return Identity(
            uid=str(uid),
            email=body.get("email") or None,
            is_anonymous=anonymous,
            id_token=body.get("idToken"),
        )

    def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise AuthError("FIREBASE_API_KEY is not configured.")

        started = time.perf_counter()
        req = urllib.request.Request(
            url=f"{self.base_url}/{endpoint}?key={self.api_key}",
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        logger.info("Identity request start endpoint=%s timeout=%.1fs", endpoint, self.timeout_seconds)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                body = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            message = self._error_message(exc)
            logger.warning("Identity request rejected endpoint=%s status=%s message=%s", endpoint, exc.code, message)
            raise AuthError(message) from exc
        except (socket.timeout, urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
            elapsed = time.perf_counter() - started
            logger.warning("Identity request failed endpoint=%s after %.2fs: %s", endpoint, elapsed, exc)
            raise AuthError(f"Identity service unavailable: {exc}") from exc

        logger.info("Identity request complete endpoint=%s in %.2fs", endpoint, time.perf_counter() - started)
        if not isinstance(body, dict):
            raise AuthError("Unexpected identity service response.")
        return body

    def _error_message(self, exc: urllib.error.HTTPError) -> str:
        try:
            body = json.loads(exc.read().decode("utf-8"))
        except (OSError, ValueError):
            return f"Identity service error (HTTP {exc.code})"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return f"Identity service error (HTTP {exc.code})"
