from __future__ import annotations

import unittest

from application.session import AUTO_SIGN_IN_FAILED, SessionManager
from domain.errors import AuthError, ValidationError
from domain.models import Identity
from infrastructure.identity.memory_provider import InMemoryIdentityProvider
from infrastructure.identity.provider import IdentityProvider


class _CountingProvider(InMemoryIdentityProvider):
    def __init__(self) -> None:
        super().__init__()
        self.anonymous_calls = 0
        self.token_calls: list[str] = []

    def _sign_in_anonymously(self) -> Identity:
        self.anonymous_calls += 1
        return super()._sign_in_anonymously()

    def _sign_in_with_token(self, token: str) -> Identity:
        self.token_calls.append(token)
        return super()._sign_in_with_token(token)


class _RejectingProvider(IdentityProvider):
    name = "rejecting"

    def _sign_in_anonymously(self) -> Identity:
        raise AuthError("ADMIN_ONLY_OPERATION")

    def _sign_in_with_token(self, token: str) -> Identity:
        raise AuthError("INVALID_CUSTOM_TOKEN")

    def _sign_in_with_password(self, email: str, password: str) -> Identity:
        raise AuthError("INVALID_LOGIN_CREDENTIALS")

    def _create_account(self, email: str, password: str) -> Identity:
        raise AuthError("EMAIL_EXISTS")

    def _sign_out(self) -> None:
        raise ConnectionError("network down")


class AutoSignInTests(unittest.TestCase):
    def test_anonymous_sign_in_on_start(self) -> None:
        provider = _CountingProvider()
        session = SessionManager(provider)

        session.start()

        self.assertTrue(session.ready)
        self.assertTrue(session.identity.is_anonymous)
        self.assertEqual(provider.anonymous_calls, 1)

    def test_initial_token_is_preferred(self) -> None:
        provider = _CountingProvider()
        provider.create_account("ada@example.com", "secret-pw")
        uid = provider.current_identity.uid
        provider.sign_out()
        token = provider.issue_custom_token(uid)
        session = SessionManager(provider, initial_auth_token=token)

        session.start()

        self.assertEqual(provider.token_calls, [token])
        self.assertEqual(provider.anonymous_calls, 0)
        self.assertEqual(session.identity.uid, uid)
        self.assertEqual(session.identity.email, "ada@example.com")

    def test_auto_sign_in_fires_once_per_process(self) -> None:
        provider = _CountingProvider()
        session = SessionManager(provider)
        session.start()

        session.logout()

        self.assertIsNone(session.identity)
        self.assertFalse(session.ready)
        self.assertEqual(provider.anonymous_calls, 1)
        self.assertTrue(session.auto_sign_in_attempted)

    def test_failed_auto_sign_in_leaves_session_signed_out(self) -> None:
        session = SessionManager(_RejectingProvider())

        with self.assertLogs("application.session", level="WARNING"):
            session.start()

        self.assertIsNone(session.identity)
        self.assertFalse(session.ready)
        self.assertEqual(session.last_error, AUTO_SIGN_IN_FAILED)

    def test_unexpected_auto_sign_in_failure_is_contained(self) -> None:
        class _DroppingProvider(_CountingProvider):
            name = "dropping"

            def _sign_in_anonymously(self) -> Identity:
                raise ConnectionResetError("connection reset by peer")

        session = SessionManager(_DroppingProvider())

        with self.assertLogs("application.session", level="ERROR"):
            session.start()

        self.assertIsNone(session.identity)
        self.assertFalse(session.ready)
        self.assertTrue(session.auto_sign_in_attempted)
        self.assertEqual(session.last_error, AUTO_SIGN_IN_FAILED)

    def test_listeners_see_anonymous_identity_after_none(self) -> None:
        session = SessionManager(_CountingProvider())
        seen: list[Identity | None] = []
        session.subscribe(seen.append)

        session.start()

        self.assertIsNone(seen[0])
        self.assertIsNotNone(seen[-1])


class ManualAuthTests(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = InMemoryIdentityProvider()
        self.session = SessionManager(self.provider)
        self.session.start()

    def test_register_then_login(self) -> None:
        registered = self.session.register("sam@example.com", "hunter22")
        self.session.logout()

        logged_in = self.session.login("sam@example.com", "hunter22")

        self.assertEqual(registered.uid, logged_in.uid)
        self.assertEqual(self.session.identity.email, "sam@example.com")
        self.assertFalse(self.session.busy)

    def test_empty_credentials_fail_validation(self) -> None:
        for email, password in (("", "pw123456"), ("a@b.co", ""), ("   ", "pw123456")):
            with self.assertRaises(ValidationError):
                self.session.login(email, password)
            with self.assertRaises(ValidationError):
                self.session.register(email, password)
        self.assertEqual(self.session.last_error, "Please enter email and password.")

    def test_provider_messages_surface_verbatim(self) -> None:
        self.session.register("sam@example.com", "hunter22")

        with self.assertRaises(AuthError) as ctx:
            self.session.register("sam@example.com", "hunter22")
        self.assertEqual(ctx.exception.message, "EMAIL_EXISTS")

        with self.assertRaises(AuthError) as ctx:
            self.session.login("sam@example.com", "wrong-password")
        self.assertEqual(ctx.exception.message, "INVALID_LOGIN_CREDENTIALS")
        self.assertEqual(self.session.last_error, "INVALID_LOGIN_CREDENTIALS")

    def test_busy_flag_released_after_failure(self) -> None:
        with self.assertRaises(AuthError):
            self.session.login("nobody@example.com", "whatever1")

        self.assertFalse(self.session.busy)

    def test_logout_runs_hooks_and_resets_mode(self) -> None:
        cleared: list[bool] = []
        self.session.on_logout(lambda: cleared.append(True))
        self.session.set_auth_mode("register")

        self.session.logout()

        self.assertEqual(cleared, [True])
        self.assertEqual(self.session.auth_mode, "login")
        self.assertIsNone(self.session.identity)

    def test_logout_failure_raises_auth_error_and_releases_busy(self) -> None:
        session = SessionManager(_RejectingProvider())
        with self.assertLogs("application.session", level="WARNING"):
            session.start()

        with self.assertLogs("application.session", level="ERROR"):
            with self.assertRaises(AuthError) as ctx:
                session.logout()

        self.assertEqual(ctx.exception.message, "Failed to log out.")
        self.assertFalse(session.busy)

    def test_unknown_auth_mode_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.session.set_auth_mode("sso")


class InMemoryIdentityProviderTests(unittest.TestCase):
    def test_rejects_weak_password_and_bad_email(self) -> None:
        provider = InMemoryIdentityProvider()

        with self.assertRaises(AuthError) as ctx:
            provider.create_account("not-an-email", "hunter22")
        self.assertEqual(ctx.exception.message, "INVALID_EMAIL")

        with self.assertRaises(AuthError) as ctx:
            provider.create_account("a@b.co", "123")
        self.assertTrue(ctx.exception.message.startswith("WEAK_PASSWORD"))

    def test_on_auth_state_changed_delivers_current_then_changes(self) -> None:
        provider = InMemoryIdentityProvider()
        seen: list[Identity | None] = []
        sub = provider.on_auth_state_changed(seen.append)

        provider.sign_in_anonymously()
        sub.unsubscribe()
        provider.sign_out()

        self.assertIsNone(seen[0])
        self.assertEqual(len(seen), 2)
        self.assertTrue(seen[1].is_anonymous)


if __name__ == "__main__":
    unittest.main()
