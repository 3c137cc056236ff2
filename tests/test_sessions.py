"""Login, refresh-token rotation, logout, lockout and rate limiting over the HTTP API."""

import os
import tempfile
import unittest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.api.auth import limiter
from app.core.config import get_settings
from app.core.errors import AuthenticationError
from app.core.security import TokenKind, decode_token, hash_password, utcnow
from app.models import Admin, Base
from app.services import auth as auth_service
from support import ApiTestCase, bearer


class TestLogin(ApiTestCase):
    """POST /api/auth/login."""

    def test_login_returns_pair_and_account_without_secrets(self) -> None:
        admin_id = self.create_admin()
        resp = self.login()
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["success"])
        data = body["data"]
        self.assertTrue(data["accessToken"])
        self.assertTrue(data["refreshToken"])
        self.assertEqual(data["token"], data["accessToken"])
        self.assertEqual(data["account"]["id"], admin_id)
        self.assertEqual(data["account"]["email"], "a@x.com")
        self.assertEqual(data["admin"], data["account"])
        for secret in ("password", "passwordHash", "refreshToken", "profileUpdateToken", "passwordChangeToken"):
            self.assertNotIn(secret, data["account"])

    def test_existing_password_without_complexity_still_logs_in(self) -> None:
        admin_id = self.create_admin(password="secret1")
        resp = self.login(password="secret1")
        self.assertEqual(resp.status_code, 200)
        self.assertNotIn('"password"', resp.text)
        data = resp.json()["data"]
        settings = get_settings()
        access = decode_token(data["accessToken"], TokenKind.ACCESS, settings)
        refresh = decode_token(data["refreshToken"], TokenKind.REFRESH, settings)
        self.assertEqual(access["sub"], admin_id)
        self.assertEqual(refresh["sub"], admin_id)

    def test_login_stores_refresh_token_and_last_login(self) -> None:
        admin_id = self.create_admin()
        _, refresh = self.login_tokens()
        admin = self.load_admin(admin_id)
        self.assertEqual(admin.refresh_token, refresh)
        self.assertIsNotNone(admin.last_login)

    def test_email_is_case_insensitive(self) -> None:
        self.create_admin()
        resp = self.login(email="A@X.COM")
        self.assertEqual(resp.status_code, 200)

    def test_wrong_password_and_unknown_email_are_indistinguishable(self) -> None:
        self.create_admin()
        wrong_password = self.login(password="Wrong12")
        unknown_email = self.login(email="nobody@x.com")
        self.assertEqual(wrong_password.status_code, 401)
        self.assertEqual(unknown_email.status_code, 401)
        self.assertEqual(wrong_password.json(), unknown_email.json())
        self.assertEqual(wrong_password.json()["code"], "INVALID_CREDENTIALS")

    def test_inactive_account_gets_generic_error(self) -> None:
        self.create_admin(is_active=False)
        resp = self.login()
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "INVALID_CREDENTIALS")

    def test_missing_fields_are_validation_errors(self) -> None:
        resp = self.client.post("/api/auth/login", json={"email": "a@x.com"})
        self.assertEqual(resp.status_code, 400)
        body = resp.json()
        self.assertEqual(body["code"], "VALIDATION_ERROR")
        self.assertIn("password", [e["field"] for e in body["errors"]])

    def test_malformed_email_is_validation_error(self) -> None:
        resp = self.client.post("/api/auth/login", json={"email": "not-an-email", "password": "Secret1"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "VALIDATION_ERROR")


class TestLockout(ApiTestCase):
    """Repeated failures lock the account for LOGIN_LOCKOUT_MINUTES."""

    def test_account_locks_after_max_failures(self) -> None:
        admin_id = self.create_admin()
        for _ in range(get_settings().LOGIN_MAX_FAILED_ATTEMPTS):
            self.assertEqual(self.login(password="Wrong12").status_code, 401)
        self.assertIsNotNone(self.load_admin(admin_id).locked_until)

        # Correct password is refused while locked, with the same generic error.
        resp = self.login()
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "INVALID_CREDENTIALS")

    def test_lock_expires(self) -> None:
        admin_id = self.create_admin()
        self.update_admin(admin_id, locked_until=utcnow() + timedelta(minutes=15))
        later = utcnow() + timedelta(minutes=16)
        with patch("app.services.auth.utcnow", return_value=later):
            resp = self.login()
        self.assertEqual(resp.status_code, 200)
        admin = self.load_admin(admin_id)
        self.assertIsNone(admin.locked_until)
        self.assertEqual(admin.failed_login_attempts, 0)

    def test_success_resets_failure_counter(self) -> None:
        admin_id = self.create_admin()
        self.login(password="Wrong12")
        self.login(password="Wrong12")
        self.assertEqual(self.load_admin(admin_id).failed_login_attempts, 2)
        self.login_tokens()
        self.assertEqual(self.load_admin(admin_id).failed_login_attempts, 0)


class TestRefresh(ApiTestCase):
    """POST /api/auth/refresh rotates the single stored refresh token."""

    def refresh(self, token: str | None):
        headers = bearer(token) if token is not None else {}
        return self.client.post("/api/auth/refresh", headers=headers)

    def test_rotation_invalidates_previous_token(self) -> None:
        self.create_admin()
        _, r1 = self.login_tokens()

        first = self.refresh(r1)
        self.assertEqual(first.status_code, 200)
        r2 = first.json()["data"]["refreshToken"]
        self.assertNotEqual(r1, r2)

        replay = self.refresh(r1)
        self.assertEqual(replay.status_code, 401)
        self.assertEqual(replay.json()["code"], "INVALID_REFRESH_TOKEN")

        self.assertEqual(self.refresh(r2).status_code, 200)

    def test_new_access_token_works(self) -> None:
        self.create_admin()
        _, refresh = self.login_tokens()
        access = self.refresh(refresh).json()["data"]["accessToken"]
        self.assertEqual(self.client.get("/api/auth/me", headers=bearer(access)).status_code, 200)

    def test_new_login_supersedes_previous_session(self) -> None:
        self.create_admin()
        _, old_refresh = self.login_tokens()
        self.login_tokens()
        self.assertEqual(self.refresh(old_refresh).json()["code"], "INVALID_REFRESH_TOKEN")

    def test_missing_token(self) -> None:
        resp = self.refresh(None)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "NO_TOKEN")

    def test_token_in_body(self) -> None:
        self.create_admin()
        _, r1 = self.login_tokens()
        resp = self.client.post("/api/auth/refresh", json={"refreshToken": r1})
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertNotEqual(resp.json()["data"]["refreshToken"], r1)
        self.assertEqual(self.refresh(r1).json()["code"], "INVALID_REFRESH_TOKEN")

    def test_header_takes_precedence_over_body(self) -> None:
        self.create_admin()
        _, refresh = self.login_tokens()
        resp = self.client.post(
            "/api/auth/refresh", json={"refreshToken": "garbage"}, headers=bearer(refresh)
        )
        self.assertEqual(resp.status_code, 200, resp.text)

    def test_empty_body_without_header(self) -> None:
        resp = self.client.post("/api/auth/refresh", json={})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "NO_TOKEN")

    def test_access_token_is_not_a_refresh_token(self) -> None:
        self.create_admin()
        access, _ = self.login_tokens()
        self.assertEqual(self.refresh(access).json()["code"], "INVALID_REFRESH_TOKEN")

    def test_garbage_token(self) -> None:
        self.assertEqual(self.refresh("garbage").json()["code"], "INVALID_REFRESH_TOKEN")

    def test_deactivated_account_cannot_refresh(self) -> None:
        admin_id = self.create_admin()
        _, refresh = self.login_tokens()
        self.update_admin(admin_id, is_active=False)
        self.assertEqual(self.refresh(refresh).json()["code"], "INVALID_REFRESH_TOKEN")


class TestLogout(ApiTestCase):
    """POST /api/auth/logout clears the stored refresh token."""

    def test_logout_then_refresh_fails(self) -> None:
        admin_id = self.create_admin()
        access, refresh = self.login_tokens()

        resp = self.client.post("/api/auth/logout", headers=bearer(access))
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["success"])
        self.assertIsNone(self.load_admin(admin_id).refresh_token)

        again = self.client.post("/api/auth/refresh", headers=bearer(refresh))
        self.assertEqual(again.status_code, 401)
        self.assertEqual(again.json()["code"], "INVALID_REFRESH_TOKEN")

    def test_logout_is_idempotent(self) -> None:
        self.create_admin()
        access, _ = self.login_tokens()
        self.assertEqual(self.client.post("/api/auth/logout", headers=bearer(access)).status_code, 200)
        self.assertEqual(self.client.post("/api/auth/logout", headers=bearer(access)).status_code, 200)

    def test_logout_requires_authentication(self) -> None:
        resp = self.client.post("/api/auth/logout")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "NO_TOKEN")


class TestConcurrentRefresh(unittest.TestCase):
    """Two refreshes that both read the row before either writes: last write wins."""

    def setUp(self) -> None:
        fd, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.engine = create_engine(f"sqlite:///{self.db_path}")
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        self.settings = get_settings()
        with self.SessionLocal() as db:
            admin = Admin(name="Race", email="race@x.com", password_hash=hash_password("Secret1"))
            db.add(admin)
            db.commit()
            self.admin_id = admin.id
            _, pair = auth_service.login(db, "race@x.com", "Secret1", self.settings)
            self.original = pair.refresh_token

    def tearDown(self) -> None:
        self.engine.dispose()
        os.remove(self.db_path)

    def test_interleaved_refreshes(self) -> None:
        db_a = self.SessionLocal()
        db_b = self.SessionLocal()
        try:
            # B loads the row first, so it still sees the original token after A commits.
            auth_service.get_admin_by_id(db_b, self.admin_id)
            _, pair_a = auth_service.refresh_session(db_a, self.original, self.settings)
            _, pair_b = auth_service.refresh_session(db_b, self.original, self.settings)
        finally:
            db_a.close()
            db_b.close()

        with self.SessionLocal() as db:
            stored = auth_service.get_admin_by_id(db, self.admin_id).refresh_token
            self.assertEqual(stored, pair_b.refresh_token)
            for stale in (self.original, pair_a.refresh_token):
                with self.assertRaises(AuthenticationError):
                    auth_service.refresh_session(db, stale, self.settings)

    def test_sequential_refreshes(self) -> None:
        with self.SessionLocal() as db:
            auth_service.refresh_session(db, self.original, self.settings)
        with self.SessionLocal() as db:
            with self.assertRaises(AuthenticationError):
                auth_service.refresh_session(db, self.original, self.settings)


class TestRateLimit(ApiTestCase):
    """Auth endpoints are limited per client address."""

    def setUp(self) -> None:
        super().setUp()
        limiter.reset()
        limiter.enabled = True
        self.addCleanup(limiter.reset)

    def test_login_is_rate_limited(self) -> None:
        for _ in range(5):
            resp = self.login(email="nobody@x.com")
            self.assertEqual(resp.status_code, 401)
        resp = self.login(email="nobody@x.com")
        self.assertEqual(resp.status_code, 429)
        body = resp.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["code"], "RATE_LIMITED")
