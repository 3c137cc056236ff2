"""Shared fixtures for API tests: in-memory SQLite, dependency overrides, recording mailer."""

import unittest
from dataclasses import dataclass, field
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.auth import limiter
from app.core.database import get_db
from app.core.security import hash_password
from app.main import app
from app.models import Admin, Base
from app.services.email import get_email_service


@dataclass
class SentEmail:
    kind: str
    to: str
    token: str
    detail: str | None = None


@dataclass
class RecordingEmailService:
    """Stands in for EmailService: records every message and reports `succeed`."""

    succeed: bool = True
    sent: list[SentEmail] = field(default_factory=list)

    def send_profile_update_email(self, admin, token, update_type, ttl_minutes) -> bool:
        self.sent.append(SentEmail("profile_update", admin.email, token, update_type))
        return self.succeed

    def send_password_change_email(self, admin, token, ttl_minutes) -> bool:
        self.sent.append(SentEmail("password_change", admin.email, token))
        return self.succeed

    def send_password_reset_email(self, admin, reset_token, ttl_minutes) -> bool:
        self.sent.append(SentEmail("password_reset", admin.email, reset_token))
        return self.succeed

    def last(self, kind: str) -> SentEmail:
        matching = [m for m in self.sent if m.kind == kind]
        if not matching:
            raise AssertionError(f"No {kind} email was sent")
        return matching[-1]


def make_engine() -> Engine:
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class ApiTestCase(unittest.TestCase):
    """Runs the real app against a fresh in-memory database per test."""

    def setUp(self) -> None:
        self.engine = make_engine()
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        self.mailer = RecordingEmailService()
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_email_service] = lambda: self.mailer

        # Low bcrypt cost keeps the suite fast; the cost is read at hash time.
        rounds = patch("app.core.security.BCRYPT_ROUNDS", 4)
        rounds.start()
        self.addCleanup(rounds.stop)

        self._limiter_enabled = limiter.enabled
        limiter.enabled = False
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        limiter.enabled = self._limiter_enabled
        self.engine.dispose()

    def create_admin(
        self,
        email: str = "a@x.com",
        password: str = "Secret1",
        *,
        name: str = "Test Admin",
        role: str = "admin",
        permissions: list[str] | None = None,
        is_active: bool = True,
    ) -> str:
        with self.SessionLocal() as db:
            admin = Admin(
                name=name,
                email=email,
                password_hash=hash_password(password),
                role=role,
                permissions=permissions if permissions is not None else ["members", "events"],
                is_active=is_active,
            )
            db.add(admin)
            db.commit()
            return admin.id

    def load_admin(self, admin_id: str) -> Admin:
        with self.SessionLocal() as db:
            admin = db.get(Admin, admin_id)
            if admin is None:
                raise AssertionError(f"Admin {admin_id} not found")
            db.expunge(admin)
            return admin

    def update_admin(self, admin_id: str, **values) -> None:
        with self.SessionLocal() as db:
            admin = db.get(Admin, admin_id)
            for key, value in values.items():
                setattr(admin, key, value)
            db.commit()

    def session(self) -> Session:
        return self.SessionLocal()

    def login(self, email: str = "a@x.com", password: str = "Secret1"):
        return self.client.post("/api/auth/login", json={"email": email, "password": password})

    def login_tokens(self, email: str = "a@x.com", password: str = "Secret1") -> tuple[str, str]:
        resp = self.login(email, password)
        self.assertEqual(resp.status_code, 200, resp.text)
        data = resp.json()["data"]
        return data["accessToken"], data["refreshToken"]
