"""
Grievance portal - test configuration and fixtures
"""
import os

# Set testing environment before the app modules read it
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret-for-testing-only"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["COMPLAINT_MIN_INTERVAL_SECONDS"] = "0"
os.environ["COMPLAINT_DAILY_LIMIT"] = "50"
os.environ["FORGOT_MAX_REQUESTS"] = "2"
os.environ["FORGOT_WINDOW_SECONDS"] = "7200"
os.environ["FRONTEND_URL"] = "http://portal.test"
os.environ["MONGO_URI"] = ""
os.environ["SMTP_HOST"] = ""
os.environ["ADMIN_EMAIL"] = ""

from itertools import count

import pytest
from fastapi.testclient import TestClient

from main import app
from auth.security import hash_password
from auth.session import Session
from db_sql import engine, SessionLocal
from Models.auth_models import Base, User, UserRole
from services.mailer import Mailer, get_mailer

PASSWORD = "Secret#123"
_seq = count(1)


class RecordingMailer(Mailer):
    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(message)

    def to(self, recipient, template=None):
        return [m for m in self.sent if m.recipient == recipient and (template is None or m.template == template)]


@pytest.fixture
def db():
    """Fresh schema and a session per test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mailer():
    m = RecordingMailer()
    app.dependency_overrides[get_mailer] = lambda: m
    yield m
    app.dependency_overrides.pop(get_mailer, None)


@pytest.fixture
def client(db, mailer):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    """Create a user straight in the store; password change is not forced unless asked."""
    def _make(role=UserRole.STUDENT, department="Cardiology", name=None, email=None,
              password=PASSWORD, force_password_change=False, is_active=True):
        n = next(_seq)
        user = User(
            email=(email or f"user{n}@college.edu").lower(),
            password_hash=hash_password(password),
            name=name or f"User {n}",
            role=role,
            department=None if role is UserRole.ADMIN else department,
            force_password_change=force_password_change,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def session_for(user: User) -> Session:
    return Session(
        user_id=user.user_id,
        role=user.role,
        department=user.department,
        force_password_change=user.force_password_change,
        token_version=user.token_version,
    )


def login(client, email, password=PASSWORD):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.json()
    return response.json()["data"]["token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def complaint_text(n=0):
    """Twelve words, unique per n so the duplicate check never fires."""
    return f"Complaint number {n} about the hostel water supply being unavailable since morning"


@pytest.fixture
def auth_headers(client):
    def _headers(user, password=PASSWORD):
        return bearer(login(client, user.email, password))

    return _headers
