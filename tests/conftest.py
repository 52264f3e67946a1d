"""Shared fixtures: an in-memory database behind the FastAPI app."""

import os

# Must be set before the app modules read settings.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.pop("MAIL_HOST", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import invites
from database import Base, get_db
from main import app


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture invite emails instead of talking to SMTP."""
    sent = []

    def fake_send(to_email, url):
        sent.append((to_email, url))
        return True

    monkeypatch.setattr(invites, "send_invite_email", fake_send)
    return sent


def signup(client, email, password="secret123"):
    response = client.post("/auth/register", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def token_of(headers):
    return headers["Authorization"].split(" ", 1)[1]


def make_group(client, headers, name="Trip", goal=100.0):
    response = client.post(
        "/api/groups", json={"name": name, "savingsGoal": goal}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()["group"]


def join_group(client, owner_headers, member_headers, member_email, group_id):
    invite = client.post(
        "/api/send-invite",
        json={"email": member_email, "groupId": group_id},
        headers=owner_headers,
    ).json()["invite"]
    response = client.post(
        "/api/accept-invite",
        json={"inviteId": invite["id"], "accessToken": token_of(member_headers)},
    )
    assert response.status_code == 200, response.text
    return invite
