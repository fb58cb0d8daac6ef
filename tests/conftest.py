# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from database import AuthUser, ensure_profile
from main import app


@pytest.fixture()
def db():
    """
    Fresh in-memory MongoDB per test, installed as the app's database.
    """
    mdb = mongomock.MongoClient()["task_manager_test"]
    database.set_db(mdb)
    yield mdb
    database.set_db(None)


@pytest.fixture()
def client(db) -> TestClient:
    return TestClient(app)


def sign_in(db, user_id: str, email: str, full_name: str = "", expires_in: timedelta = timedelta(days=1)) -> Dict[str, str]:
    """
    Write a session row the way the auth service would and return bearer headers.

    The profile row is created up front so the user can be found by email
    before making their first request.
    """
    token = f"token-{user_id}"
    db[database.SESSIONS].insert_one({
        "token": token,
        "user_id": user_id,
        "email": email,
        "full_name": full_name,
        "expires_at": datetime.now(timezone.utc) + expires_in,
    })
    ensure_profile(db, AuthUser(id=user_id, email=email, full_name=full_name))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def alice(db) -> Dict[str, str]:
    return sign_in(db, "user-alice", "alice@example.com", "Alice")


@pytest.fixture()
def bob(db) -> Dict[str, str]:
    return sign_in(db, "user-bob", "bob@example.com", "Bob")


@pytest.fixture()
def carol(db) -> Dict[str, str]:
    return sign_in(db, "user-carol", "carol@example.com")


@pytest.fixture()
def make_task(client, alice):
    def _make(title: str = "Write report", headers: Dict[str, str] = None, **fields) -> Dict:
        resp = client.post("/api/tasks", json={"title": title, **fields}, headers=headers or alice)
        assert resp.status_code == 201, resp.text
        return resp.json()["task"]
    return _make


@pytest.fixture()
def shared_task(client, alice, bob, make_task) -> Dict:
    """A task owned by alice and shared with bob."""
    task = make_task("Plan offsite")
    resp = client.post(f"/api/tasks/{task['id']}/share", json={"userEmail": "bob@example.com"}, headers=alice)
    assert resp.status_code == 201, resp.text
    return task
