# tests/test_gatekeeper.py

from __future__ import annotations

import threading

from starlette.concurrency import run_in_threadpool

import main
from main import gate, signed_in


def test_gate_decisions():
    assert gate("/", signed_in=False) == "/login?redirectedFrom=%2F"
    assert gate("/tasks/42", signed_in=False) == "/login?redirectedFrom=%2Ftasks%2F42"
    assert gate("/login", signed_in=False) is None
    assert gate("/signup", signed_in=False) is None
    assert gate("/login", signed_in=True) == "/"
    assert gate("/signup", signed_in=True) == "/"
    assert gate("/", signed_in=True) is None


def test_anonymous_page_request_redirects_to_login(client, db):
    resp = client.get("/", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/login?redirectedFrom=%2F"


def test_signed_in_user_is_sent_away_from_auth_pages(client, alice):
    resp = client.get("/login", headers=alice, follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/"


def test_auth_pages_render_for_anonymous_users(client, db):
    resp = client.get("/login", params={"redirectedFrom": "/"}, follow_redirects=False)
    assert resp.status_code == 200
    assert "Sign in" in resp.text
    assert client.get("/signup", follow_redirects=False).status_code == 200


def test_api_and_static_paths_are_not_redirected(client, db):
    resp = client.get("/api/tasks", follow_redirects=False)
    assert resp.status_code == 401
    resp = client.get("/static/logo.png", follow_redirects=False)
    assert resp.status_code == 404
    assert client.get("/healthz").json() == {"status": "ok"}


def test_dashboard_uses_session_cookie(client, alice, bob, make_task, shared_task):
    make_task("Bob's errand", headers=bob)
    client.cookies.set("tm_session", "token-user-bob")
    resp = client.get("/", follow_redirects=False)
    assert resp.status_code == 200
    assert "Bob&#x27;s errand" in resp.text
    assert "Plan offsite" in resp.text
    assert "Shared with you" in resp.text


def test_session_lookup_runs_in_worker_thread(client, alice, monkeypatch):
    calls = []
    loop_thread = []

    async def recording_run_in_threadpool(func, *args):
        calls.append(args)
        loop_thread.append(threading.get_ident())
        return await run_in_threadpool(func, *args)

    def lookup(token):
        calls.append(threading.get_ident())
        return signed_in(token)

    monkeypatch.setattr(main, "run_in_threadpool", recording_run_in_threadpool)
    monkeypatch.setattr(main, "signed_in", lookup)

    resp = client.get("/login", headers=alice, follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/"
    assert calls[0] == ("token-user-alice",)
    assert calls[1] != loop_thread[0]
