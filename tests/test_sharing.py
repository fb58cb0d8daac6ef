# tests/test_sharing.py

from __future__ import annotations

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import database
from schemas import TaskShare


def _share(client, task_id, email, headers):
    return client.post(f"/api/tasks/{task_id}/share", json={"userEmail": email}, headers=headers)


def test_share_by_email(client, db, alice, bob, make_task):
    task = make_task("Groceries")
    resp = _share(client, task["id"], "bob@example.com", alice)
    assert resp.status_code == 201
    body = resp.json()
    assert body["message"] == "Task shared successfully"
    share = body["share"]
    TaskShare.model_validate(share)
    assert share["shared_with_user_id"] == "user-bob"
    assert share["shared_by_user_id"] == "user-alice"
    assert share["permission"] == "view"
    assert share["profile"]["email"] == "bob@example.com"

    note = db[database.NOTIFICATIONS].find_one({"user_id": "user-bob"})
    assert note["type"] == "task_shared"
    assert "Groceries" in note["message"]


def test_share_with_self_is_rejected(client, alice, make_task):
    task = make_task()
    resp = _share(client, task["id"], "alice@example.com", alice)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Cannot share task with yourself"}


def test_duplicate_share_is_rejected(client, alice, bob, shared_task):
    resp = _share(client, shared_task["id"], "bob@example.com", alice)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Task already shared with this user"}


def test_unique_index_backs_the_duplicate_check(db, alice, bob, shared_task):
    with pytest.raises(DuplicateKeyError):
        db[database.SHARES].insert_one({
            "task_id": ObjectId(shared_task["id"]),
            "shared_with_user_id": "user-bob",
            "shared_by_user_id": "user-alice",
        })


def test_share_validation(client, alice, bob, make_task):
    task = make_task()
    resp = client.post(f"/api/tasks/{task['id']}/share", json={}, headers=alice)
    assert resp.status_code == 400
    assert resp.json() == {"error": "User email is required"}

    resp = _share(client, task["id"], "nobody@example.com", alice)
    assert resp.status_code == 404
    assert resp.json() == {"error": "User not found with that email"}

    resp = _share(client, ObjectId(), "bob@example.com", alice)
    assert resp.status_code == 404


def test_only_owner_can_share(client, bob, carol, shared_task):
    resp = _share(client, shared_task["id"], "carol@example.com", bob)
    assert resp.status_code == 403
    assert resp.json() == {"error": "Only task owner can share"}


def test_shared_tasks_listed_separately(client, alice, bob, shared_task):
    shared = client.get("/api/tasks/shared", headers=bob).json()["tasks"]
    assert [t["id"] for t in shared] == [shared_task["id"]]
    assert shared[0]["permission"] == "view"
    assert shared[0]["profile"]["email"] == "alice@example.com"
    assert client.get("/api/tasks", headers=bob).json()["tasks"] == []


def test_unshare(client, alice, bob, shared_task):
    url = f"/api/tasks/{shared_task['id']}/share"
    resp = client.request("DELETE", url, json={"sharedUserId": "user-bob"}, headers=alice)
    assert resp.status_code == 200
    assert resp.json() == {"message": "Task unshared successfully"}
    assert client.get(f"/api/tasks/{shared_task['id']}", headers=bob).status_code == 403

    # absence is not an error
    resp = client.request("DELETE", url, json={"sharedUserId": "user-bob"}, headers=alice)
    assert resp.status_code == 200


def test_unshare_validation_and_ownership(client, alice, bob, shared_task):
    url = f"/api/tasks/{shared_task['id']}/share"
    resp = client.request("DELETE", url, json={}, headers=alice)
    assert resp.status_code == 400
    assert resp.json() == {"error": "User ID is required"}

    resp = client.request("DELETE", url, json={"sharedUserId": "user-bob"}, headers=bob)
    assert resp.status_code == 403
