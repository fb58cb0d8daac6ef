"""
MongoDB access for the task manager.

Collections: profiles, tasks, task_shares, comments, attachments,
notifications, and session (written by the external auth service,
read-only here).

Constraints the relational schema expressed declaratively live here:
unique indexes for profile email and (task, recipient) shares, the
updated_at stamp, the profile-on-first-sign-in upsert, and the cascade
from a task to its dependent rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import get_settings

logger = logging.getLogger(__name__)

PROFILES = "profiles"
TASKS = "tasks"
SHARES = "task_shares"
COMMENTS = "comments"
ATTACHMENTS = "attachments"
NOTIFICATIONS = "notifications"
SESSIONS = "session"

_client: Optional[MongoClient] = None
db: Optional[Database] = None


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    full_name: str = ""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Mongo hands back naive datetimes; they are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_client() -> MongoClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = MongoClient(settings.database_url, tz_aware=True)
        logger.info("MongoClient created url=%s", settings.database_url.split("@")[-1])
    return _client


def get_db() -> Database:
    global db
    if db is None:
        db = get_client()[get_settings().database_name]
        ensure_indexes(db)
    return db


def set_db(database: Optional[Database]) -> None:
    """Swap the active database handle; None resets to lazy creation."""
    global db
    db = database
    if database is not None:
        ensure_indexes(database)


def ensure_indexes(database: Database) -> None:
    # sparse: accounts without an email (phone sign-in) carry no email key
    database[PROFILES].create_index([("email", ASCENDING)], unique=True, sparse=True)
    database[TASKS].create_index([("user_id", ASCENDING)])
    database[TASKS].create_index([("status", ASCENDING)])
    database[SHARES].create_index(
        [("task_id", ASCENDING), ("shared_with_user_id", ASCENDING)], unique=True
    )
    database[SHARES].create_index([("shared_with_user_id", ASCENDING)])
    database[COMMENTS].create_index([("task_id", ASCENDING)])
    database[ATTACHMENTS].create_index([("task_id", ASCENDING)])
    database[NOTIFICATIONS].create_index([("user_id", ASCENDING)])
    database[NOTIFICATIONS].create_index([("read", ASCENDING)])
    database[SESSIONS].create_index([("token", ASCENDING)], unique=True)


def touch(update: Dict[str, Any]) -> Dict[str, Any]:
    update["updated_at"] = utcnow()
    return update


def create_document(database: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    doc = {**data}
    doc.setdefault("created_at", now)
    if collection not in (SHARES, ATTACHMENTS, NOTIFICATIONS):
        doc.setdefault("updated_at", now)
    res = database[collection].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def get_documents(
    database: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def resolve_session(database: Database, token: Optional[str]) -> Optional[AuthUser]:
    if not token:
        return None
    session = database[SESSIONS].find_one({"token": token})
    if not session:
        return None
    expires_at = session.get("expires_at")
    if expires_at and as_utc(expires_at) < utcnow():
        return None
    return AuthUser(
        id=str(session["user_id"]),
        email=session.get("email", ""),
        full_name=session.get("full_name") or "",
    )


def ensure_profile(database: Database, user: AuthUser) -> None:
    """
    Create the profile row for an account the first time it is seen.

    An email already held by another profile leaves this account without a
    row. The request still goes through; joins show no profile for it.
    """
    now = utcnow()
    row: Dict[str, Any] = {
        "full_name": user.full_name,
        "avatar_url": None,
        "created_at": now,
        "updated_at": now,
    }
    if user.email:
        row["email"] = user.email
    try:
        res = database[PROFILES].update_one({"_id": user.id}, {"$setOnInsert": row}, upsert=True)
    except DuplicateKeyError:
        logger.warning("Profile not created user_id=%s: email %r already in use", user.id, user.email)
        return
    if res.upserted_id is not None:
        logger.info("Profile created user_id=%s", user.id)


def delete_task_cascade(database: Database, task_id: ObjectId) -> int:
    """Delete a task and the rows that hang off it. Returns the task delete count."""
    res = database[TASKS].delete_one({"_id": task_id})
    if not res.deleted_count:
        return 0
    # the task is gone at this point; leftover rows are logged, not reported
    for collection in (SHARES, COMMENTS, ATTACHMENTS, NOTIFICATIONS):
        try:
            database[collection].delete_many({"task_id": task_id})
        except PyMongoError:
            logger.exception("Cascade delete failed collection=%s task_id=%s", collection, task_id)
    return res.deleted_count
