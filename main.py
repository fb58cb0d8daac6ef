import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import views
from config import get_settings
from database import (
    ATTACHMENTS,
    COMMENTS,
    NOTIFICATIONS,
    PROFILES,
    SHARES,
    TASKS,
    AuthUser,
    create_document,
    delete_task_cascade,
    ensure_profile,
    get_db,
    get_documents,
    resolve_session,
    touch,
    utcnow,
)
from logging_setup import setup_logging
from schemas import (
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    TASK_PRIORITIES,
    TASK_STATUSES,
    AttachmentCreate,
    CommentCreate,
    MarkReadRequest,
    ProfileUpdate,
    ShareCreate,
    ShareDelete,
    TaskCreate,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

PROFILE_FIELDS = {"_id": 1, "email": 1, "full_name": 1}

# -----------------------------
# Helpers
# -----------------------------

def oid(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            d[k] = v.astimezone(timezone.utc).isoformat()
        if isinstance(v, ObjectId):
            d[k] = str(v)
    return d


def profiles_by_id(db: Database, user_ids) -> Dict[str, Dict[str, Any]]:
    ids = list({str(u) for u in user_ids if u})
    if not ids:
        return {}
    cursor = db[PROFILES].find({"_id": {"$in": ids}}, PROFILE_FIELDS)
    return {p["_id"]: serialize(p) for p in cursor}


def with_profile(db: Database, doc: Dict[str, Any], key: str = "user_id") -> Dict[str, Any]:
    out = serialize(doc)
    out["profile"] = profiles_by_id(db, [doc.get(key)]).get(str(doc.get(key)))
    return out


def with_profiles(db: Database, docs: List[Dict[str, Any]], key: str = "user_id") -> List[Dict[str, Any]]:
    profiles = profiles_by_id(db, [d.get(key) for d in docs])
    out = []
    for d in docs:
        item = serialize(d)
        item["profile"] = profiles.get(str(d.get(key)))
        out.append(item)
    return out


def create_notification(db: Database, user_id: str, type_: str, title: str, message: str,
                        task_id: Optional[ObjectId] = None):
    create_document(db, NOTIFICATIONS, {
        "user_id": user_id,
        "type": type_,
        "title": title,
        "message": message,
        "task_id": task_id,
        "read": False,
        "read_at": None,
    })


def display_name(user: AuthUser) -> str:
    return user.full_name or user.email


# -----------------------------
# Error responses
# -----------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid {field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse({"error": message}, status_code=400)


@app.exception_handler(PyMongoError)
async def backend_error(request: Request, exc: PyMongoError):
    logger.error("Backend error %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.error("Unexpected error %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# -----------------------------
# Auth utilities
# -----------------------------
def session_token(request: Request, authorization: Optional[str] = None) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return request.cookies.get(settings.session_cookie)


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
) -> AuthUser:
    user = resolve_session(db, session_token(request, authorization))
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    ensure_profile(db, user)
    return user


def load_task(db: Database, task_id: str) -> Dict[str, Any]:
    task = db[TASKS].find_one({"_id": oid(task_id)})
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def is_shared_with(db: Database, task: Dict[str, Any], user_id: str) -> bool:
    return db[SHARES].find_one({"task_id": task["_id"], "shared_with_user_id": user_id}) is not None


def can_access_task(db: Database, task: Dict[str, Any], user: AuthUser) -> bool:
    return task["user_id"] == user.id or is_shared_with(db, task, user.id)


def require_access(db: Database, task_id: str, user: AuthUser) -> Dict[str, Any]:
    task = load_task(db, task_id)
    if not can_access_task(db, task, user):
        raise HTTPException(status_code=403, detail="Forbidden")
    return task


def require_owner(db: Database, task_id: str, user: AuthUser, action: str) -> Dict[str, Any]:
    # "edit" shares are stored but never grant write access
    task = load_task(db, task_id)
    if task["user_id"] != user.id:
        raise HTTPException(status_code=403, detail=f"Forbidden - Only owner can {action} task")
    return task


# -----------------------------
# Task endpoints
# -----------------------------
@app.get("/api/tasks")
def list_tasks(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    tasks = get_documents(db, TASKS, {"user_id": user.id}, sort=[("created_at", -1)])
    task_ids = [t["_id"] for t in tasks]
    shares: Dict[str, List[Dict[str, Any]]] = {}
    if task_ids:
        for s in db[SHARES].find({"task_id": {"$in": task_ids}}, {"task_id": 1, "shared_with_user_id": 1}):
            shares.setdefault(str(s["task_id"]), []).append(
                {"id": str(s["_id"]), "shared_with_user_id": s["shared_with_user_id"]}
            )
    out = with_profiles(db, tasks)
    for t in out:
        t["task_shares"] = shares.get(t["id"], [])
        t["share_count"] = len(t["task_shares"])
    return {"tasks": out}


@app.get("/api/tasks/shared")
def list_shared_tasks(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    shares = list(db[SHARES].find({"shared_with_user_id": user.id}))
    if not shares:
        return {"tasks": []}
    by_task = {s["task_id"]: s for s in shares}
    tasks = get_documents(db, TASKS, {"_id": {"$in": list(by_task)}}, sort=[("created_at", -1)])
    out = with_profiles(db, tasks)
    for t, raw in zip(out, tasks):
        share = by_task[raw["_id"]]
        t["permission"] = share.get("permission", "view")
        t["shared_by_user_id"] = share.get("shared_by_user_id")
    return {"tasks": out}


@app.post("/api/tasks", status_code=201)
def create_task(body: TaskCreate, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    title = (body.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    status = body.status if body.status in TASK_STATUSES else DEFAULT_STATUS
    priority = body.priority if body.priority in TASK_PRIORITIES else DEFAULT_PRIORITY
    doc = {
        "user_id": user.id,
        "title": title,
        "description": (body.description or "").strip() or None,
        "status": status,
        "priority": priority,
        "category": body.category or None,
        "due_date": body.due_date,
        "completed_at": utcnow() if status == "completed" else None,
    }
    try:
        doc = create_document(db, TASKS, doc)
    except PyMongoError:
        logger.exception("Error creating task user_id=%s", user.id)
        raise HTTPException(status_code=500, detail="Failed to create task")
    logger.info("Task created id=%s user_id=%s", doc["_id"], user.id)
    return {"task": with_profile(db, doc)}


@app.get("/api/tasks/{task_id}")
def get_task(task_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    task = require_access(db, task_id, user)
    comments = get_documents(db, COMMENTS, {"task_id": task["_id"]}, sort=[("created_at", 1)])
    attachments = get_documents(db, ATTACHMENTS, {"task_id": task["_id"]}, sort=[("created_at", 1)])
    shares = get_documents(db, SHARES, {"task_id": task["_id"]}, sort=[("created_at", 1)])
    out = with_profile(db, task)
    out["comments"] = with_profiles(db, comments)
    out["attachments"] = [serialize(a) for a in attachments]
    out["task_shares"] = with_profiles(db, shares, key="shared_with_user_id")
    return {"task": out}


@app.patch("/api/tasks/{task_id}")
def update_task(task_id: str, body: TaskUpdate, user: AuthUser = Depends(get_current_user),
                db: Database = Depends(get_db)):
    task = require_owner(db, task_id, user, "update")
    update = body.changes()
    if "title" in update:
        update["title"] = (update["title"] or "").strip()
        if not update["title"]:
            raise HTTPException(status_code=400, detail="Title cannot be empty")
    if "description" in update:
        update["description"] = (update["description"] or "").strip() or None
    for field in ("status", "priority"):
        if field in update and update[field] is None:
            raise HTTPException(status_code=400, detail=f"Invalid {field}")
    if "status" in update:
        if update["status"] != "completed":
            update["completed_at"] = None
        elif task.get("status") != "completed":
            update["completed_at"] = utcnow()
    if not update:
        return {"task": with_profile(db, task)}
    try:
        db[TASKS].update_one({"_id": task["_id"]}, {"$set": touch(update)})
    except PyMongoError:
        logger.exception("Error updating task id=%s", task_id)
        raise HTTPException(status_code=500, detail="Failed to update task")
    updated = db[TASKS].find_one({"_id": task["_id"]})
    if not updated:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": with_profile(db, updated)}


@app.delete("/api/tasks/{task_id}")
def delete_task(task_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    task = require_owner(db, task_id, user, "delete")
    try:
        deleted = delete_task_cascade(db, task["_id"])
    except PyMongoError:
        logger.exception("Error deleting task id=%s", task_id)
        raise HTTPException(status_code=500, detail="Failed to delete task")
    if not deleted:
        raise HTTPException(status_code=500, detail="Failed to delete task")
    logger.info("Task deleted id=%s user_id=%s", task_id, user.id)
    return {"message": "Task deleted successfully"}


# -----------------------------
# Sharing
# -----------------------------
@app.post("/api/tasks/{task_id}/share", status_code=201)
def share_task(task_id: str, body: ShareCreate, user: AuthUser = Depends(get_current_user),
               db: Database = Depends(get_db)):
    email = (body.userEmail or "").strip()
    if not email:
        raise HTTPException(status_code=400, detail="User email is required")
    task = load_task(db, task_id)
    if task["user_id"] != user.id:
        raise HTTPException(status_code=403, detail="Only task owner can share")
    target = db[PROFILES].find_one({"email": email}, PROFILE_FIELDS)
    if not target:
        raise HTTPException(status_code=404, detail="User not found with that email")
    if target["_id"] == user.id:
        raise HTTPException(status_code=400, detail="Cannot share task with yourself")
    if is_shared_with(db, task, target["_id"]):
        raise HTTPException(status_code=400, detail="Task already shared with this user")
    try:
        share = create_document(db, SHARES, {
            "task_id": task["_id"],
            "shared_with_user_id": target["_id"],
            "shared_by_user_id": user.id,
            "permission": "view",
        })
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Task already shared with this user")
    except PyMongoError:
        logger.exception("Error creating share task_id=%s", task_id)
        raise HTTPException(status_code=500, detail="Failed to share task")
    create_notification(
        db, target["_id"], "task_shared", "Task shared with you",
        f"{display_name(user)} shared '{task['title']}' with you", task["_id"],
    )
    logger.info("Task shared id=%s with=%s", task_id, target["_id"])
    return {"message": "Task shared successfully", "share": with_profile(db, share, key="shared_with_user_id")}


@app.delete("/api/tasks/{task_id}/share")
def unshare_task(task_id: str, body: Optional[ShareDelete] = None,
                 user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    if body is None or not body.sharedUserId:
        raise HTTPException(status_code=400, detail="User ID is required")
    task = load_task(db, task_id)
    if task["user_id"] != user.id:
        raise HTTPException(status_code=403, detail="Only task owner can unshare")
    try:
        db[SHARES].delete_many({"task_id": task["_id"], "shared_with_user_id": body.sharedUserId})
    except PyMongoError:
        logger.exception("Error deleting share task_id=%s", task_id)
        raise HTTPException(status_code=500, detail="Failed to unshare task")
    return {"message": "Task unshared successfully"}


# -----------------------------
# User search
# -----------------------------
@app.get("/api/users/search")
def search_users(q: Optional[str] = Query(default=None), user: AuthUser = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    if not q or not q.strip():
        return {"users": []}
    pattern = {"$regex": re.escape(q.strip()), "$options": "i"}
    cursor = db[PROFILES].find({"email": pattern, "_id": {"$ne": user.id}}, PROFILE_FIELDS).limit(settings.search_limit)
    return {"users": [serialize(p) for p in cursor]}


# -----------------------------
# Comments
# -----------------------------
@app.get("/api/tasks/{task_id}/comments")
def get_comments(task_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    task = require_access(db, task_id, user)
    comments = get_documents(db, COMMENTS, {"task_id": task["_id"]}, sort=[("created_at", 1)])
    return {"comments": with_profiles(db, comments)}


@app.post("/api/tasks/{task_id}/comments", status_code=201)
def add_comment(task_id: str, body: CommentCreate, user: AuthUser = Depends(get_current_user),
                db: Database = Depends(get_db)):
    content = (body.content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Content is required")
    task = require_access(db, task_id, user)
    comment = create_document(db, COMMENTS, {"task_id": task["_id"], "user_id": user.id, "content": content})
    # notify owner if not author
    if task["user_id"] != user.id:
        create_notification(
            db, task["user_id"], "comment_added", "New comment",
            f"{display_name(user)} commented on '{task['title']}'", task["_id"],
        )
    return {"comment": with_profile(db, comment)}


@app.delete("/api/comments/{comment_id}")
def delete_comment(comment_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    comment = db[COMMENTS].find_one({"_id": oid(comment_id)})
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment["user_id"] != user.id:
        raise HTTPException(status_code=403, detail="Forbidden - Only author can delete comment")
    db[COMMENTS].delete_one({"_id": comment["_id"]})
    return {"message": "Comment deleted successfully"}


# -----------------------------
# Attachments (metadata only)
# -----------------------------
@app.get("/api/tasks/{task_id}/attachments")
def get_attachments(task_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    task = require_access(db, task_id, user)
    attachments = get_documents(db, ATTACHMENTS, {"task_id": task["_id"]}, sort=[("created_at", 1)])
    return {"attachments": [serialize(a) for a in attachments]}


@app.post("/api/tasks/{task_id}/attachments", status_code=201)
def add_attachment(task_id: str, body: AttachmentCreate, user: AuthUser = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    task = require_access(db, task_id, user)
    attachment = create_document(db, ATTACHMENTS, {
        "task_id": task["_id"],
        "user_id": user.id,
        **body.model_dump(),
    })
    return {"attachment": serialize(attachment)}


@app.delete("/api/attachments/{attachment_id}")
def delete_attachment(attachment_id: str, user: AuthUser = Depends(get_current_user),
                      db: Database = Depends(get_db)):
    attachment = db[ATTACHMENTS].find_one({"_id": oid(attachment_id)})
    if not attachment:
        raise HTTPException(status_code=404, detail="Attachment not found")
    if attachment["user_id"] != user.id:
        raise HTTPException(status_code=403, detail="Forbidden - Only uploader can delete attachment")
    db[ATTACHMENTS].delete_one({"_id": attachment["_id"]})
    return {"message": "Attachment deleted successfully"}


# -----------------------------
# Notifications
# -----------------------------
@app.get("/api/notifications")
def list_notifications(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    notes = get_documents(db, NOTIFICATIONS, {"user_id": user.id}, limit=settings.notification_limit,
                          sort=[("created_at", -1)])
    return {"notifications": [serialize(n) for n in notes]}


@app.post("/api/notifications/read")
def mark_notifications_read(body: MarkReadRequest, user: AuthUser = Depends(get_current_user),
                            db: Database = Depends(get_db)):
    ids = [oid(i) for i in body.notification_ids]
    res = db[NOTIFICATIONS].update_many(
        {"_id": {"$in": ids}, "user_id": user.id, "read": False},
        {"$set": {"read": True, "read_at": utcnow()}},
    )
    return {"updated": res.modified_count}


# -----------------------------
# Profile
# -----------------------------
@app.get("/api/profile")
def get_profile(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"profile": serialize(db[PROFILES].find_one({"_id": user.id}))}


@app.patch("/api/profile")
def update_profile(body: ProfileUpdate, user: AuthUser = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    update = {name: getattr(body, name) for name in body.model_fields_set}
    if update:
        db[PROFILES].update_one({"_id": user.id}, {"$set": touch(update)})
    return {"profile": serialize(db[PROFILES].find_one({"_id": user.id}))}


# -----------------------------
# Request gatekeeper
# -----------------------------
STATIC_PREFIXES = ("/static/", "/favicon.ico")
STATIC_SUFFIXES = (".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp")
UNGUARDED_PREFIXES = ("/api/", "/healthz", "/docs", "/redoc", "/openapi.json")


def gate(path: str, signed_in: bool) -> Optional[str]:
    """Return the redirect target for a request, or None to let it through."""
    is_auth_page = any(path.startswith(p) for p in settings.auth_paths)
    if not signed_in and not is_auth_page:
        return f"{settings.login_path}?{urlencode({'redirectedFrom': path})}"
    if signed_in and path in settings.auth_paths:
        return settings.default_path
    return None


def signed_in(token: Optional[str]) -> bool:
    return resolve_session(get_db(), token) is not None


@app.middleware("http")
async def gatekeeper(request: Request, call_next):
    path = request.url.path
    if path.startswith(STATIC_PREFIXES + UNGUARDED_PREFIXES) or path.lower().endswith(STATIC_SUFFIXES):
        return await call_next(request)
    # pymongo blocks, keep it off the event loop
    token = session_token(request, request.headers.get("authorization"))
    target = gate(path, await run_in_threadpool(signed_in, token))
    if target is not None:
        return RedirectResponse(target, status_code=307)
    return await call_next(request)


# -----------------------------
# Pages
# -----------------------------
@app.get("/", response_class=HTMLResponse)
def dashboard(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    owned = list_tasks(user, db)["tasks"]
    shared = list_shared_tasks(user, db)["tasks"]
    return views.render_dashboard(owned, shared, user.email)


@app.get("/login", response_class=HTMLResponse)
def login_page(redirectedFrom: Optional[str] = None):
    return views.render_auth_page("login", redirectedFrom)


@app.get("/signup", response_class=HTMLResponse)
def signup_page():
    return views.render_auth_page("signup")


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    setup_logging(settings.log_level, settings.log_dir)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
