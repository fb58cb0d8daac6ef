"""
Record shapes for the task manager.

Each row model mirrors one MongoDB collection as the API returns it (ids
and timestamps serialized to strings). Request models describe what the
route handlers accept.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

TaskStatus = Literal["todo", "in_progress", "completed"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
SharePermission = Literal["view", "edit"]
NotificationType = Literal["task_shared", "comment_added", "task_due_soon"]

TASK_STATUSES = ("todo", "in_progress", "completed")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
DEFAULT_STATUS = "todo"
DEFAULT_PRIORITY = "medium"


# Profiles
class ProfileSummary(BaseModel):
    id: str
    email: EmailStr
    full_name: Optional[str] = None


class Profile(ProfileSummary):
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Tasks
class Task(BaseModel):
    id: str
    user_id: str = Field(..., description="Owner (profile id)")
    title: str
    description: Optional[str] = None
    status: TaskStatus = DEFAULT_STATUS
    priority: TaskPriority = DEFAULT_PRIORITY
    category: Optional[str] = None
    due_date: Optional[str] = Field(None, description="ISO timestamp")
    completed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Shares
class TaskShare(BaseModel):
    id: str
    task_id: str
    shared_with_user_id: str
    shared_by_user_id: str
    permission: SharePermission = "view"
    created_at: Optional[str] = None


# Comments
class Comment(BaseModel):
    id: str
    task_id: str
    user_id: str
    content: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Attachments (metadata only; bytes live in object storage)
class Attachment(BaseModel):
    id: str
    task_id: str
    user_id: str
    file_name: str
    file_path: str
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    created_at: Optional[str] = None


# Notifications
class Notification(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    task_id: Optional[str] = None
    read: bool = False
    created_at: Optional[str] = None
    read_at: Optional[str] = None


# -----------------------------
# Request bodies
# -----------------------------
class TaskCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[datetime] = None
    category: Optional[str] = None


class TaskUpdate(BaseModel):
    """Partial update; only fields present in the body are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    category: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class ShareCreate(BaseModel):
    userEmail: Optional[str] = None


class ShareDelete(BaseModel):
    sharedUserId: Optional[str] = None


class CommentCreate(BaseModel):
    content: Optional[str] = None


class AttachmentCreate(BaseModel):
    file_name: str = Field(..., min_length=1)
    file_path: str = Field(..., min_length=1)
    file_size: Optional[int] = Field(None, ge=0)
    file_type: Optional[str] = None


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None


class MarkReadRequest(BaseModel):
    notification_ids: List[str]


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_overdue(task: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Past due date and not completed. Completed tasks are never overdue."""
    if task.get("status") == "completed":
        return False
    due = parse_timestamp(task.get("due_date"))
    if due is None:
        return False
    return due < (now or datetime.now(timezone.utc))
