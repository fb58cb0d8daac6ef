"""
View helpers shared by the HTML pages and the command-line front end.

Status columns, badges, due-date formatting, a confirmation gate for
destructive actions, and the debounced user search used when sharing.
"""
from __future__ import annotations

import html
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from schemas import parse_timestamp, is_overdue

logger = logging.getLogger(__name__)

STATUS_COLUMNS = [
    ("todo", "To Do"),
    ("in_progress", "In Progress"),
    ("completed", "Completed"),
]

Task = Dict[str, Any]


def group_by_status(tasks: List[Task]) -> Dict[str, List[Task]]:
    groups: Dict[str, List[Task]] = {key: [] for key, _ in STATUS_COLUMNS}
    for task in tasks:
        groups.setdefault(task.get("status") or "todo", []).append(task)
    return groups


def format_due(task: Task, now: Optional[datetime] = None) -> str:
    due = parse_timestamp(task.get("due_date"))
    if due is None:
        return ""
    text = f"{due:%b} {due.day}, {due.year}"
    if is_overdue(task, now):
        text += " (Overdue)"
    return text


def task_badges(task: Task, shared_with_me: bool = False, now: Optional[datetime] = None) -> List[str]:
    badges = [task.get("priority") or "medium"]
    if task.get("category"):
        badges.append(task["category"])
    if is_overdue(task, now):
        badges.append("Overdue")
    if shared_with_me:
        badges.append("Shared with you")
    elif task.get("task_shares"):
        badges.append("Shared")
    return badges


def splice_task(tasks: List[Task], updated: Task) -> List[Task]:
    """Replace one task in a list after a known single-row mutation."""
    return [updated if t.get("id") == updated.get("id") else t for t in tasks]


def drop_task(tasks: List[Task], task_id: str) -> List[Task]:
    return [t for t in tasks if t.get("id") != task_id]


@dataclass
class ConfirmDialog:
    """Gate for destructive actions. Anything but an explicit yes cancels."""

    title: str
    message: str
    confirm_text: str = "Confirm"
    cancel_text: str = "Cancel"

    def ask(
        self,
        reader: Callable[[str], str] = input,
        writer: Callable[[str], None] = print,
    ) -> bool:
        writer(self.title)
        writer(self.message)
        try:
            answer = reader(f"{self.confirm_text}? [y/N] ({self.cancel_text} by default): ")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}


class SearchBox:
    """
    Debounced user search.

    Each call to set_query() cancels the pending lookup and schedules a new
    one after `delay` seconds. Blank queries clear the results without
    calling the search function.
    """

    def __init__(
        self,
        search: Callable[[str], List[Dict[str, Any]]],
        on_results: Callable[[List[Dict[str, Any]]], None],
        delay: float = 0.3,
    ) -> None:
        self._search = search
        self._on_results = on_results
        self._delay = delay
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self.query = ""

    def set_query(self, query: str) -> None:
        with self._lock:
            self.query = query
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._fire, args=(query,))
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self, query: str) -> None:
        if not query.strip():
            self._on_results([])
            return
        try:
            results = self._search(query)
        except Exception:
            logger.exception("User search failed q=%r", query)
            results = []
        with self._lock:
            if query != self.query:
                logger.debug("Dropping stale search results q=%r", query)
                return
        self._on_results(results)


# -----------------------------
# HTML pages
# -----------------------------
_PAGE = """<!doctype html>
<html lang="en">
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
{body}
</body>
</html>
"""


def _task_item(task: Task, shared_with_me: bool, now: Optional[datetime]) -> str:
    badges = " ".join(f"<span class=\"badge\">{html.escape(b)}</span>" for b in task_badges(task, shared_with_me, now))
    due = format_due(task, now)
    parts = [f"<strong>{html.escape(task.get('title') or '')}</strong>", badges]
    if task.get("description"):
        parts.append(f"<p>{html.escape(task['description'])}</p>")
    if due:
        parts.append(f"<small>Due {html.escape(due)}</small>")
    return f"<li data-id=\"{html.escape(str(task.get('id')))}\">{' '.join(parts)}</li>"


def render_dashboard(
    owned: List[Task],
    shared: List[Task],
    user_email: str,
    now: Optional[datetime] = None,
) -> str:
    shared_ids = {t.get("id") for t in shared}
    groups = group_by_status(owned + shared)
    columns = []
    for key, label in STATUS_COLUMNS:
        items = "".join(_task_item(t, t.get("id") in shared_ids, now) for t in groups.get(key, []))
        count = len(groups.get(key, []))
        columns.append(f"<section id=\"{key}\"><h2>{label} ({count})</h2><ul>{items}</ul></section>")
    body = f"<header>Signed in as {html.escape(user_email)}</header>\n" + "\n".join(columns)
    return _PAGE.format(title="My Tasks", body=body)


def render_auth_page(kind: str, redirected_from: Optional[str] = None) -> str:
    heading = "Sign in" if kind == "login" else "Create an account"
    body = [f"<h1>{heading}</h1>", "<p>Accounts and sessions are managed by the authentication service.</p>"]
    if redirected_from:
        body.append(f"<p>Sign in to continue to <code>{html.escape(redirected_from)}</code>.</p>")
    return _PAGE.format(title=heading, body="\n".join(body))
