"""Command-line front end for the task manager API.

Reads the session token from the local token file (see `login`) and talks
to the API through TaskClient.
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

import httpx

import views
from client import ApiError, TaskClient, TokenFile, create_browser_client
from config import get_settings
from logging_setup import setup_logging

logger = logging.getLogger(__name__)


class TaskListView:
    """Owned and shared tasks as last fetched, patched in place after single-row changes."""

    def __init__(self, client: TaskClient, out: Callable[[str], None] = print) -> None:
        self.client = client
        self.out = out
        self.tasks: List[Dict[str, Any]] = []
        self.shared: List[Dict[str, Any]] = []

    def refresh(self) -> None:
        self.tasks = self.client.list_tasks()
        self.shared = self.client.list_shared_tasks()

    def create(self, title: str, **fields: Any) -> Dict[str, Any]:
        task = self.client.create_task(title, **fields)
        self.refresh()
        return task

    def edit(self, task_id: str, **fields: Any) -> Dict[str, Any]:
        task = self.client.update_task(task_id, **fields)
        self.tasks = views.splice_task(self.tasks, task)
        return task

    def toggle(self, task_id: str) -> Dict[str, Any]:
        current = next((t for t in self.tasks if t.get("id") == task_id), None)
        if current is None:
            current = self.client.get_task(task_id)
        new_status = "todo" if current.get("status") == "completed" else "completed"
        return self.edit(task_id, status=new_status)

    def delete(self, task_id: str) -> None:
        self.client.delete_task(task_id)
        self.tasks = views.drop_task(self.tasks, task_id)

    def render(self) -> None:
        shared_ids = {t.get("id") for t in self.shared}
        groups = views.group_by_status(self.tasks + self.shared)
        for key, label in views.STATUS_COLUMNS:
            items = groups.get(key, [])
            self.out(f"{label} ({len(items)})")
            for t in items:
                badges = ", ".join(views.task_badges(t, t.get("id") in shared_ids))
                due = views.format_due(t)
                line = f"  {t['id']}  {t['title']}  [{badges}]"
                if due:
                    line += f"  due {due}"
                self.out(line)


def _fields(args: argparse.Namespace, names) -> Dict[str, Any]:
    out = {}
    for name in names:
        value = getattr(args, name, None)
        if value is not None:
            out[name] = value
    return out


TASK_FIELDS = ("description", "status", "priority", "due_date", "category")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tasks", description="Task manager command line")
    parser.add_argument("--api-url", default=None, help="API base URL")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="store a session token")
    p.add_argument("token")
    sub.add_parser("logout", help="forget the stored session token")
    sub.add_parser("list", help="show own and shared tasks")

    def task_options(p: argparse.ArgumentParser) -> None:
        p.add_argument("--description")
        p.add_argument("--status", choices=["todo", "in_progress", "completed"])
        p.add_argument("--priority", choices=["low", "medium", "high", "urgent"])
        p.add_argument("--due", dest="due_date", help="ISO timestamp")
        p.add_argument("--category")

    p = sub.add_parser("add", help="create a task")
    p.add_argument("title")
    task_options(p)

    p = sub.add_parser("edit", help="update fields of a task")
    p.add_argument("task_id")
    p.add_argument("--title")
    task_options(p)

    p = sub.add_parser("show", help="show one task with comments and shares")
    p.add_argument("task_id")

    p = sub.add_parser("toggle", help="flip a task between todo and completed")
    p.add_argument("task_id")

    p = sub.add_parser("delete", help="delete a task")
    p.add_argument("task_id")
    p.add_argument("-y", "--yes", action="store_true", help="skip the confirmation prompt")

    p = sub.add_parser("share", help="share a task by email")
    p.add_argument("task_id")
    p.add_argument("email")

    p = sub.add_parser("unshare", help="remove a user's access to a task")
    p.add_argument("task_id")
    p.add_argument("user_id")

    p = sub.add_parser("search", help="search users by email")
    p.add_argument("query")

    p = sub.add_parser("comment", help="comment on a task")
    p.add_argument("task_id")
    p.add_argument("content")

    p = sub.add_parser("notifications", help="list notifications")
    p.add_argument("--read", action="store_true", help="mark the listed notifications as read")
    return parser


def run(args: argparse.Namespace, client: TaskClient,
        out: Callable[[str], None] = print, reader: Callable[[str], str] = input) -> int:
    view = TaskListView(client, out)
    cmd = args.command

    if cmd == "list":
        view.refresh()
        view.render()
    elif cmd == "add":
        task = view.create(args.title, **_fields(args, TASK_FIELDS))
        out(f"Created {task['id']}  {task['title']}  ({task['status']}, {task['priority']})")
    elif cmd == "edit":
        fields = _fields(args, ("title",) + TASK_FIELDS)
        if not fields:
            out("Nothing to update")
            return 1
        task = view.edit(args.task_id, **fields)
        out(f"Updated {task['id']}  {task['title']}  ({task['status']})")
    elif cmd == "show":
        task = client.get_task(args.task_id)
        out(f"{task['title']}  [{', '.join(views.task_badges(task))}]  {task['status']}")
        if task.get("description"):
            out(task["description"])
        for share in task.get("task_shares", []):
            who = (share.get("profile") or {}).get("email", share["shared_with_user_id"])
            out(f"  shared with {who} ({share.get('permission', 'view')})")
        for c in task.get("comments", []):
            who = (c.get("profile") or {}).get("email", c["user_id"])
            out(f"  {who}: {c['content']}")
    elif cmd == "toggle":
        task = view.toggle(args.task_id)
        out(f"{task['title']} -> {task['status']}")
    elif cmd == "delete":
        dialog = views.ConfirmDialog(
            title="Delete task",
            message="This removes the task with its comments, attachments and shares.",
            confirm_text="Delete",
        )
        if not args.yes and not dialog.ask(reader, out):
            out("Cancelled")
            return 1
        view.delete(args.task_id)
        out("Task deleted")
    elif cmd == "share":
        share = client.share_task(args.task_id, args.email)
        out(f"Shared with {(share.get('profile') or {}).get('email', args.email)}")
    elif cmd == "unshare":
        client.unshare_task(args.task_id, args.user_id)
        out("Share removed")
    elif cmd == "search":
        users = client.search_users(args.query)
        if not users:
            out("No users found")
        for u in users:
            out(f"{u['id']}  {u['email']}  {u.get('full_name') or ''}".rstrip())
    elif cmd == "comment":
        client.add_comment(args.task_id, args.content)
        out("Comment added")
    elif cmd == "notifications":
        notes = client.list_notifications()
        for n in notes:
            mark = " " if n.get("read") else "*"
            out(f"{mark} {n['title']}: {n['message']}")
        if args.read:
            unread = [n["id"] for n in notes if not n.get("read")]
            if unread:
                client.mark_notifications_read(unread)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging("DEBUG" if args.verbose else "WARNING")
    token_file = TokenFile(settings.token_file)

    if args.command == "login":
        token_file.save(args.token)
        print("Token saved")
        return 0
    if args.command == "logout":
        token_file.clear()
        print("Signed out")
        return 0

    with create_browser_client(args.api_url, token_file) as client:
        try:
            return run(args, client)
        except ApiError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 2
        except httpx.HTTPError as e:
            logger.debug("Request failed", exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 2


if __name__ == "__main__":
    sys.exit(main())
