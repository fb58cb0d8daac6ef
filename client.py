"""
HTTP client for the task manager API.

Two factories build the same TaskClient and differ only in where the
session token lives:

- create_browser_client(): token kept in a local token file and sent as a
  bearer header (the local-storage flavour).
- create_server_client(cookies): token carried in the session cookie.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx

from config import get_settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class TokenFile:
    """Session token persisted in a small file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> Optional[str]:
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return token or None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token, encoding="utf-8")
        self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class TaskClient:
    def __init__(self, http: httpx.Client) -> None:
        self.http = http

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "TaskClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        resp = self.http.request(method, url, **kwargs)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            logger.debug("%s %s -> %s %s", method, url, resp.status_code, message)
            raise ApiError(resp.status_code, message or resp.reason_phrase)
        return data

    # ---- tasks ----

    def list_tasks(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/tasks")["tasks"]

    def list_shared_tasks(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/tasks/shared")["tasks"]

    def create_task(self, title: str, **fields: Any) -> Dict[str, Any]:
        return self._request("POST", "/api/tasks", json={"title": title, **fields})["task"]

    def get_task(self, task_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/tasks/{task_id}")["task"]

    def update_task(self, task_id: str, **fields: Any) -> Dict[str, Any]:
        return self._request("PATCH", f"/api/tasks/{task_id}", json=fields)["task"]

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", f"/api/tasks/{task_id}")

    # ---- sharing ----

    def share_task(self, task_id: str, email: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/tasks/{task_id}/share", json={"userEmail": email})["share"]

    def unshare_task(self, task_id: str, user_id: str) -> None:
        self._request("DELETE", f"/api/tasks/{task_id}/share", json={"sharedUserId": user_id})

    def search_users(self, query: str) -> List[Dict[str, Any]]:
        if not query.strip():
            return []
        return self._request("GET", "/api/users/search", params={"q": query})["users"]

    # ---- comments / notifications / profile ----

    def list_comments(self, task_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/api/tasks/{task_id}/comments")["comments"]

    def add_comment(self, task_id: str, content: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/tasks/{task_id}/comments", json={"content": content})["comment"]

    def list_notifications(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/notifications")["notifications"]

    def mark_notifications_read(self, notification_ids: List[str]) -> int:
        data = self._request("POST", "/api/notifications/read", json={"notification_ids": notification_ids})
        return data["updated"]

    def me(self) -> Dict[str, Any]:
        return self._request("GET", "/api/profile")["profile"]


def create_browser_client(
    base_url: Optional[str] = None,
    token_file: Optional[TokenFile] = None,
    http: Optional[httpx.Client] = None,
) -> TaskClient:
    settings = get_settings()
    token_file = token_file or TokenFile(settings.token_file)
    http = http or httpx.Client(base_url=base_url or settings.api_url, timeout=10.0)
    token = token_file.load()
    if token:
        http.headers["Authorization"] = f"Bearer {token}"
    return TaskClient(http)


def create_server_client(
    cookies: Mapping[str, str],
    base_url: Optional[str] = None,
    http: Optional[httpx.Client] = None,
) -> TaskClient:
    settings = get_settings()
    http = http or httpx.Client(base_url=base_url or settings.api_url, timeout=10.0)
    token = cookies.get(settings.session_cookie)
    if token:
        http.cookies.set(settings.session_cookie, token)
    return TaskClient(http)
