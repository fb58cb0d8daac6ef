"""Settings loaded from environment variables (+ optional .env).

One Settings object for the whole app. Nothing here needs the database
to be reachable at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

ENV_PREFIX = "TASKS"


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    try:
        from dotenv import load_dotenv
    except ImportError:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _first_env(*names: str, default: Optional[str] = None) -> Optional[str]:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(default: int, *names: str) -> int:
    raw = _first_env(*names)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(default: List[str], *names: str) -> List[str]:
    raw = _first_env(*names)
    if raw is None:
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


@dataclass(frozen=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    log_dir: Optional[Path]

    # ---- Server ----
    host: str
    port: int
    cors_origins: List[str]

    # ---- Database ----
    database_url: str
    database_name: str

    # ---- Session / routing ----
    session_cookie: str
    login_path: str
    default_path: str
    auth_paths: List[str]

    # ---- Limits ----
    search_limit: int
    notification_limit: int

    # ---- Client ----
    api_url: str
    token_file: Path

    @staticmethod
    def from_env() -> "Settings":
        log_dir = _first_env(_k("LOG_DIR"))
        return Settings(
            app_name=_first_env(_k("APP_NAME"), default="Task Manager API"),
            log_level=_first_env(_k("LOG_LEVEL"), "LOG_LEVEL", default="INFO").upper(),
            log_dir=Path(log_dir).expanduser() if log_dir else None,
            host=_first_env(_k("HOST"), "HOST", default="0.0.0.0"),
            port=_env_int(8000, _k("PORT"), "PORT"),
            cors_origins=_env_list(["*"], _k("CORS_ORIGINS")),
            database_url=_first_env(_k("DATABASE_URL"), "DATABASE_URL", default="mongodb://localhost:27017"),
            database_name=_first_env(_k("DATABASE_NAME"), "DATABASE_NAME", default="task_manager"),
            session_cookie=_first_env(_k("SESSION_COOKIE"), default="tm_session"),
            login_path=_first_env(_k("LOGIN_PATH"), default="/login"),
            default_path=_first_env(_k("DEFAULT_PATH"), default="/"),
            auth_paths=_env_list(["/login", "/signup"], _k("AUTH_PATHS")),
            search_limit=_env_int(10, _k("SEARCH_LIMIT")),
            notification_limit=_env_int(50, _k("NOTIFICATION_LIMIT")),
            api_url=_first_env(_k("API_URL"), default="http://localhost:8000"),
            token_file=Path(
                _first_env(_k("TOKEN_FILE"), default="~/.local/share/task-manager/token")
            ).expanduser(),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
