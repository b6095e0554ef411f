from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timezone, tzinfo
from typing import FrozenSet, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/todos.db'
    - STORAGE_DIR: directory for uploaded objects when PERSISTENCE_BACKEND=sqlite. Default './data/storage'
    - PUBLIC_BASE_URL: base URL used to build public object URLs. Default 'http://localhost:8000'
    - SITE_URL: frontend origin used for OAuth and password reset redirects. Default 'http://localhost:3000'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - APP_TIMEZONE: IANA zone used for the 'today' filter. Default 'UTC'
    - BOOTSTRAP_ADMIN_EMAILS: comma-separated emails whose profiles start with role 'admin'
    - SESSION_TTL_SECONDS: access token lifetime. Default 3600
    - LOG_LEVEL: logging level name. Default 'INFO'
    - LOG_JSON: 'true' to render logs as JSON (default: false)
    """

    persistence_backend: str
    sqlite_db_path: str
    storage_dir: str
    public_base_url: str
    site_url: str
    cors_allow_origins: List[str]
    timezone: str
    bootstrap_admin_emails: FrozenSet[str]
    session_ttl_seconds: int
    log_level: str
    log_json: bool

    @property
    def tzinfo(self) -> tzinfo:
        if self.timezone == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone)


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str, default: int) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


def _parse_timezone(value: str) -> str:
    name = value.strip()
    if name.upper() == "UTC":
        return "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return "UTC"
    return name


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        backend = "memory"

    admins = _get_env("BOOTSTRAP_ADMIN_EMAILS", "")
    log_level = _get_env("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        log_level = "INFO"

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./data/todos.db").strip(),
        storage_dir=_get_env("STORAGE_DIR", "./data/storage").strip(),
        public_base_url=_get_env("PUBLIC_BASE_URL", "http://localhost:8000").strip().rstrip("/"),
        site_url=_get_env("SITE_URL", "http://localhost:3000").strip().rstrip("/"),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        timezone=_parse_timezone(_get_env("APP_TIMEZONE", "UTC")),
        bootstrap_admin_emails=frozenset(e.strip().lower() for e in admins.split(",") if e.strip()),
        session_ttl_seconds=_parse_int(_get_env("SESSION_TTL_SECONDS", "3600"), 3600),
        log_level=log_level,
        log_json=_parse_bool(_get_env("LOG_JSON", "false"), False),
    )
