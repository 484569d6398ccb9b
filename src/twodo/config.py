# src/twodo/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Backend selection (local SQLite vs hosted Supabase) is a plain setting.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

ENV_PREFIX = "TWODO"

WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def parse_weekday(raw: str | None, default: int = WEEKDAYS["sunday"]) -> int:
    """Weekday name (or 0..6, Monday=0) -> datetime.weekday() number."""
    if raw is None:
        return default
    s = raw.strip().lower()
    if s.isdigit() and 0 <= int(s) <= 6:
        return int(s)
    return WEEKDAYS.get(s, default)


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    log_file_level: str
    log_file: Path

    # ---- Connector flags ----
    console_enabled: bool
    matrix_enabled: bool

    # ---- Backend ----
    backend: str
    tasks_db_path: Path

    # ---- Identity (local backend) ----
    user_id: str
    user_name: str
    user_email: str
    partner_id: Optional[str]
    partner_name: Optional[str]

    # ---- Supabase ----
    supabase_url: str
    supabase_anon_key: str
    supabase_email: str
    supabase_password: str
    http_timeout_seconds: float
    realtime_heartbeat_seconds: float

    # ---- Watchdog / milestones ----
    watchdog_interval_seconds: float
    week_start_day: int

    # ---- Matrix notifications ----
    matrix_homeserver: str
    matrix_user_id: str
    matrix_password: str
    matrix_room_id: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    matrix_store_path: Path

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "twodo") or "twodo"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        matrix_enabled = _env_bool(_k("MATRIX_ENABLED"), False)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/twodo"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        matrix_store_path = _env_path(_k("MATRIX_STORE_PATH"), data_dir / "matrix_store")
        log_file = _env_path(_k("LOG_FILE"), data_dir / f"{app_name}.log")
        log_file_level = _env(_k("LOG_FILE_LEVEL"), "DEBUG")

        backend = _env(_k("BACKEND"), "local").strip().lower() or "local"

        user_id = _env(_k("USER_ID"), "local-user").strip() or "local-user"
        user_name = _env(_k("USER_NAME"), "Me").strip() or "Me"
        user_email = _env(_k("USER_EMAIL"), "").strip()
        partner_id = (_env(_k("PARTNER_ID"), "").strip() or None)
        partner_name = (_env(_k("PARTNER_NAME"), "").strip() or None)

        # Accept the frontend-style names too, so one .env can serve both clients.
        supabase_url = (_first_env(_k("SUPABASE_URL"), "VITE_SUPABASE_URL", default="") or "").strip()
        supabase_anon_key = (
            _first_env(_k("SUPABASE_ANON_KEY"), "VITE_SUPABASE_ANON_KEY", default="") or ""
        ).strip()
        supabase_email = _env(_k("SUPABASE_EMAIL"), "").strip()
        supabase_password = _env(_k("SUPABASE_PASSWORD"), "")

        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 10.0)
        realtime_heartbeat_seconds = _env_float(_k("REALTIME_HEARTBEAT_SECONDS"), 30.0)

        watchdog_interval_seconds = _env_float(_k("WATCHDOG_INTERVAL_SECONDS"), 60.0)
        week_start_day = parse_weekday(os.getenv(_k("WEEK_START")))

        matrix_homeserver = _env(_k("MATRIX_HOMESERVER"), "").strip()
        matrix_user_id = _env(_k("MATRIX_USER_ID"), "").strip()
        matrix_password = _env(_k("MATRIX_PASSWORD"), "").strip()
        matrix_room_id = _env(_k("MATRIX_ROOM_ID"), "").strip()

        return Settings(
            app_name=app_name,
            log_level=log_level,
            log_file_level=log_file_level,
            log_file=log_file,
            console_enabled=console_enabled,
            matrix_enabled=matrix_enabled,
            backend=backend,
            tasks_db_path=tasks_db_path,
            user_id=user_id,
            user_name=user_name,
            user_email=user_email,
            partner_id=partner_id,
            partner_name=partner_name,
            supabase_url=supabase_url,
            supabase_anon_key=supabase_anon_key,
            supabase_email=supabase_email,
            supabase_password=supabase_password,
            http_timeout_seconds=http_timeout_seconds,
            realtime_heartbeat_seconds=realtime_heartbeat_seconds,
            watchdog_interval_seconds=watchdog_interval_seconds,
            week_start_day=week_start_day,
            matrix_homeserver=matrix_homeserver,
            matrix_user_id=matrix_user_id,
            matrix_password=matrix_password,
            matrix_room_id=matrix_room_id,
            data_dir=data_dir,
            matrix_store_path=matrix_store_path,
        )


SETTINGS = Settings.from_env()

# ---- Optional local overrides (never committed) ----
# Prefer .env for secrets; use config_local.py only for safe overrides.
try:
    import config_local as _config_local  # type: ignore

    if hasattr(_config_local, "CONSOLE_ENABLED"):
        object.__setattr__(SETTINGS, "console_enabled", bool(_config_local.CONSOLE_ENABLED))  # type: ignore[misc]
    if hasattr(_config_local, "MATRIX_ENABLED"):
        object.__setattr__(SETTINGS, "matrix_enabled", bool(_config_local.MATRIX_ENABLED))  # type: ignore[misc]
except Exception:
    pass


def get_settings() -> Settings:
    return SETTINGS
