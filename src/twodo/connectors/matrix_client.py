# src/twodo/connectors/matrix_client.py

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from nio import AsyncClient, AsyncClientConfig, LoginResponse

logger = logging.getLogger(__name__)


def _session_path(store_dir: Path) -> Path:
    return store_dir / "session.json"


def _safe_mkdir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Failed to create directory %s: %r", path, e)


def load_session(path: Path) -> dict[str, str] | None:
    """Read a saved Matrix session; None when missing or incomplete."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Unreadable Matrix session file %s: %r", path, e)
        return None
    if not isinstance(data, dict):
        return None
    fields = ("access_token", "user_id", "device_id")
    if not all(data.get(k) for k in fields):
        logger.warning("Matrix session file %s is missing required fields", path)
        return None
    return {k: str(data[k]) for k in fields}


def save_session(path: Path, data: dict[str, Any]) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
    os.replace(tmp, path)
    try:
        os.chmod(path, 0o600)
    except OSError:
        # Not critical on Windows or restricted FS.
        pass


async def create_matrix_client(settings) -> AsyncClient | None:
    """
    Create a logged-in Matrix AsyncClient for sending alerts.

    The access token / device id are persisted in session.json under
    matrix_store_path so restarts do not log in again. The file contains a
    credential and lives under the gitignored local data dir.

    Alerts are plain-text messages; room encryption is not supported.
    """
    homeserver = (getattr(settings, "matrix_homeserver", "") or "").strip()
    user_id = (getattr(settings, "matrix_user_id", "") or "").strip()
    password = (getattr(settings, "matrix_password", "") or "").strip()
    store_dir = Path(getattr(settings, "matrix_store_path", Path(".local/twodo/matrix_store")))

    if not homeserver or not user_id:
        logger.error("Matrix is not configured: set TWODO_MATRIX_HOMESERVER and TWODO_MATRIX_USER_ID")
        return None

    _safe_mkdir(store_dir)
    session_file = _session_path(store_dir)

    client = AsyncClient(
        homeserver,
        user_id,
        config=AsyncClientConfig(encryption_enabled=False, store_sync_tokens=False),
    )

    session = load_session(session_file)
    if session is not None:
        client.access_token = session["access_token"]
        client.user_id = session["user_id"]
        client.device_id = session["device_id"]
        logger.info("Matrix session restored for %s", client.user_id)
        return client

    if not password:
        logger.error(
            "Matrix session.json not found and password is not set. "
            "Set TWODO_MATRIX_PASSWORD once to bootstrap a session."
        )
        await client.close()
        return None

    device_name = f"{getattr(settings, 'app_name', 'twodo')} (Python)"
    logger.info("Logging in to Matrix to bootstrap a new session (device_name=%r)...", device_name)

    resp = await client.login(password=password, device_name=device_name)
    if not isinstance(resp, LoginResponse):
        logger.error("Matrix login failed: %r", resp)
        await client.close()
        return None

    try:
        save_session(
            session_file,
            {"access_token": resp.access_token, "user_id": resp.user_id, "device_id": resp.device_id},
        )
        logger.info("Matrix session saved to %s (user=%s)", session_file, resp.user_id)
    except OSError as e:
        # The client is logged in; only the next restart pays for this.
        logger.error("Failed to write Matrix session.json (%s): %r", session_file, e)

    return client
