# src/twodo/tasks/task_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..core.errors import StoreError
from .task_models import TASKS_COLLECTION, ChangeEvent, ChangeType, format_ts, utcnow

logger = logging.getLogger(__name__)

JSON_COLUMNS = ("tags", "checklist")

# name -> column declaration (used both for CREATE TABLE and for migrations)
COLUMNS: dict[str, str] = {
    "id": "TEXT PRIMARY KEY",
    "created_at": "TEXT NOT NULL",
    "completed_at": "TEXT",
    "creator_id": "TEXT NOT NULL DEFAULT ''",
    "assignee_id": "TEXT",
    "visibility": "TEXT NOT NULL DEFAULT 'private'",
    "title": "TEXT NOT NULL DEFAULT ''",
    "description": "TEXT",
    "status": "TEXT NOT NULL DEFAULT 'active'",
    "priority": "TEXT NOT NULL DEFAULT 'medium'",
    "due_at": "TEXT",
    "image_url": "TEXT",
    "tags": "TEXT NOT NULL DEFAULT '[]'",
    "checklist": "TEXT NOT NULL DEFAULT '[]'",
}


class SqliteTaskStore:
    """
    SQLite implementation of the RemoteStore port (local / offline backend).

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed (unless migrate=False)

    Thread-safety:
    - each call opens its own SQLite connection and runs in a worker thread

    `on_change` is called on the event loop after every committed write; the
    bootstrap wires it to LocalRealtimeBus.publish_change.
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        on_change: Callable[[str, ChangeEvent], None] | None = None,
        migrate: bool = True,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._on_change = on_change
        self._migrate = migrate
        self._ensure_schema()
        self._columns = self._read_columns()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("SqliteTaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            decls = ",\n".join(f"{name} {decl}" for name, decl in COLUMNS.items())
            cur.execute(f"CREATE TABLE IF NOT EXISTS {TASKS_COLLECTION} (\n{decls}\n)")

            if self._migrate:
                cur.execute(f"PRAGMA table_info({TASKS_COLLECTION})")
                cols = {row["name"] for row in cur.fetchall()}
                for name, decl in COLUMNS.items():
                    if name in cols or "PRIMARY KEY" in decl:
                        continue
                    # ALTER TABLE cannot add NOT NULL without a default.
                    if decl.endswith("NOT NULL"):
                        decl = decl + " DEFAULT ''"
                    cur.execute(f"ALTER TABLE {TASKS_COLLECTION} ADD COLUMN {name} {decl}")
                    logger.info("SqliteTaskStore migration: added column %s", name)

            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_tasks_created ON {TASKS_COLLECTION}(created_at)"
            )
            conn.commit()
        finally:
            conn.close()

    def _read_columns(self) -> set[str]:
        conn = self._get_conn()
        try:
            cur = conn.execute(f"PRAGMA table_info({TASKS_COLLECTION})")
            return {row["name"] for row in cur.fetchall()}
        finally:
            conn.close()

    def _check_collection(self, collection: str) -> None:
        if collection != TASKS_COLLECTION:
            raise StoreError(f'relation "{collection}" does not exist', code="42P01")

    def _check_columns(self, names: list[str]) -> None:
        for name in names:
            if name not in self._columns:
                raise StoreError(
                    f'column "{name}" of relation "{TASKS_COLLECTION}" does not exist',
                    code="42703",
                )

    @staticmethod
    def _encode(record: dict[str, Any]) -> dict[str, Any]:
        out = dict(record)
        for key in JSON_COLUMNS:
            if key in out:
                try:
                    out[key] = json.dumps(out[key] or [], ensure_ascii=False)
                except Exception as e:
                    raise StoreError(f"invalid {key}: {e}", code="22P02") from e
        return out

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> dict[str, Any]:
        out = {k: row[k] for k in row.keys()}
        for key in JSON_COLUMNS:
            if key in out:
                try:
                    val = json.loads(out[key] or "[]")
                    out[key] = val if isinstance(val, list) else []
                except Exception:
                    out[key] = []
        return out

    def _emit(self, change_type: ChangeType, record: dict[str, Any]) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(TASKS_COLLECTION, ChangeEvent(type=change_type, record=dict(record)))
        except Exception:
            logger.exception("on_change callback failed type=%s id=%s", change_type.value, record.get("id"))

    # ---- sync internals (worker thread) ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT COUNT(*) FROM {TASKS_COLLECTION}")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def _fetch_sync(
        self,
        filters: dict[str, Any] | None,
        order_by: str | None,
        descending: bool,
    ) -> list[dict[str, Any]]:
        filters = filters or {}
        self._check_columns(list(filters))

        sql = f"SELECT * FROM {TASKS_COLLECTION}"
        params: list[Any] = []
        if filters:
            clauses = []
            for name, value in filters.items():
                if value is None:
                    clauses.append(f"{name} IS NULL")
                else:
                    clauses.append(f"{name} = ?")
                    params.append(value)
            sql += " WHERE " + " AND ".join(clauses)
        if order_by:
            self._check_columns([order_by])
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {order_by} {direction}, rowid {direction}"

        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            return [self._row_to_record(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def _get_sync(self, conn: sqlite3.Connection, record_id: str) -> dict[str, Any] | None:
        cur = conn.execute(f"SELECT * FROM {TASKS_COLLECTION} WHERE id = ?", (record_id,))
        row = cur.fetchone()
        return self._row_to_record(row) if row else None

    def _insert_sync(self, record: dict[str, Any]) -> dict[str, Any]:
        data = {k: v for k, v in record.items() if k not in ("id", "created_at")}
        self._check_columns(list(data))

        data["id"] = str(uuid.uuid4())
        data["created_at"] = format_ts(utcnow())
        data = self._encode(data)

        names = list(data)
        placeholders = ", ".join("?" for _ in names)
        conn = self._get_conn()
        try:
            conn.execute(
                f"INSERT INTO {TASKS_COLLECTION}({', '.join(names)}) VALUES ({placeholders})",
                [data[n] for n in names],
            )
            conn.commit()
            row = self._get_sync(conn, data["id"])
        finally:
            conn.close()
        if row is None:
            raise RuntimeError("SQLite did not return the inserted task row")
        logger.debug("Task inserted id=%s", row["id"])
        return row

    def _update_sync(self, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        data = {k: v for k, v in patch.items() if k not in ("id", "created_at")}
        self._check_columns(list(data))
        data = self._encode(data)

        conn = self._get_conn()
        try:
            if data:
                sets = ", ".join(f"{name} = ?" for name in data)
                cur = conn.execute(
                    f"UPDATE {TASKS_COLLECTION} SET {sets} WHERE id = ?",
                    [*data.values(), record_id],
                )
                conn.commit()
                if cur.rowcount == 0:
                    raise StoreError(f"task {record_id} not found", code="not_found")
            row = self._get_sync(conn, record_id)
        finally:
            conn.close()
        if row is None:
            raise StoreError(f"task {record_id} not found", code="not_found")
        return row

    def _delete_sync(self, record_id: str) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            row = self._get_sync(conn, record_id)
            conn.execute(f"DELETE FROM {TASKS_COLLECTION} WHERE id = ?", (record_id,))
            conn.commit()
            return row
        finally:
            conn.close()

    # ---- RemoteStore port ----

    async def fetch(
        self,
        collection: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        self._check_collection(collection)
        return await self._run(self._fetch_sync, filters, order_by, descending)

    async def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        self._check_collection(collection)
        row = await self._run(self._insert_sync, record)
        self._emit(ChangeType.INSERT, row)
        return row

    async def update(self, collection: str, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        self._check_collection(collection)
        row = await self._run(self._update_sync, record_id, patch)
        self._emit(ChangeType.UPDATE, row)
        return row

    async def delete(self, collection: str, record_id: str) -> None:
        self._check_collection(collection)
        row = await self._run(self._delete_sync, record_id)
        if row is not None:
            self._emit(ChangeType.DELETE, {"id": row["id"]})

    @staticmethod
    async def _run(fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except StoreError:
            raise
        except sqlite3.Error as e:
            raise StoreError(str(e), code="sqlite") from e
