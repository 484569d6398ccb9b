# src/twodo/core/errors.py

from __future__ import annotations

from typing import Any

# Postgres "undefined_column" and the PostgREST schema-cache variant of it.
MISSING_COLUMN_CODES = frozenset({"42703", "PGRST204"})


class StoreError(Exception):
    """
    Failure reported by a Remote Store adapter.

    `code` is machine-readable (Postgres/PostgREST error code, "network",
    "not_found", ...); `message` is what the backend said.
    """

    def __init__(self, message: str, *, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def is_missing_column(self, column: str | None = None) -> bool:
        if self.code in MISSING_COLUMN_CODES:
            return True
        return bool(column) and column in self.message

    def __repr__(self) -> str:
        return f"StoreError(code={self.code!r}, message={self.message!r})"


class StoreNotConfiguredError(RuntimeError):
    """Raised at bootstrap when the selected backend lacks its settings."""
