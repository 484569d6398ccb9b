# src/twodo/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

# Worker threads are named "twodo-<role>" (loop, realtime, realtime-hb).
THREAD_PREFIX = "twodo-"
REALTIME_THREAD_PREFIX = "twodo-realtime"

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s%(thread_tag)s: %(message)s"


def parse_level(name: Any, default: int) -> int:
    """'debug' -> logging.DEBUG; unknown names fall back to `default`."""
    level = logging.getLevelName(str(name or "").strip().upper())
    return level if isinstance(level, int) else default


class _ThreadTagFilter(logging.Filter):
    """Set `record.thread_tag` to " [realtime]" etc. for records from twodo worker threads."""

    def filter(self, record: logging.LogRecord) -> bool:
        thread = record.threadName or ""
        record.thread_tag = f" [{thread[len(THREAD_PREFIX):]}]" if thread.startswith(THREAD_PREFIX) else ""
        return True


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the prompt readable while the socket threads chatter:
    - realtime socket and heartbeat threads, and the matrix connector: WARNING+ only
    - other twodo logs pass
    - third-party libraries and captured `warnings`: ERROR+ only
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if (record.threadName or "").startswith(REALTIME_THREAD_PREFIX):
            return record.levelno >= logging.WARNING

        name = record.name
        if name.startswith("twodo."):
            if name.startswith("twodo.connectors.matrix_"):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def setup_logging(settings: Any) -> Path:
    """
    Configure the root logger from settings:
    - console (stderr) at `log_level`, filtered for interactive use
    - file at `log_file_level`, written to `log_file` (default <data_dir>/<app_name>.log)

    Call once, before the first log line. Returns the log file path.
    """
    data_dir = Path(getattr(settings, "data_dir", ".local/twodo"))
    app_name = str(getattr(settings, "app_name", "") or "twodo")
    log_file = Path(getattr(settings, "log_file", None) or data_dir / f"{app_name}.log")
    console_level = parse_level(getattr(settings, "log_level", "INFO"), logging.INFO)
    file_level = parse_level(getattr(settings, "log_file_level", "DEBUG"), logging.DEBUG)

    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.addFilter(_ConsoleNoiseFilter())
    ch.addFilter(_ThreadTagFilter())
    ch.setFormatter(fmt)
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.addFilter(_ThreadTagFilter())
    fh.setFormatter(fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)
    return log_file
