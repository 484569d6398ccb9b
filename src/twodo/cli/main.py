# src/twodo/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then:
- starts the background event loop and opens the task session on it,
- runs the console REPL in the main thread (optional),
- otherwise waits for a signal while the watchdog and realtime keep running.
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state, open_session, shutdown_services
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.errors import StoreError, StoreNotConfiguredError
from ..core.runner import start_background_loop
from ..logging_setup import parse_level, setup_logging

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    loop = state.loop
    if loop is None:
        return
    try:
        loop.call(shutdown_services(state), timeout=15.0)
    except Exception:
        logger.exception("Shutdown failed.")
    loop.stop()
    loop.join(timeout=5.0)


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(settings)
    console_level = parse_level(getattr(settings, "log_level", "INFO"), logging.INFO)

    # keep noisy libs readable
    logging.getLogger("nio").setLevel(max(console_level, logging.WARNING))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websocket").setLevel(logging.WARNING)

    logger.info("Starting %s (log file: %s)...", getattr(settings, "app_name", "twodo"), log_file)

    try:
        state = create_initial_state(settings=settings)
    except StoreNotConfiguredError as e:
        logger.error("%s", e)
        raise SystemExit(2) from e

    state.loop = start_background_loop()
    if state.loop is None:
        raise SystemExit("Failed to start the background event loop.")

    try:
        state.loop.call(open_session(state), timeout=60.0)
    except (StoreError, StoreNotConfiguredError) as e:
        logger.error("Sign-in failed: %s", e)
        _shutdown(state)
        raise SystemExit(1) from e

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Some platforms may not support SIGTERM, etc.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running watchdog and realtime only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
