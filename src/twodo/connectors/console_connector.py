# src/twodo/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import Any

from ..cli.commands import registry as command_registry
from ..core.signals import CELEBRATE_MILESTONE
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except OSError:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def celebration_text(payload: dict[str, Any]) -> str:
    count = payload.get("count")
    if count:
        return f"*** MILESTONE! {count} tasks completed together this week. Keep going! ***"
    return "*** MILESTONE! Keep going! ***"


def _on_celebrate(payload: dict[str, Any]) -> None:
    # Runs on the session loop thread; print() is safe to interleave with input().
    _print_ts(celebration_text(payload))


def run_console_loop(state: AppState) -> None:
    profile = state.profile
    logger.info("Console connector started (user=%s).", profile.id if profile else "-")
    _print_ts("[CONSOLE] Type /tasks to list, /help for commands. Use /exit to quit.\n")

    state.signals.connect(CELEBRATE_MILESTONE, _on_celebrate)

    def emit(text: str) -> None:
        # Immediate user-visible feedback for long operations (e.g., re-linking)
        print(f"[{_ts_local()}] {text}", flush=True)

    try:
        while True:
            try:
                user_input = input(">>> ").strip()
                _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            if not user_input.startswith("/"):
                # Bare text is a quick add.
                user_input = f"/add {user_input}"

            try:
                cmd_response = command_registry.handle(
                    state,
                    user_input,
                    user_id=profile.id if profile else None,
                    emit=emit,
                )
            except Exception:
                logger.exception("Command handler crashed.")
                cmd_response = "Internal error while handling a command."

            if cmd_response is not None:
                print(f"[{_ts_local()}] {cmd_response}")
    finally:
        state.signals.disconnect(CELEBRATE_MILESTONE, _on_celebrate)

    logger.info("Console connector finished.")
