# src/twodo/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the configured backend (local SQLite or Supabase) into AppState,
- signs in and opens / closes the per-login task session.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..connectors.local_bus import LocalRealtimeBus
from ..connectors.notifier import ConsoleNotifier, FanoutNotifier
from ..core.errors import StoreNotConfiguredError
from ..core.ports import NotificationSink
from ..core.session import TaskSession
from ..core.state import AppState
from ..tasks.task_models import UserProfile
from ..tasks.task_store import SqliteTaskStore

logger = logging.getLogger(__name__)

BACKEND_LOCAL = "local"
BACKEND_SUPABASE = "supabase"


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    if settings.matrix_enabled:
        settings.matrix_store_path.mkdir(parents=True, exist_ok=True)


def _build_notifier(settings, state_closers: list) -> NotificationSink:
    sinks: list[NotificationSink] = [ConsoleNotifier()]
    if settings.matrix_enabled:
        from ..connectors.matrix_notifier import MatrixNotifier

        matrix = MatrixNotifier(settings)
        sinks.append(matrix)
        state_closers.append(matrix)
    return sinks[0] if len(sinks) == 1 else FanoutNotifier(sinks)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings (no network calls).

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    closers: list = []
    notifier = _build_notifier(settings, closers)
    backend = str(getattr(settings, "backend", BACKEND_LOCAL)).lower()

    if backend == BACKEND_SUPABASE:
        if not settings.supabase_configured:
            raise StoreNotConfiguredError(
                "Supabase backend selected: set TWODO_SUPABASE_URL and TWODO_SUPABASE_ANON_KEY"
            )
        from ..connectors.supabase_realtime import SupabaseRealtimeBus
        from ..connectors.supabase_store import SupabaseTaskStore

        store = SupabaseTaskStore(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.http_timeout_seconds,
        )
        bus = SupabaseRealtimeBus(
            settings.supabase_url,
            settings.supabase_anon_key,
            headers_provider=store.auth_headers,
            heartbeat_seconds=settings.realtime_heartbeat_seconds,
            timeout=settings.http_timeout_seconds,
        )
        closers[:0] = [bus, store]
    elif backend == BACKEND_LOCAL:
        local_bus = LocalRealtimeBus()
        store = SqliteTaskStore(settings.tasks_db_path, on_change=local_bus.publish_change)
        bus = local_bus
    else:
        raise StoreNotConfiguredError(f"Unknown backend {backend!r} (expected 'local' or 'supabase')")

    logger.info("Backend=%s notifier=%s", backend, type(notifier).__name__)
    return AppState(settings=settings, store=store, bus=bus, notifier=notifier, closers=closers)


def local_profile(settings) -> UserProfile:
    return UserProfile(
        id=settings.user_id,
        name=settings.user_name,
        email=settings.user_email,
        partner_id=settings.partner_id,
        partner_name=settings.partner_name,
    )


async def sign_in(state: AppState) -> UserProfile:
    """Resolve the current user's profile (password sign-in for Supabase)."""
    settings = state.settings
    store = state.store

    sign_in_fn = getattr(store, "sign_in_with_password", None)
    if sign_in_fn is None:
        state.profile = local_profile(settings)
        return state.profile

    if not settings.supabase_email or not settings.supabase_password:
        raise StoreNotConfiguredError("Set TWODO_SUPABASE_EMAIL and TWODO_SUPABASE_PASSWORD to sign in")

    user_id = await sign_in_fn(settings.supabase_email, settings.supabase_password)
    state.profile = await store.fetch_profile(user_id)
    return state.profile


async def open_session(state: AppState) -> TaskSession:
    """Login -> build session -> subscribe/fetch/timers."""
    if state.session is not None:
        await close_session(state)

    profile = state.profile or await sign_in(state)
    settings = state.settings
    session = TaskSession(
        profile=profile,
        store=state.store,
        bus=state.bus,
        notifier=state.notifier,
        signals=state.signals,
        watchdog_interval_seconds=settings.watchdog_interval_seconds,
        week_start_day=settings.week_start_day,
    )
    await session.start()
    state.session = session
    logger.info(
        "Session open user=%s (%s) partner=%s",
        profile.id,
        profile.name,
        profile.partner_name or profile.partner_id or "-",
    )
    return session


async def close_session(state: AppState) -> None:
    session, state.session = state.session, None
    if session is not None:
        await session.stop()


async def link_partner(state: AppState, email: str) -> tuple[bool, str]:
    """
    Link the partner by email, then reopen the session so visibility and
    broadcast channels follow the new partner.
    """
    link_fn = getattr(state.store, "link_partner_by_email", None)
    if link_fn is None:
        return False, "Partner linking needs the supabase backend (local: set TWODO_PARTNER_ID)."

    if state.profile is None:
        return False, "Not signed in."

    ok, message = await link_fn(email)
    if not ok:
        return False, message or "Partner not found."

    state.profile = await state.store.fetch_profile(state.profile.id)  # type: ignore[attr-defined]
    await open_session(state)
    return True, message or f"Linked with {state.profile.partner_name or email}."


async def shutdown_services(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await close_session(state)
    except Exception:
        logger.exception("Failed to stop task session.")

    for res in state.closers:
        try:
            await res.aclose()
        except Exception:
            logger.debug("Close failed for %s.", type(res).__name__, exc_info=True)

    close = getattr(state.store, "close", None)
    if callable(close) and state.store not in state.closers:
        try:
            close()
        except Exception:
            logger.debug("Store close failed.", exc_info=True)
