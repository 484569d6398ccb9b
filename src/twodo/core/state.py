# src/twodo/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..tasks.task_models import UserProfile
from .ports import NotificationSink, RealtimeBus, RemoteStore
from .runner import BackgroundLoop
from .session import TaskSession
from .signals import LocalSignals


@dataclass
class AppState:
    """
    Shared application state (composition of the running services).

    The session is created after login (profile known) and replaced on
    partner re-link; everything else lives for the whole process.
    """

    settings: Any

    store: RemoteStore
    bus: RealtimeBus
    notifier: NotificationSink
    signals: LocalSignals = field(default_factory=LocalSignals)

    profile: UserProfile | None = None
    session: TaskSession | None = None
    loop: BackgroundLoop | None = None

    # Async resources closed on shutdown, in order (store/bus clients, Matrix client).
    closers: list[Any] = field(default_factory=list)
