"""Runtime utilities for sharing scheduler state across components."""
from __future__ import annotations

from typing import Optional

from services.notifier import NotificationDispatcher
from services.scheduler import JitterScheduler

_scheduler: Optional[JitterScheduler] = None
_dispatcher: Optional[NotificationDispatcher] = None


def configure_scheduler(scheduler: Optional[JitterScheduler]) -> None:
    """Register the running check scheduler for later access."""
    global _scheduler
    _scheduler = scheduler


def configure_dispatcher(dispatcher: Optional[NotificationDispatcher]) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def update_check_interval(seconds: int) -> bool:
    """Apply a new base interval to the running scheduler, if there is one."""
    if seconds <= 0:
        raise ValueError("Interval must be positive")

    if _scheduler is None:
        return False

    _scheduler.update_interval(seconds)
    return True


def get_dispatcher() -> Optional[NotificationDispatcher]:
    return _dispatcher
