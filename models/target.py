"""Data models for monitored targets and their persisted transition state."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .status import Status


@dataclass(slots=True)
class Target:
    """A monitored booking page plus its detection policy."""

    id: str
    name: str
    url_input: str
    url_final_last: str | None = None
    enabled: bool = True
    policy: str = "ABC"
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class TransitionState:
    """Last persisted status of a target.

    ``consecutive_failures`` is kept for storage compatibility; it is reset on
    every status change and nothing currently increments it.
    """

    target_id: str
    status: Status
    last_changed_at: datetime
    last_open_at: datetime | None = None
    consecutive_failures: int = 0
    updated_at: datetime | None = None
