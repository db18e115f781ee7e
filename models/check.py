"""
Data models for observations and notifications
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from .status import Status


@dataclass(slots=True)
class CheckResult:
    """Result of observing a single target once"""
    status: Status
    evidence: Tuple[str, ...] = ()
    final_url: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.evidence, tuple):
            object.__setattr__(self, "evidence", tuple(self.evidence))


@dataclass(slots=True)
class LogEntry:
    """One entry of a target's bounded check history"""
    id: str
    target_id: str
    checked_at: datetime
    status: Status
    evidence: str
    error: Optional[str]
    created_at: datetime


@dataclass(slots=True, frozen=True)
class Notification:
    title: str
    body: str
    click_url: str


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    ok: bool
    reason: Optional[str] = None
