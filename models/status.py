"""Status lattice shared by the classifier, store and dispatcher."""
from __future__ import annotations

from enum import Enum


class Status(str, Enum):
    """Outcome of one observation of a target."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value
