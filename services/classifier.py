"""Rule-based classification of rendered booking pages."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol, Sequence

from models.status import Status

logger = logging.getLogger(__name__)

DEFAULT_POLICY = "ABC"
TIME_SLOT_PATTERN = re.compile(r"\b\d{1,2}:\d{2}\b", re.ASCII)
ENABLED_CONTROLS_SELECTOR = "button:not(:disabled), a:not([disabled])"


class Snapshot(Protocol):
    """Narrow query surface of a rendered page."""

    final_url: str

    def count(self, selector: str) -> int:
        ...

    def texts(self, selector: str) -> Sequence[str]:
        ...


@dataclass(slots=True, frozen=True)
class Rule:
    name: str
    selector: str
    # informational only, every match counts the same
    priority: int


RULES: tuple[Rule, ...] = (
    Rule(name="A", selector='a[href*="/booking"]', priority=2),
    Rule(
        name="B",
        selector=(
            'a[role="button"]:-soup-contains("예약"), '
            'button:-soup-contains("예약"), '
            'a.D_Xqt:-soup-contains("예약")'
        ),
        priority=2,
    ),
    Rule(name="C", selector=ENABLED_CONTROLS_SELECTOR, priority=1),
)
RULE_NAMES = frozenset(rule.name for rule in RULES)


def parse_policy(policy: str) -> frozenset[str]:
    """Turn a policy string such as ``"AB"`` into the set of active rule names.

    A policy of exactly ``"C"`` selects rule C alone. Any other policy selects
    every rule whose name appears in the string; unknown characters are
    ignored here and rejected by :func:`validate_policy` at the configuration
    boundary.
    """
    if policy == "C":
        return frozenset({"C"})
    return frozenset(rule.name for rule in RULES if rule.name in policy)


def validate_policy(policy: str) -> str:
    normalized = (policy or "").strip().upper()
    if not normalized:
        raise ValueError("Policy must name at least one rule")
    unknown = sorted(set(normalized) - RULE_NAMES)
    if unknown:
        raise ValueError(
            f"Unknown rule(s) {''.join(unknown)!r}; allowed: {''.join(sorted(RULE_NAMES))}"
        )
    return normalized


def active_rules(policy: str) -> list[Rule]:
    selected = parse_policy(policy)
    return [rule for rule in RULES if rule.name in selected]


def _has_time_slot(snapshot: Snapshot, rule: Rule) -> bool:
    for text in snapshot.texts(rule.selector):
        if text and TIME_SLOT_PATTERN.search(text.strip()):
            return True
    return False


def _evaluate(snapshot: Snapshot, rule: Rule) -> bool:
    if rule.name == "C":
        return _has_time_slot(snapshot, rule)
    return snapshot.count(rule.selector) > 0


def classify(snapshot: Snapshot, policy: str) -> tuple[Status, list[str]]:
    """Classify a snapshot under a policy, returning status and matched rule names."""
    evidence: list[str] = []
    for rule in active_rules(policy):
        try:
            matched = _evaluate(snapshot, rule)
        except Exception:
            logger.debug("Rule %s failed on %s", rule.name, snapshot.final_url, exc_info=True)
            continue
        if matched:
            evidence.append(rule.name)

    status = Status.OPEN if evidence else Status.CLOSED
    return status, evidence


__all__ = [
    "DEFAULT_POLICY",
    "RULES",
    "RULE_NAMES",
    "Rule",
    "Snapshot",
    "TIME_SLOT_PATTERN",
    "active_rules",
    "classify",
    "parse_policy",
    "validate_policy",
]
