"""Configuration helpers for environment-driven settings."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

from services.classifier import DEFAULT_POLICY, validate_policy

if os.getenv("PYTEST_CURRENT_TEST") is None:
    load_dotenv()

NOTIFIERS = ("ntfy", "telegram")
RENDERERS = ("playwright", "http")
NTFY_PRIORITIES = ("default", "low", "high", "urgent")


def _split_csv(value: str) -> Tuple[str, ...]:
    return tuple(entry.strip() for entry in value.split(",") if entry.strip())


def _read_bool(name: str, default: str) -> bool:
    raw = os.getenv(name, default).strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean")


@dataclass(slots=True, frozen=True)
class TargetSeed:
    """A target declared in the environment, added on startup if missing."""

    name: str
    url: str
    policy: str = DEFAULT_POLICY


def parse_target_seeds(value: str) -> Tuple[TargetSeed, ...]:
    """Parse ``name|url|policy`` entries separated by commas."""
    seeds = []
    for entry in _split_csv(value):
        parts = [part.strip() for part in entry.split("|")]
        if len(parts) < 2 or len(parts) > 3:
            raise ValueError(f"MONITOR_TARGETS entry must be name|url[|policy]: {entry!r}")
        name, url = parts[0], parts[1]
        if not name:
            raise ValueError(f"MONITOR_TARGETS entry has an empty name: {entry!r}")
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"MONITOR_TARGETS URL must start with http:// or https://: {url!r}")
        policy = parts[2] if len(parts) == 3 and parts[2] else DEFAULT_POLICY
        try:
            policy = validate_policy(policy)
        except ValueError as exc:
            raise ValueError(f"MONITOR_TARGETS policy for {name!r}: {exc}") from exc
        seeds.append(TargetSeed(name=name, url=url, policy=policy))
    return tuple(seeds)


@dataclass(slots=True)
class Settings:
    """Runtime application settings sourced from environment variables."""

    NOTIFIER: str = field(init=False)
    NTFY_SERVER_URL: str = field(init=False)
    NTFY_TOPIC: str = field(init=False)
    NTFY_PRIORITY: str = field(init=False)
    NTFY_TAGS: Tuple[str, ...] = field(init=False)
    NTFY_HEARTBEAT_TOPIC: str = field(init=False)
    HEARTBEAT_HOUR: int = field(init=False)
    HEARTBEAT_UTC_OFFSET_HOURS: int = field(init=False)
    BOT_TOKEN: str = field(init=False)
    ADMIN_CHAT_IDS: Tuple[int, ...] = field(init=False)
    CHECK_INTERVAL_SECONDS: int = field(init=False)
    JITTER_RATIO: float = field(init=False)
    RENDERER: str = field(init=False)
    RENDER_TIMEOUT_MS: int = field(init=False)
    RENDER_SETTLE_MS: int = field(init=False)
    BROWSER_HEADLESS: bool = field(init=False)
    USER_AGENT: str = field(init=False)
    DB_PATH: Path = field(init=False)
    MONITOR_TARGETS: Tuple[TargetSeed, ...] = field(init=False)

    def __post_init__(self) -> None:
        self.reload()

    def reload(self) -> None:
        notifier = os.getenv("NOTIFIER", "ntfy").strip().lower()
        if notifier not in NOTIFIERS:
            raise ValueError(f"NOTIFIER must be one of {', '.join(NOTIFIERS)}")
        self.NOTIFIER = notifier

        self.NTFY_SERVER_URL = os.getenv("NTFY_SERVER_URL", "https://ntfy.sh").strip().rstrip("/")
        self.NTFY_TOPIC = os.getenv("NTFY_TOPIC", "").strip()

        priority = os.getenv("NTFY_PRIORITY", "high").strip().lower()
        if priority not in NTFY_PRIORITIES:
            raise ValueError(f"NTFY_PRIORITY must be one of {', '.join(NTFY_PRIORITIES)}")
        self.NTFY_PRIORITY = priority

        self.NTFY_TAGS = _split_csv(os.getenv("NTFY_TAGS", "bell,calendar"))
        self.NTFY_HEARTBEAT_TOPIC = os.getenv("NTFY_HEARTBEAT_TOPIC", "").strip()

        try:
            hour = int(os.getenv("HEARTBEAT_HOUR", "7"))
        except ValueError as exc:
            raise ValueError("HEARTBEAT_HOUR must be an integer") from exc
        if not 0 <= hour <= 23:
            raise ValueError("HEARTBEAT_HOUR must be between 0 and 23")
        self.HEARTBEAT_HOUR = hour

        try:
            offset = int(os.getenv("HEARTBEAT_UTC_OFFSET_HOURS", "9"))
        except ValueError as exc:
            raise ValueError("HEARTBEAT_UTC_OFFSET_HOURS must be an integer") from exc
        if not -12 <= offset <= 14:
            raise ValueError("HEARTBEAT_UTC_OFFSET_HOURS must be between -12 and 14")
        self.HEARTBEAT_UTC_OFFSET_HOURS = offset

        self.BOT_TOKEN = os.getenv("BOT_TOKEN", "").strip()
        try:
            self.ADMIN_CHAT_IDS = tuple(
                int(chat_id)
                for chat_id in _split_csv(os.getenv("ADMIN_CHAT_IDS", ""))
            )
        except ValueError as exc:
            raise ValueError("ADMIN_CHAT_IDS must be a comma separated list of integers") from exc

        try:
            interval = int(os.getenv("CHECK_INTERVAL_SECONDS", "60"))
        except ValueError as exc:
            raise ValueError("CHECK_INTERVAL_SECONDS must be an integer") from exc
        if interval <= 0:
            raise ValueError("CHECK_INTERVAL_SECONDS must be positive")
        self.CHECK_INTERVAL_SECONDS = interval

        try:
            jitter = float(os.getenv("JITTER_RATIO", "0.3"))
        except ValueError as exc:
            raise ValueError("JITTER_RATIO must be a number") from exc
        if not 0 <= jitter <= 1:
            raise ValueError("JITTER_RATIO must be between 0 and 1")
        self.JITTER_RATIO = jitter

        renderer = os.getenv("RENDERER", "playwright").strip().lower()
        if renderer not in RENDERERS:
            raise ValueError(f"RENDERER must be one of {', '.join(RENDERERS)}")
        self.RENDERER = renderer

        try:
            timeout = int(os.getenv("RENDER_TIMEOUT_MS", "30000"))
        except ValueError as exc:
            raise ValueError("RENDER_TIMEOUT_MS must be an integer") from exc
        if timeout <= 0:
            raise ValueError("RENDER_TIMEOUT_MS must be positive")
        self.RENDER_TIMEOUT_MS = timeout

        try:
            settle = int(os.getenv("RENDER_SETTLE_MS", "3000"))
        except ValueError as exc:
            raise ValueError("RENDER_SETTLE_MS must be an integer") from exc
        if settle < 0:
            raise ValueError("RENDER_SETTLE_MS cannot be negative")
        self.RENDER_SETTLE_MS = settle

        self.BROWSER_HEADLESS = _read_bool("BROWSER_HEADLESS", "true")
        self.USER_AGENT = os.getenv(
            "USER_AGENT",
            (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
                "AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/120.0.0.0 Safari/537.36"
            ),
        ).strip()

        db_path_value = os.getenv("DB_PATH", "data/booking.db").strip()
        db_path = Path(db_path_value)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        self.DB_PATH = db_path

        self.MONITOR_TARGETS = parse_target_seeds(os.getenv("MONITOR_TARGETS", ""))

    def validate(self) -> None:
        if self.NOTIFIER == "ntfy" and not self.NTFY_TOPIC:
            raise ValueError("NTFY_TOPIC is required when NOTIFIER=ntfy")
        if self.NOTIFIER == "telegram":
            if not self.BOT_TOKEN:
                raise ValueError("BOT_TOKEN is required when NOTIFIER=telegram")
            if not self.ADMIN_CHAT_IDS:
                raise ValueError("ADMIN_CHAT_IDS is required when NOTIFIER=telegram")

    @property
    def bot_enabled(self) -> bool:
        return bool(self.BOT_TOKEN)


settings = Settings()
