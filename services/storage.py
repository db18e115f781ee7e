from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import UTC, date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterator, Sequence

from models import LogEntry, Status, Target, TransitionState

if TYPE_CHECKING:
    from config.settings import TargetSeed

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 100
UPDATABLE_FIELDS = frozenset({"name", "url_input", "url_final_last", "enabled", "policy"})

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _initialize_schema(connection: sqlite3.Connection) -> None:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS targets (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            url_input TEXT NOT NULL,
            url_final_last TEXT,
            enabled INTEGER NOT NULL DEFAULT 1,
            policy TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    connection.execute(
        "CREATE INDEX IF NOT EXISTS idx_targets_enabled ON targets(enabled)"
    )
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS target_states (
            target_id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            last_changed_at TEXT NOT NULL,
            last_open_at TEXT,
            consecutive_failures INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL
        )
        """
    )
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS check_logs (
            target_id TEXT PRIMARY KEY,
            entries TEXT NOT NULL DEFAULT '[]'
        )
        """
    )
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


class _Repository:
    def __init__(self, db_path: Path, clock: Clock | None = None) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or _utcnow
        with self._connect() as connection:
            _initialize_schema(connection)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        # one transaction per call: committed on success, rolled back on error
        connection = sqlite3.connect(self.db_path, timeout=5, check_same_thread=False)
        try:
            with connection:
                yield connection
        finally:
            connection.close()


class TargetRepository(_Repository):
    """Targets and their transition state."""

    _TARGET_COLUMNS = "id, name, url_input, url_final_last, enabled, policy, created_at, updated_at"

    @staticmethod
    def _row_to_target(row: Sequence) -> Target:
        return Target(
            id=row[0],
            name=row[1],
            url_input=row[2],
            url_final_last=row[3],
            enabled=bool(row[4]),
            policy=row[5],
            created_at=_parse_timestamp(row[6]),
            updated_at=_parse_timestamp(row[7]),
        )

    def add_target(
        self,
        name: str,
        url_input: str,
        policy: str,
        enabled: bool = True,
        url_final_last: str | None = None,
    ) -> str:
        target_id = uuid.uuid4().hex
        timestamp = self._clock().isoformat()
        with self._connect() as connection:
            connection.execute(
                f"""
                INSERT INTO targets ({self._TARGET_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (target_id, name, url_input, url_final_last, int(enabled), policy, timestamp, timestamp),
            )
            connection.execute(
                """
                INSERT INTO target_states (target_id, status, last_changed_at, last_open_at, consecutive_failures, updated_at)
                VALUES (?, ?, ?, NULL, 0, ?)
                """,
                (target_id, Status.UNKNOWN.value, timestamp, timestamp),
            )
        return target_id

    def seed(self, seeds: Sequence["TargetSeed"]) -> int:
        """Add configured targets whose URL is not stored yet."""
        added = 0
        for seed in seeds:
            if self.find_by_url(seed.url) is not None:
                continue
            target_id = self.add_target(seed.name, seed.url, seed.policy)
            logger.info("Added target: %s (%s)", seed.name, target_id)
            added += 1
        return added

    def get_target(self, target_id: str) -> Target | None:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {self._TARGET_COLUMNS} FROM targets WHERE id = ?",
                (target_id,),
            ).fetchone()
        return self._row_to_target(row) if row else None

    def list_targets(self) -> list[Target]:
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT {self._TARGET_COLUMNS} FROM targets ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [self._row_to_target(row) for row in rows]

    def get_enabled_targets(self) -> list[Target]:
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT {self._TARGET_COLUMNS} FROM targets WHERE enabled = 1 ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [self._row_to_target(row) for row in rows]

    def find_by_url(self, url_input: str) -> Target | None:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {self._TARGET_COLUMNS} FROM targets WHERE url_input = ? ORDER BY rowid ASC LIMIT 1",
                (url_input,),
            ).fetchone()
        return self._row_to_target(row) if row else None

    def update_target(self, target_id: str, **changes: object) -> None:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update target field(s): {', '.join(sorted(unknown))}")

        assignments = []
        parameters: list[object] = []
        for column in sorted(changes):
            value = changes[column]
            if column == "enabled":
                value = int(bool(value))
            assignments.append(f"{column} = ?")
            parameters.append(value)
        assignments.append("updated_at = ?")
        parameters.append(self._clock().isoformat())
        parameters.append(target_id)

        with self._connect() as connection:
            connection.execute(
                f"UPDATE targets SET {', '.join(assignments)} WHERE id = ?",
                parameters,
            )

    def delete_target(self, target_id: str) -> bool:
        with self._connect() as connection:
            cursor = connection.execute("DELETE FROM targets WHERE id = ?", (target_id,))
            connection.execute("DELETE FROM target_states WHERE target_id = ?", (target_id,))
            connection.execute("DELETE FROM check_logs WHERE target_id = ?", (target_id,))
        return cursor.rowcount > 0

    def get_state(self, target_id: str) -> TransitionState | None:
        with self._connect() as connection:
            row = connection.execute(
                """
                SELECT target_id, status, last_changed_at, last_open_at, consecutive_failures, updated_at
                FROM target_states WHERE target_id = ?
                """,
                (target_id,),
            ).fetchone()
        if row is None:
            return None
        return TransitionState(
            target_id=row[0],
            status=Status(row[1]),
            last_changed_at=_parse_timestamp(row[2]) or self._clock(),
            last_open_at=_parse_timestamp(row[3]),
            consecutive_failures=row[4],
            updated_at=_parse_timestamp(row[5]),
        )

    def set_state(self, target_id: str, status: Status) -> None:
        """Persist a newly observed status.

        An unchanged status only refreshes ``updated_at``. A changed status
        also moves ``last_changed_at``, moves ``last_open_at`` when the new
        status is OPEN, and resets ``consecutive_failures``.
        """
        status = Status(status)
        timestamp = self._clock().isoformat()
        with self._connect() as connection:
            row = connection.execute(
                "SELECT status FROM target_states WHERE target_id = ?",
                (target_id,),
            ).fetchone()

            if row is None:
                connection.execute(
                    """
                    INSERT INTO target_states (target_id, status, last_changed_at, last_open_at, consecutive_failures, updated_at)
                    VALUES (?, ?, ?, ?, 0, ?)
                    """,
                    (
                        target_id,
                        status.value,
                        timestamp,
                        timestamp if status is Status.OPEN else None,
                        timestamp,
                    ),
                )
            elif row[0] == status.value:
                connection.execute(
                    "UPDATE target_states SET updated_at = ? WHERE target_id = ?",
                    (timestamp, target_id),
                )
            elif status is Status.OPEN:
                connection.execute(
                    """
                    UPDATE target_states
                    SET status = ?, last_changed_at = ?, last_open_at = ?, consecutive_failures = 0, updated_at = ?
                    WHERE target_id = ?
                    """,
                    (status.value, timestamp, timestamp, timestamp, target_id),
                )
            else:
                connection.execute(
                    """
                    UPDATE target_states
                    SET status = ?, last_changed_at = ?, consecutive_failures = 0, updated_at = ?
                    WHERE target_id = ?
                    """,
                    (status.value, timestamp, timestamp, target_id),
                )


class CheckLogRepository(_Repository):
    """Bounded, newest-first history of checks per target."""

    def __init__(self, db_path: Path, clock: Clock | None = None, max_entries: int = MAX_LOG_ENTRIES) -> None:
        super().__init__(db_path, clock)
        self.max_entries = max_entries

    def append(
        self,
        target_id: str,
        checked_at: datetime,
        status: Status,
        evidence: Sequence[str],
        error: str | None = None,
    ) -> None:
        entry = {
            "id": uuid.uuid4().hex,
            "target_id": target_id,
            "checked_at": checked_at.isoformat(),
            "status": Status(status).value,
            "evidence": json.dumps(list(evidence)),
            "error": error,
            "created_at": self._clock().isoformat(),
        }
        with self._connect() as connection:
            row = connection.execute(
                "SELECT entries FROM check_logs WHERE target_id = ?",
                (target_id,),
            ).fetchone()
            entries = self._load_entries(row[0] if row else None)
            entries.insert(0, entry)
            del entries[self.max_entries:]
            connection.execute(
                "INSERT OR REPLACE INTO check_logs (target_id, entries) VALUES (?, ?)",
                (target_id, json.dumps(entries, ensure_ascii=False)),
            )

    def recent(self, target_id: str, limit: int) -> list[LogEntry]:
        if limit <= 0:
            return []
        with self._connect() as connection:
            row = connection.execute(
                "SELECT entries FROM check_logs WHERE target_id = ?",
                (target_id,),
            ).fetchone()
        if row is None:
            return []

        recent: list[LogEntry] = []
        for raw in self._load_entries(row[0])[:limit]:
            checked_at = _parse_timestamp(raw.get("checked_at"))
            created_at = _parse_timestamp(raw.get("created_at"))
            recent.append(
                LogEntry(
                    id=raw.get("id", ""),
                    target_id=raw.get("target_id", target_id),
                    checked_at=checked_at or created_at or self._clock(),
                    status=Status(raw.get("status", Status.UNKNOWN.value)),
                    evidence=raw.get("evidence", "[]"),
                    error=raw.get("error"),
                    created_at=created_at or checked_at or self._clock(),
                )
            )
        return recent

    @staticmethod
    def _load_entries(raw: str | None) -> list[dict]:
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError:
            return []
        return entries if isinstance(entries, list) else []


class AppSettingsRepository(_Repository):
    """Runtime overrides persisted alongside targets."""

    def __init__(self, db_path: Path, default_interval: int, clock: Clock | None = None) -> None:
        super().__init__(db_path, clock)
        self._default_interval = default_interval

    def _get_meta(self, key: str) -> str | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT value FROM app_meta WHERE key = ?",
                (key,),
            ).fetchone()
        return row[0] if row else None

    def _set_meta(self, key: str, value: str) -> None:
        with self._connect() as connection:
            connection.execute(
                "INSERT OR REPLACE INTO app_meta (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_check_interval(self) -> int:
        raw = self._get_meta("check_interval_seconds")
        if not raw:
            return self._default_interval
        try:
            seconds = int(raw)
        except ValueError:
            return self._default_interval
        return seconds if seconds > 0 else self._default_interval

    def set_check_interval(self, seconds: int) -> int:
        if seconds <= 0:
            raise ValueError("Interval must be positive")
        if seconds < 10:
            raise ValueError("Minimum interval is 10 seconds")
        self._set_meta("check_interval_seconds", str(seconds))
        return seconds

    def get_last_heartbeat_date(self) -> date | None:
        raw = self._get_meta("last_heartbeat_date")
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except ValueError:
            return None

    def set_last_heartbeat_date(self, value: date) -> None:
        self._set_meta("last_heartbeat_date", value.isoformat())


__all__ = [
    "AppSettingsRepository",
    "CheckLogRepository",
    "MAX_LOG_ENTRIES",
    "TargetRepository",
]
