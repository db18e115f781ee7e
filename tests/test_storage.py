from __future__ import annotations

import json
from datetime import date, timedelta

import pytest

from config import settings
from models import Status
from services.storage import (
    MAX_LOG_ENTRIES,
    AppSettingsRepository,
    CheckLogRepository,
    TargetRepository,
)


@pytest.fixture
def repository(temp_db, clock):
    return TargetRepository(temp_db, clock=clock)


@pytest.fixture
def check_logs(temp_db, clock):
    return CheckLogRepository(temp_db, clock=clock)


def test_add_target_creates_unknown_state(repository, clock):
    target_id = repository.add_target("Salon", "https://example.com/a", "AB")

    target = repository.get_target(target_id)
    assert target is not None
    assert target.name == "Salon"
    assert target.policy == "AB"
    assert target.enabled is True
    assert target.url_final_last is None
    assert target.created_at == clock.now

    state = repository.get_state(target_id)
    assert state.status is Status.UNKNOWN
    assert state.last_open_at is None
    assert state.consecutive_failures == 0


def test_enabled_targets_exclude_paused(repository):
    first = repository.add_target("One", "https://example.com/1", "ABC")
    second = repository.add_target("Two", "https://example.com/2", "C", enabled=False)

    assert [target.id for target in repository.get_enabled_targets()] == [first]
    assert [target.id for target in repository.list_targets()] == [first, second]


def test_find_by_url(repository):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")

    assert repository.find_by_url("https://example.com/1").id == target_id
    assert repository.find_by_url("https://example.com/missing") is None


def test_update_target_applies_changes(repository, clock):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")
    clock.advance(30)

    repository.update_target(target_id, url_final_last="https://example.com/final", enabled=False)

    target = repository.get_target(target_id)
    assert target.url_final_last == "https://example.com/final"
    assert target.enabled is False
    assert target.updated_at == clock.now


def test_update_unknown_target_is_noop(repository):
    repository.update_target("missing", name="Ghost")

    assert repository.get_target("missing") is None


def test_update_rejects_unknown_fields(repository):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")

    with pytest.raises(TypeError):
        repository.update_target(target_id, colour="red")


def test_delete_target_removes_state_and_logs(repository, check_logs, clock):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")
    check_logs.append(target_id, clock.now, Status.CLOSED, [])

    assert repository.delete_target(target_id) is True

    assert repository.get_target(target_id) is None
    assert repository.get_state(target_id) is None
    assert check_logs.recent(target_id, 10) == []
    assert repository.delete_target(target_id) is False


def test_set_state_same_status_only_touches_updated_at(repository, clock):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")
    repository.set_state(target_id, Status.CLOSED)
    changed_at = clock.now

    clock.advance(60)
    repository.set_state(target_id, Status.CLOSED)

    state = repository.get_state(target_id)
    assert state.status is Status.CLOSED
    assert state.last_changed_at == changed_at
    assert state.updated_at == clock.now
    assert state.last_open_at is None


def test_set_state_open_moves_last_open(repository, clock):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")
    repository.set_state(target_id, Status.CLOSED)

    opened_at = clock.advance(60)
    repository.set_state(target_id, Status.OPEN)

    state = repository.get_state(target_id)
    assert state.status is Status.OPEN
    assert state.last_changed_at == opened_at
    assert state.last_open_at == opened_at

    closed_at = clock.advance(60)
    repository.set_state(target_id, Status.CLOSED)

    state = repository.get_state(target_id)
    assert state.last_changed_at == closed_at
    assert state.last_open_at == opened_at


def test_set_state_for_unknown_id_creates_state(repository, clock):
    repository.set_state("orphan", Status.OPEN)

    state = repository.get_state("orphan")
    assert state.status is Status.OPEN
    assert state.last_changed_at == clock.now
    assert state.last_open_at == clock.now


def test_state_survives_new_repository(temp_db, repository):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")
    repository.set_state(target_id, Status.OPEN)

    reopened = TargetRepository(temp_db)
    assert reopened.get_state(target_id).status is Status.OPEN


def test_check_log_is_newest_first(repository, check_logs, clock):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")
    check_logs.append(target_id, clock.now, Status.CLOSED, [])
    check_logs.append(target_id, clock.advance(60), Status.OPEN, ["A", "B"])
    check_logs.append(target_id, clock.advance(60), Status.UNKNOWN, [], error="Timeout 30000ms exceeded")

    entries = check_logs.recent(target_id, 10)

    assert [entry.status for entry in entries] == [Status.UNKNOWN, Status.OPEN, Status.CLOSED]
    assert entries[0].error == "Timeout 30000ms exceeded"
    assert json.loads(entries[1].evidence) == ["A", "B"]
    assert entries[1].checked_at == clock.now - timedelta(seconds=60)


def test_check_log_keeps_only_latest_entries(repository, check_logs, clock):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")
    start = clock.now
    for _ in range(MAX_LOG_ENTRIES + 5):
        check_logs.append(target_id, clock.advance(1), Status.CLOSED, [])

    entries = check_logs.recent(target_id, MAX_LOG_ENTRIES * 2)

    assert len(entries) == MAX_LOG_ENTRIES
    assert entries[0].checked_at == clock.now
    assert entries[-1].checked_at == start + timedelta(seconds=6)


def test_check_log_recent_limit(repository, check_logs, clock):
    target_id = repository.add_target("One", "https://example.com/1", "ABC")
    for _ in range(5):
        check_logs.append(target_id, clock.advance(1), Status.CLOSED, [])

    assert len(check_logs.recent(target_id, 3)) == 3
    assert check_logs.recent(target_id, 0) == []
    assert check_logs.recent("missing", 3) == []


def test_check_logs_are_partitioned_by_target(repository, check_logs, clock):
    first = repository.add_target("One", "https://example.com/1", "ABC")
    second = repository.add_target("Two", "https://example.com/2", "ABC")
    check_logs.append(first, clock.now, Status.OPEN, ["A"])

    assert len(check_logs.recent(first, 10)) == 1
    assert check_logs.recent(second, 10) == []


def test_app_settings_interval_persistence(temp_db):
    repository = AppSettingsRepository(temp_db, default_interval=60)
    assert repository.get_check_interval() == 60

    assert repository.set_check_interval(120) == 120

    repository_again = AppSettingsRepository(temp_db, default_interval=60)
    assert repository_again.get_check_interval() == 120


@pytest.mark.parametrize("seconds", [0, -5, 9])
def test_app_settings_rejects_short_interval(temp_db, seconds):
    repository = AppSettingsRepository(temp_db, default_interval=60)

    with pytest.raises(ValueError):
        repository.set_check_interval(seconds)
    assert repository.get_check_interval() == 60


def test_app_settings_heartbeat_date(temp_db):
    repository = AppSettingsRepository(temp_db, default_interval=60)
    assert repository.get_last_heartbeat_date() is None

    repository.set_last_heartbeat_date(date(2024, 5, 1))

    assert repository.get_last_heartbeat_date() == date(2024, 5, 1)


def test_seed_adds_missing_targets_once(repository):
    assert repository.seed(settings.MONITOR_TARGETS) == 2
    assert repository.seed(settings.MONITOR_TARGETS) == 0

    targets = repository.list_targets()
    assert [(target.name, target.policy) for target in targets] == [("Salon", "AB"), ("Clinic", "C")]
    assert all(repository.get_state(target.id).status is Status.UNKNOWN for target in targets)
