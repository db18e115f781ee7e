"""Pytest configuration and fixtures."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from config import settings


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch) -> None:
    """Set up test environment variables"""
    monkeypatch.setenv('NOTIFIER', 'ntfy')
    monkeypatch.setenv('NTFY_TOPIC', 'booking-test')
    monkeypatch.setenv('BOT_TOKEN', 'test_token_123456')
    monkeypatch.setenv('ADMIN_CHAT_IDS', '123456789,987654321')
    monkeypatch.setenv('CHECK_INTERVAL_SECONDS', '60')
    monkeypatch.setenv('JITTER_RATIO', '0.3')
    monkeypatch.setenv(
        'MONITOR_TARGETS',
        'Salon|https://m.place.naver.com/place/1/booking|AB,Clinic|https://m.place.naver.com/place/2|C',
    )
    settings.reload()


@pytest.fixture
def temp_db(tmp_path, monkeypatch) -> Path:
    monkeypatch.setenv('DB_PATH', str(tmp_path / 'booking.db'))
    settings.reload()
    return settings.DB_PATH


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def closed_html() -> str:
    """Booking page with nothing bookable"""
    return """
    <html>
        <head><title>Salon</title></head>
        <body>
            <div class="info">영업 시간 안내</div>
            <a href="/place/1/home">홈</a>
        </body>
    </html>
    """


@pytest.fixture
def booking_link_html() -> str:
    """Page exposing a booking link (rule A)"""
    return """
    <html>
        <body>
            <a href="https://booking.naver.com/booking/6/bizes/123">바로가기</a>
        </body>
    </html>
    """
