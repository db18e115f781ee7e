import asyncio
import logging
from typing import List, Tuple, cast

import pytest

from aiogram import Bot

from services.alerts import AdminAlertHandler


class DummyBot:
    def __init__(self) -> None:
        self.sent: List[Tuple[int, str]] = []

    async def send_message(self, chat_id: int, text: str, parse_mode: str | None = None) -> None:  # pragma: no cover - exercised in tests
        self.sent.append((chat_id, text))


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _attach(handler: AdminAlertHandler, name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


@pytest.mark.asyncio
async def test_admin_alert_handler_sends_messages() -> None:
    bot = DummyBot()
    handler = AdminAlertHandler(cast(Bot, bot), (1, 2), loop=asyncio.get_running_loop())
    logger = _attach(handler, "test.alerts.sends")

    logger.critical("Boom")
    await asyncio.sleep(0.01)

    assert len(bot.sent) == 2
    assert bot.sent[0][0] == 1
    assert "Boom" in bot.sent[0][1]

    logger.removeHandler(handler)


@pytest.mark.asyncio
async def test_admin_alert_handler_ignores_warnings() -> None:
    bot = DummyBot()
    handler = AdminAlertHandler(cast(Bot, bot), (1,), loop=asyncio.get_running_loop())
    logger = _attach(handler, "test.alerts.ignore")

    logger.warning("Could not render page")
    logger.error("Notification was not delivered")
    await asyncio.sleep(0.01)

    assert len(bot.sent) == 1
    assert "Notification was not delivered" in bot.sent[0][1]

    logger.removeHandler(handler)


@pytest.mark.asyncio
async def test_admin_alert_handler_includes_traceback() -> None:
    bot = DummyBot()
    handler = AdminAlertHandler(cast(Bot, bot), (1,), loop=asyncio.get_running_loop())
    logger = _attach(handler, "test.alerts.traceback")

    try:
        raise RuntimeError("browser crashed")
    except RuntimeError:
        logger.exception("Error checking target Salon")
    await asyncio.sleep(0.01)

    assert "Traceback" in bot.sent[0][1]
    assert "browser crashed" in bot.sent[0][1]

    logger.removeHandler(handler)


@pytest.mark.asyncio
async def test_admin_alert_handler_cooldown() -> None:
    bot = DummyBot()
    clock = FakeMonotonic()
    handler = AdminAlertHandler(
        cast(Bot, bot),
        (1,),
        loop=asyncio.get_running_loop(),
        cooldown=600,
        monotonic=clock,
    )
    logger = _attach(handler, "test.alerts.cooldown")

    def fail() -> None:
        logger.error("Error checking target %s", "Salon")

    fail()
    clock.now += 60
    fail()
    await asyncio.sleep(0.01)
    assert len(bot.sent) == 1

    clock.now += 600
    fail()
    await asyncio.sleep(0.01)
    assert len(bot.sent) == 2

    logger.removeHandler(handler)


@pytest.mark.asyncio
async def test_admin_alert_handler_without_admins() -> None:
    bot = DummyBot()
    handler = AdminAlertHandler(cast(Bot, bot), (), loop=asyncio.get_running_loop())
    logger = _attach(handler, "test.alerts.empty")

    logger.error("Should not send")
    await asyncio.sleep(0.01)

    assert bot.sent == []

    logger.removeHandler(handler)


@pytest.mark.asyncio
async def test_admin_alert_handler_forgets_expired_messages() -> None:
    bot = DummyBot()
    clock = FakeMonotonic()
    handler = AdminAlertHandler(
        cast(Bot, bot),
        (1,),
        loop=asyncio.get_running_loop(),
        cooldown=600,
        monotonic=clock,
    )
    logger = _attach(handler, "test.alerts.expiry")

    for reason in ("ntfy responded 502", "ntfy responded 503", "ntfy request timed out"):
        logger.error("Notification for Salon was not delivered: %s", reason)
    await asyncio.sleep(0.01)
    assert len(handler._last_sent) == 3

    clock.now += 600
    logger.error("Notification for Salon was not delivered: %s", "ntfy responded 500")
    await asyncio.sleep(0.01)

    assert len(handler._last_sent) == 1
    assert len(bot.sent) == 4

    logger.removeHandler(handler)
