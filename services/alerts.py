"""Forward error logs to Telegram administrators."""
from __future__ import annotations

import asyncio
import logging
import sys
import time
from datetime import UTC, datetime
from typing import Callable, Coroutine, Sequence

from aiogram import Bot

MAX_ALERT_LENGTH = 3500
DEFAULT_COOLDOWN_SECONDS = 600.0

AlertKey = tuple[str, int, str]


class AdminAlertHandler(logging.Handler):
    """Logging handler that forwards ERROR records to Telegram admins.

    A failing target logs the same error on every tick, so identical messages
    from the same source line are forwarded at most once per ``cooldown``
    seconds.
    """

    def __init__(
        self,
        bot: Bot,
        admin_chat_ids: Sequence[int],
        loop: asyncio.AbstractEventLoop | None = None,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(level=logging.ERROR)
        self._bot = bot
        self._admin_chat_ids = tuple(admin_chat_ids)
        self._loop = loop
        self._cooldown = cooldown
        self._monotonic = monotonic
        self._last_sent: dict[AlertKey, float] = {}
        self.setFormatter(logging.Formatter("%(message)s"))

    async def _broadcast(self, text: str) -> None:
        for chat_id in self._admin_chat_ids:
            try:
                await self._bot.send_message(chat_id, text)
            except Exception as exc:  # pragma: no cover - best-effort logging
                # logging here would feed the alert back into this handler
                sys.stderr.write(f"Failed to alert admin {chat_id}: {exc!r}\n")

    def _render(self, record: logging.LogRecord) -> str:
        # the formatter appends traceback and stack info
        summary = self.format(record)
        logged_at = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        return (
            f"⚠️ Booking watch {record.levelname}\n"
            f"{logged_at} · {record.name} ({record.module}:{record.lineno})\n\n"
            f"{summary[-MAX_ALERT_LENGTH:]}"
        )

    def _claim(self, record: logging.LogRecord) -> bool:
        key: AlertKey = (record.pathname, record.lineno, record.getMessage())
        now = self._monotonic()
        expired = [seen for seen, sent_at in self._last_sent.items() if now - sent_at >= self._cooldown]
        for seen in expired:
            del self._last_sent[seen]
        last = self._last_sent.get(key)
        if last is not None and now - last < self._cooldown:
            return False
        self._last_sent[key] = now
        return True

    def _schedule(self, coroutine: Coroutine[object, object, None]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        if loop is None or not loop.is_running():
            asyncio.run(coroutine)
            return

        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        if current_loop is loop:
            loop.call_soon(asyncio.create_task, coroutine)
        else:
            loop.call_soon_threadsafe(asyncio.create_task, coroutine)

    def emit(self, record: logging.LogRecord) -> None:
        if not self._admin_chat_ids or not self._claim(record):
            return
        try:
            text = self._render(record)
        except Exception:
            self.handleError(record)
            return
        self._schedule(self._broadcast(text))


__all__ = ["AdminAlertHandler", "MAX_ALERT_LENGTH"]
