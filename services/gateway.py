"""Push gateways delivering notifications to the user's phone."""
from __future__ import annotations

import asyncio
import base64
import logging
from html import escape
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

import aiohttp
from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from models import DeliveryResult, Notification

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


class Gateway(Protocol):
    async def deliver(self, notification: Notification) -> DeliveryResult:
        ...

    async def close(self) -> None:
        ...


def encode_header_value(value: str) -> str:
    """Encode a header value as an RFC 2047 encoded-word when it is not ASCII."""
    if value.isascii():
        return value
    encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return f"=?utf-8?B?{encoded}?="


class NtfyGateway:
    """Deliver notifications through an ntfy topic."""

    def __init__(
        self,
        server_url: str,
        topic: str,
        priority: str = "high",
        tags: Sequence[str] = (),
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.url = f"{server_url.rstrip('/')}/{topic}"
        self.topic = topic
        self.priority = priority
        self.tags = tuple(tags)
        self.session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self._timeout)
        return self.session

    async def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None

    def build_headers(self, notification: Notification) -> dict[str, str]:
        headers = {
            "Content-Type": "text/plain; charset=utf-8",
            "Title": encode_header_value(notification.title),
            "Click": notification.click_url,
            "Priority": self.priority,
        }
        if self.tags:
            headers["Tags"] = ",".join(self.tags)
        return headers

    async def deliver(self, notification: Notification) -> DeliveryResult:
        session = await self._get_session()
        try:
            async with session.post(
                self.url,
                data=notification.body.encode("utf-8"),
                headers=self.build_headers(notification),
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    return DeliveryResult(
                        ok=False,
                        reason=f"ntfy responded {response.status} {response.reason}: {text[:200]}",
                    )
        except asyncio.TimeoutError:
            return DeliveryResult(ok=False, reason="ntfy request timed out")
        except aiohttp.ClientError as exc:
            return DeliveryResult(ok=False, reason=f"ntfy request failed: {exc}")

        logger.info("Notification delivered to ntfy topic %s", self.topic)
        return DeliveryResult(ok=True)


class TelegramGateway:
    """Deliver notifications as Telegram messages to every admin chat."""

    def __init__(self, bot: Bot, chat_ids: Sequence[int]) -> None:
        self.bot = bot
        self.chat_ids = tuple(chat_ids)

    @staticmethod
    def format_message(notification: Notification) -> str:
        title = escape(notification.title)
        body = escape(notification.body)
        url = escape(notification.click_url, quote=True)
        return f"🔔 <b>{title}</b>\n\n{body}\n\n🌐 <a href=\"{url}\">열기</a>"

    async def deliver(self, notification: Notification) -> DeliveryResult:
        if not self.chat_ids:
            return DeliveryResult(ok=False, reason="no chats configured")

        text = self.format_message(notification)
        failures: list[str] = []
        for chat_id in self.chat_ids:
            try:
                await self.bot.send_message(chat_id, text, parse_mode="HTML")
            except TelegramAPIError as exc:
                logger.warning("Telegram delivery to %s failed: %s", chat_id, exc)
                failures.append(f"{chat_id}: {exc}")

        if len(failures) == len(self.chat_ids):
            return DeliveryResult(ok=False, reason="; ".join(failures))
        logger.info("Notification delivered to %d Telegram chat(s)", len(self.chat_ids) - len(failures))
        return DeliveryResult(ok=True)

    async def close(self) -> None:
        # the bot session is owned by main
        return None


def create_gateway(settings: "Settings", bot: Optional[Bot] = None) -> Gateway:
    if settings.NOTIFIER == "telegram":
        if bot is None:
            raise ValueError("A Telegram bot is required when NOTIFIER=telegram")
        return TelegramGateway(bot, settings.ADMIN_CHAT_IDS)
    return NtfyGateway(
        settings.NTFY_SERVER_URL,
        settings.NTFY_TOPIC,
        priority=settings.NTFY_PRIORITY,
        tags=settings.NTFY_TAGS,
    )


def create_heartbeat_gateway(settings: "Settings") -> Optional[NtfyGateway]:
    if not settings.NTFY_HEARTBEAT_TOPIC:
        return None
    return NtfyGateway(
        settings.NTFY_SERVER_URL,
        settings.NTFY_HEARTBEAT_TOPIC,
        priority="default",
    )


__all__ = [
    "Gateway",
    "NtfyGateway",
    "TelegramGateway",
    "create_gateway",
    "create_heartbeat_gateway",
    "encode_header_value",
]
