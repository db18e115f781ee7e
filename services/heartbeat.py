"""Daily "still running" push."""
from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta, timezone
from typing import Callable, Optional

from models import Notification
from services.gateway import Gateway
from services.storage import AppSettingsRepository

logger = logging.getLogger(__name__)


class Heartbeat:
    def __init__(
        self,
        gateway: Gateway,
        app_settings: AppSettingsRepository,
        hour: int = 7,
        utc_offset_hours: int = 9,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.gateway = gateway
        self.app_settings = app_settings
        self.hour = hour
        self.tz = timezone(timedelta(hours=utc_offset_hours))
        self._clock = clock or (lambda: datetime.now(UTC))

    async def maybe_send(self) -> bool:
        """Send the heartbeat if it is due. Returns True when one was delivered."""
        now = self._clock().astimezone(self.tz)
        today = now.date()
        if now.hour != self.hour or self.app_settings.get_last_heartbeat_date() == today:
            return False

        notification = Notification(
            title="Naver Booking Ping - 정상 작동 중",
            body=f"시스템이 정상적으로 작동 중입니다.\n시간: {now.strftime('%Y-%m-%d %H:%M:%S')}",
            click_url="https://booking.naver.com/",
        )
        try:
            result = await self.gateway.deliver(notification)
        except Exception:
            logger.exception("Heartbeat notification failed")
            return False

        if not result.ok:
            logger.error("Heartbeat notification failed: %s", result.reason)
            return False

        self.app_settings.set_last_heartbeat_date(today)
        logger.info("Heartbeat notification sent")
        return True
