"""Decide when a status change deserves a push and deliver it."""
from __future__ import annotations

import logging

from models import DeliveryResult, Notification, Status, Target
from services.gateway import Gateway

logger = logging.getLogger(__name__)

NOTIFICATION_BODY = "예약 버튼이 활성화됐습니다!"
TEST_NOTIFICATION = Notification(
    title="Naver Booking Ping - Test",
    body="This is a test notification. Your push setup is working!",
    click_url="https://booking.naver.com/",
)


def should_notify(old_status: Status, new_status: Status) -> bool:
    """Only a transition into OPEN is worth a notification."""
    return new_status is Status.OPEN and old_status is not Status.OPEN


def build_notification(target: Target) -> Notification:
    # always the input URL, never the resolved one
    return Notification(
        title=f"[{target.name}] 예약 버튼 활성화",
        body=NOTIFICATION_BODY,
        click_url=target.url_input,
    )


class NotificationDispatcher:
    """Send one push per transition into OPEN.

    Delivery failures are logged and swallowed so the caller always goes on
    to persist the new status; a lost alert must not turn into a duplicate
    alert on the next check.
    """

    def __init__(self, gateway: Gateway) -> None:
        self.gateway = gateway

    async def dispatch(self, target: Target, old_status: Status, new_status: Status) -> bool:
        if not should_notify(old_status, new_status):
            return False

        logger.info("Status changed: %s -> %s for %s", old_status, new_status, target.name)
        result = await self._deliver(build_notification(target))
        if result.ok:
            logger.info("Notification sent for %s", target.name)
        else:
            logger.error("Notification for %s was not delivered: %s", target.name, result.reason)
        return True

    async def send_test(self) -> DeliveryResult:
        return await self._deliver(TEST_NOTIFICATION)

    async def _deliver(self, notification: Notification) -> DeliveryResult:
        try:
            return await self.gateway.deliver(notification)
        except Exception as exc:
            logger.exception("Gateway raised while delivering %r", notification.title)
            return DeliveryResult(ok=False, reason=repr(exc))


__all__ = [
    "NOTIFICATION_BODY",
    "NotificationDispatcher",
    "build_notification",
    "should_notify",
]
