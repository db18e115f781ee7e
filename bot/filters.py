"""
Filters for bot handlers
"""
from typing import Union

from aiogram.filters import Filter
from aiogram.types import CallbackQuery, Message

from config import settings


class IsAdmin(Filter):
    """Pass only events from chats listed in ADMIN_CHAT_IDS"""

    async def __call__(self, event: Union[Message, CallbackQuery]) -> bool:
        user = event.from_user
        if user is None:
            return False
        return user.id in settings.ADMIN_CHAT_IDS
