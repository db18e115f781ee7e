"""Services package initialization"""
from .alerts import AdminAlertHandler
from .monitor import Monitor
from .notifier import NotificationDispatcher
from .scheduler import JitterScheduler

__all__ = ["AdminAlertHandler", "JitterScheduler", "Monitor", "NotificationDispatcher"]
