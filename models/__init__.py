"""Models package initialization"""
from .check import CheckResult, DeliveryResult, LogEntry, Notification
from .status import Status
from .target import Target, TransitionState

__all__ = [
    'CheckResult',
    'DeliveryResult',
    'LogEntry',
    'Notification',
    'Status',
    'Target',
    'TransitionState',
]
