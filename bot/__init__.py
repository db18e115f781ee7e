"""Bot package initialization"""
from .filters import IsAdmin
from .handlers import router

__all__ = ['router', 'IsAdmin']
