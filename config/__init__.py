"""Config package initialization"""
from .settings import Settings, TargetSeed, settings

__all__ = ["Settings", "TargetSeed", "settings"]
