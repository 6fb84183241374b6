"""Unified configuration interface for PlanMind.

Usage:
    from planmind.config import settings
"""

from .settings import PlanMindSettings, settings

__all__ = ["PlanMindSettings", "settings"]
