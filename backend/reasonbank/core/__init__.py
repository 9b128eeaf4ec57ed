"""
Core Module
===========

Configuration, database, error taxonomy and resilience primitives.
"""

from reasonbank.core.config import settings, get_settings

__all__ = ["settings", "get_settings"]
