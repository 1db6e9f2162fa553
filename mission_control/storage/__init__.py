"""
mission_control/storage/__init__.py
Durable state backends.
"""

from .base import LoadedState, StateBackend, StateBatch
from .sqlite import SQLiteStateBackend

__all__ = ["StateBackend", "StateBatch", "LoadedState", "SQLiteStateBackend"]
