"""
mission_control/__init__.py
Mission Control state engine package initialization.

Authoritative state store for autonomous missions: validation, artifact
gates, task dependencies, circuit breakers and budget enforcement.
"""

__version__ = "0.8.0"

from mission_control.core import StateStore
from mission_control.models import Artifact, CircuitBreakerState, Mission, Task
from mission_control.storage import SQLiteStateBackend, StateBackend

__all__ = [
    "StateStore",
    "StateBackend",
    "SQLiteStateBackend",
    "Mission",
    "Task",
    "Artifact",
    "CircuitBreakerState",
]
