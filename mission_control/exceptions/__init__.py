"""
mission_control/exceptions/__init__.py
Custom exceptions for the state engine.
"""

from .integration_exceptions import NotConfiguredError, RateLimitedError
from .mission_exceptions import (
    ArmedModeRequiredError,
    CircuitBreakerError,
    ConfigurationError,
    CostLimitExceededError,
    DependencyNotMetError,
    DestructiveBlockedError,
    ErrorCode,
    GateError,
    InputError,
    MissingArtifactError,
    MissionControlException,
    NotFoundError,
    SafetyError,
    StorageError,
    ToolNotAllowedError,
    ValidationError,
)

__all__ = [
    "MissionControlException",
    "ErrorCode",
    "InputError",
    "GateError",
    "SafetyError",
    "ConfigurationError",
    "StorageError",
    "ValidationError",
    "NotFoundError",
    "MissingArtifactError",
    "DependencyNotMetError",
    "ToolNotAllowedError",
    "DestructiveBlockedError",
    "ArmedModeRequiredError",
    "CircuitBreakerError",
    "CostLimitExceededError",
    "NotConfiguredError",
    "RateLimitedError",
]
