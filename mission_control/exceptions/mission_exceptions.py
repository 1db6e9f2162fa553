"""
mission_control/exceptions/mission_exceptions.py
Engine exceptions with actionable error messages.

Errors are grouped by category:
- InputError: caller mistakes, surfaced immediately, never retried
- GateError: well-formed request that cannot proceed yet
- SafetyError: terminal for the mission until a human clears it
- ConfigurationError: raised by external collaborators, passed through
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Sequence


class ErrorCode(str, Enum):
    """Error codes surfaced to callers."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    COMPLETION_BLOCKED = "COMPLETION_BLOCKED"
    CIRCUIT_BREAKER_TRIPPED = "CIRCUIT_BREAKER_TRIPPED"
    COST_LIMIT_EXCEEDED = "COST_LIMIT_EXCEEDED"
    ARMED_MODE_REQUIRED = "ARMED_MODE_REQUIRED"
    DEPENDENCY_NOT_MET = "DEPENDENCY_NOT_MET"
    TOOL_NOT_ALLOWED = "TOOL_NOT_ALLOWED"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    RATE_LIMITED = "RATE_LIMITED"
    DESTRUCTIVE_BLOCKED = "DESTRUCTIVE_BLOCKED"
    STORAGE_ERROR = "STORAGE_ERROR"


class MissionControlException(Exception):
    """Base exception for all Mission Control errors."""

    def __init__(self, message: str, error_code: str = "UNKNOWN") -> None:
        self.message = message
        self.error_code = error_code
        super().__init__(f"[{error_code}] {message}")


class InputError(MissionControlException):
    """Caller supplied something malformed or unknown."""


class GateError(MissionControlException):
    """A precondition for the transition is not met yet."""


class SafetyError(MissionControlException):
    """The mission is held until an explicit human action."""


class ConfigurationError(MissionControlException):
    """An external collaborator is unavailable or not set up."""


class StorageError(MissionControlException):
    """Raised when persistence operations fail."""

    def __init__(self, message: str, operation: str = "") -> None:
        super().__init__(
            f"Storage operation '{operation}' failed: {message}",
            error_code=ErrorCode.STORAGE_ERROR.value,
        )
        self.operation = operation


class ValidationError(InputError):
    """Raised when an entity or patch fails schema validation."""

    def __init__(self, errors: Sequence[str] | str, entity: str = "") -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        self.entity = entity
        prefix = f"{entity} " if entity else ""
        super().__init__(
            f"{prefix}validation failed: {'; '.join(self.errors)}",
            error_code=ErrorCode.VALIDATION_ERROR.value,
        )


class NotFoundError(InputError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} {entity_id} not found",
            error_code=ErrorCode.NOT_FOUND.value,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class MissingArtifactError(GateError):
    """Raised when completion is attempted without the required evidence."""

    def __init__(self, entity_id: str, missing: Iterable[str]) -> None:
        self.entity_id = entity_id
        self.missing_artifacts = list(missing)
        super().__init__(
            f"{entity_id} cannot complete: missing artifacts "
            f"[{', '.join(self.missing_artifacts)}]",
            error_code=ErrorCode.COMPLETION_BLOCKED.value,
        )


class DependencyNotMetError(GateError):
    """Raised when a task advances before its dependencies are complete."""

    def __init__(self, task_id: str, unmet: Iterable[str]) -> None:
        self.task_id = task_id
        self.unmet_dependencies = list(unmet)
        super().__init__(
            f"Task {task_id} has unmet dependencies "
            f"[{', '.join(self.unmet_dependencies)}]",
            error_code=ErrorCode.DEPENDENCY_NOT_MET.value,
        )


class ToolNotAllowedError(GateError):
    """Raised when a tool is outside the mission's allow-list."""

    def __init__(self, mission_id: str, tool: str) -> None:
        self.mission_id = mission_id
        self.tool = tool
        super().__init__(
            f"Tool '{tool}' is not allowed for mission {mission_id}",
            error_code=ErrorCode.TOOL_NOT_ALLOWED.value,
        )


class DestructiveBlockedError(GateError):
    """Raised when a destructive mission acts without human approval."""

    def __init__(self, mission_id: str, action: str) -> None:
        self.mission_id = mission_id
        self.action = action
        super().__init__(
            f"Destructive mission {mission_id} requires an approved "
            f"approval_record before '{action}'",
            error_code=ErrorCode.DESTRUCTIVE_BLOCKED.value,
        )


class ArmedModeRequiredError(GateError):
    """Raised when an immediate execution needs armed mode."""

    def __init__(self, mission_id: str, risk_level: str, threshold: str) -> None:
        self.mission_id = mission_id
        self.risk_level = risk_level
        self.threshold = threshold
        super().__init__(
            f"Mission {mission_id} has risk '{risk_level}' above threshold "
            f"'{threshold}'; armed mode required",
            error_code=ErrorCode.ARMED_MODE_REQUIRED.value,
        )


class CircuitBreakerError(SafetyError):
    """Raised when a mission is locked by its circuit breaker."""

    def __init__(self, mission_id: str, reason: Optional[str]) -> None:
        self.mission_id = mission_id
        self.reason = reason
        super().__init__(
            f"Mission {mission_id} is locked: {reason or 'circuit breaker tripped'}",
            error_code=ErrorCode.CIRCUIT_BREAKER_TRIPPED.value,
        )


class CostLimitExceededError(SafetyError):
    """Raised when projected spend exceeds a mission budget."""

    def __init__(
        self,
        mission_id: str,
        reason: str,
        projected: float,
        limit: float,
    ) -> None:
        self.mission_id = mission_id
        self.reason = reason
        self.projected = projected
        self.limit = limit
        super().__init__(
            f"Mission {mission_id} blocked ({reason}): projected "
            f"{projected:.4f} exceeds limit {limit:.4f}",
            error_code=ErrorCode.COST_LIMIT_EXCEEDED.value,
        )
