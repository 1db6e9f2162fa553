"""
mission_control/core/__init__.py
Gatekeeping logic: registry, validators, task graph, breaker and the engine.
"""

from .artifact_types import DEFAULT_REGISTRY, ArtifactType, ArtifactTypeRegistry, build_default_registry
from .circuit_breaker import BudgetDecision, MissionCircuitBreaker, TripDecision, TripReason
from .rate_limits import PROVIDER_LIMITS, ProviderLimit, RateLimiter
from .state_store import (
    CompletionStatus,
    ExecutionGrant,
    IntakeResult,
    StateStore,
    derive_idempotency_key,
)
from .task_graph import TaskGraph, check_acyclic
from .validators import ValidationResult

__all__ = [
    "ArtifactType",
    "ArtifactTypeRegistry",
    "DEFAULT_REGISTRY",
    "build_default_registry",
    "BudgetDecision",
    "MissionCircuitBreaker",
    "TripDecision",
    "TripReason",
    "PROVIDER_LIMITS",
    "ProviderLimit",
    "RateLimiter",
    "CompletionStatus",
    "ExecutionGrant",
    "IntakeResult",
    "StateStore",
    "derive_idempotency_key",
    "TaskGraph",
    "check_acyclic",
    "ValidationResult",
]
