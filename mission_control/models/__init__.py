"""
mission_control/models/__init__.py
Entity models and payload variants.
"""

from mission_control.models.entities import (
    TERMINAL_MISSION_STATUSES,
    Artifact,
    ArtifactMode,
    AuditRecord,
    CircuitBreakerState,
    Mission,
    MissionClass,
    MissionStatus,
    Producer,
    Provenance,
    RiskLevel,
    SnapshotRecord,
    SpendRecord,
    Task,
    TaskStatus,
    TaskType,
    TriggerSource,
    new_id,
    utcnow,
)
from mission_control.models.payloads import (
    ApprovalDecision,
    ApprovalRecordPayload,
    CircuitBreakerTripPayload,
    CostEstimatePayload,
    SignalReportPayload,
)

__all__ = [
    "Mission",
    "Task",
    "Artifact",
    "Provenance",
    "CircuitBreakerState",
    "SpendRecord",
    "SnapshotRecord",
    "AuditRecord",
    "MissionClass",
    "MissionStatus",
    "TaskStatus",
    "TaskType",
    "RiskLevel",
    "TriggerSource",
    "Producer",
    "ArtifactMode",
    "ApprovalDecision",
    "ApprovalRecordPayload",
    "CircuitBreakerTripPayload",
    "CostEstimatePayload",
    "SignalReportPayload",
    "TERMINAL_MISSION_STATUSES",
    "new_id",
    "utcnow",
]
