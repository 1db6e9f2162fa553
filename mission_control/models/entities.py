"""
mission_control/models/entities.py
Core data models with Pydantic validation.

Attributes are snake_case in Python and camelCase on the wire
(`missionClass`, `_stateVersion`, ...). Either spelling is accepted on input.

Follows: Single Responsibility Principle (data only, no logic)
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.config import SharedConfig

# ENUMS


class MissionClass(str, Enum):
    """Declared class of a mission; drives default tool permissions."""

    EXPLORATION = "exploration"
    IMPLEMENTATION = "implementation"
    MAINTENANCE = "maintenance"
    DESTRUCTIVE = "destructive"
    CONTINUOUS = "continuous"


class MissionStatus(str, Enum):
    """Mission lifecycle status."""

    QUEUED = "queued"
    RUNNING = "running"
    BLOCKED = "blocked"  # budget or dependency, recoverable
    NEEDS_REVIEW = "needs_review"
    COMPLETE = "complete"
    FAILED = "failed"
    LOCKED = "locked"  # circuit breaker, human approval required


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    BLOCKED = "blocked"


class TaskType(str, Enum):
    """Kind of work a task represents."""

    WORK = "work"
    VERIFICATION = "verification"
    FINALIZATION = "finalization"


class RiskLevel(str, Enum):
    """Mission risk level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TriggerSource(str, Enum):
    """What started the mission."""

    MANUAL = "manual"
    WATCHDOG = "watchdog"
    SCHEDULED = "scheduled"


class Producer(str, Enum):
    """Who produced an artifact."""

    AGENT = "agent"
    WATCHDOG = "watchdog"
    SYSTEM = "system"
    HUMAN = "human"


class ArtifactMode(str, Enum):
    """Artifact mutability mode."""

    IMMUTABLE = "immutable"
    APPEND_ONLY = "append-only"


TERMINAL_MISSION_STATUSES = frozenset({MissionStatus.COMPLETE, MissionStatus.FAILED})


# HELPERS

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate `<prefix>-<epoch_ms>-<6 base36 chars>`."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


class EntityModel(BaseModel):
    """Base for persisted entities: camelCase aliases, assignment validation."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON document stored on disk."""
        return self.model_dump(mode="json", by_alias=True)


# ENTITIES


class Mission(EntityModel):
    """A unit of autonomous work with a declared class and risk level."""

    id: str
    name: str = Field(min_length=1, max_length=SharedConfig.MAX_NAME_LENGTH)
    description: str = Field(default="", max_length=SharedConfig.MAX_DESCRIPTION_LENGTH)
    mission_class: MissionClass
    status: MissionStatus = MissionStatus.QUEUED
    blocked_reason: Optional[str] = None
    required_artifacts: list[str] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    allowed_tools: Optional[list[str]] = None
    max_estimated_cost: Optional[float] = Field(default=None, ge=0)
    max_cost_per_hour: Optional[float] = Field(default=None, ge=0)
    trigger_source: TriggerSource = TriggerSource.MANUAL
    idempotency_key: Optional[str] = None
    task_ids: list[str] = Field(default_factory=list)
    artifact_ids: list[str] = Field(default_factory=list)
    state_version: int = Field(default=1, alias="_stateVersion")
    last_snapshot_at: Optional[datetime] = Field(default=None, alias="_lastSnapshotAt")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class Task(EntityModel):
    """A decomposed step owned by exactly one mission."""

    id: str
    mission_id: str
    title: str = Field(min_length=1, max_length=SharedConfig.MAX_NAME_LENGTH)
    description: str = Field(default="", max_length=SharedConfig.MAX_DESCRIPTION_LENGTH)
    task_type: TaskType = TaskType.WORK
    status: TaskStatus = TaskStatus.PENDING
    blocked_reason: Optional[str] = None
    deps: list[str] = Field(default_factory=list)
    required_artifacts: list[str] = Field(default_factory=list)
    assigned_agent: Optional[str] = None
    artifact_ids: list[str] = Field(default_factory=list)
    state_version: int = Field(default=1, alias="_stateVersion")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class Provenance(EntityModel):
    """Who produced an artifact, and from where."""

    producer: Producer
    agent_id: Optional[str] = None
    worktree: Optional[str] = None
    commit_hash: Optional[str] = None


class Artifact(EntityModel):
    """Evidence record; the only mechanism by which gates are satisfied."""

    id: str
    mission_id: str
    task_id: Optional[str] = None
    type: str
    artifact_mode: ArtifactMode
    label: str = Field(min_length=1, max_length=SharedConfig.MAX_LABEL_LENGTH)
    payload: Optional[dict[str, Any]] = None
    files: list[str] = Field(default_factory=list)
    provenance: Provenance
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class SpendRecord(EntityModel):
    """One honored execution's cost, kept for the hourly budget window."""

    at: datetime
    amount: float = Field(ge=0)
    tool: Optional[str] = None


class CircuitBreakerState(EntityModel):
    """Per-mission safety counters; lives independently of the mission."""

    mission_id: str
    failure_count: int = Field(default=0, ge=0)
    immediate_exec_count: int = Field(default=0, ge=0)
    tripped: bool = False
    tripped_at: Optional[datetime] = None
    tripped_reason: Optional[str] = None
    locked_until: Optional[datetime] = None
    spend: list[SpendRecord] = Field(default_factory=list)
    cleared_at: Optional[datetime] = None
    cleared_by: Optional[str] = None

    @property
    def spent_total(self) -> float:
        return sum(record.amount for record in self.spend)


class SnapshotRecord(EntityModel):
    """Metadata of a full-state snapshot file."""

    snapshot_id: str
    reason: str
    created_at: datetime
    path: str


class AuditRecord(EntityModel):
    """One accepted mutation."""

    at: datetime = Field(default_factory=utcnow)
    actor: str
    action: str
    entity_type: str
    entity_id: str
    state_version: Optional[int] = None
    details: dict[str, Any] = Field(default_factory=dict)
