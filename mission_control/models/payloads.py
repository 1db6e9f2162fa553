"""
mission_control/models/payloads.py
Tagged payload variants, one per artifact type.

The registry maps every artifact type to exactly one of these models;
payloads are validated against it when the artifact is created.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mission_control.models.entities import utcnow


class ApprovalDecision(str, Enum):
    """Human decision recorded in an approval_record."""

    APPROVE = "approve"
    DENY = "deny"


class PayloadModel(BaseModel):
    """Closed payload: unknown keys are rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class OpenPayloadModel(PayloadModel):
    """Payload that carries arbitrary report fields next to the known ones."""

    model_config = ConfigDict(extra="allow")


class SignalReportPayload(PayloadModel):
    """Watchdog observation that triggered (or may trigger) a mission."""

    source: str = Field(min_length=1)
    metric: str = Field(min_length=1)
    value: float
    previous_value: Optional[float] = None
    delta: Optional[float] = None
    threshold: Optional[float] = None
    window: Optional[str] = None
    triggered: bool = True
    observed_at: Optional[datetime] = None


class ApprovalRecordPayload(PayloadModel):
    """Human decision on a target (mission, circuit breaker, tool, task)."""

    target_type: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    decision: ApprovalDecision
    approver: str = Field(min_length=1)
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class CircuitBreakerTripPayload(PayloadModel):
    """Why a mission was locked or blocked by the safety system."""

    reason: str
    failure_count: int = 0
    immediate_exec_count: int = 0
    max_failures: Optional[int] = None
    max_immediate_execs: Optional[int] = None
    projected_cost: Optional[float] = None
    limit: Optional[float] = None
    tripped_at: datetime = Field(default_factory=utcnow)
    required_action: str = "Human approval via approval_record"


class CostEstimatePayload(PayloadModel):
    """Pre-flight cost projection for an execution request."""

    projected_cost: float = Field(ge=0)
    limit: Optional[float] = None
    spent_total: float = 0.0
    spent_last_hour: float = 0.0
    within_budget: bool
    reason: Optional[str] = None
    tool: Optional[str] = None


class RateLimitEventPayload(PayloadModel):
    """A provider refused or throttled a request."""

    provider: str
    retry_after: Optional[float] = None
    daily_used: Optional[int] = None
    daily_quota: Optional[int] = None


class LogPayload(OpenPayloadModel):
    """Append-only log: lines are only ever added."""

    entries: list[str] = Field(default_factory=list)


class ExitStatusPayload(PayloadModel):
    """Exit of an agent process as reported by the agent runtime."""

    exit_code: int
    agent_id: Optional[str] = None
    message: Optional[str] = None


class FailureReportPayload(OpenPayloadModel):
    """Description of a task or agent failure."""

    error: str = Field(min_length=1)
    task_id: Optional[str] = None


class MissionBootstrapPayload(PayloadModel):
    """Execution policy recorded once at mission start."""

    execution_authority: str = "agent_runtime"
    execution_mode: str = "recipe_only"
    resume_policy: str = "continue_from_last_task"
    delegation_required: bool = True
    mission_class: Optional[str] = None
    created_by: str = "system"


class ExecutionViolationPayload(PayloadModel):
    """Evidence that a caller attempted to bypass delegation."""

    attempted_action: str = Field(min_length=1)
    attempted_by: str = "unknown"
    required_authority: str = "agent_runtime"
    blocked: bool = True
    task_id: Optional[str] = None
    tool_attempted: Optional[str] = None


class ReportPayload(OpenPayloadModel):
    """Generic report body (diffs, screenshots, rankings snapshots, plans)."""

    summary: Optional[str] = None
    data: Optional[dict[str, Any]] = None
