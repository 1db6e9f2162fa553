"""
Schema Validators
=================

Pure structural checks for Mission, Task, Artifact and CircuitBreakerState
candidates. Validators never raise and never touch storage; they report an
ordered list of field-level messages and the engine decides whether to raise
`ValidationError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from mission_control.core.artifact_types import ArtifactTypeRegistry
from mission_control.models.entities import (
    ArtifactMode,
    MissionClass,
    MissionStatus,
    Producer,
    RiskLevel,
    TaskStatus,
    TaskType,
    TriggerSource,
)
from shared.config import SharedConfig


@dataclass
class ValidationResult:
    """Outcome of a validator: `valid` is True iff `errors` is empty."""

    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def extend(self, errors: Iterable[str]) -> "ValidationResult":
        self.errors.extend(errors)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


# Candidate shapes. Generated fields (ids, versions, timestamps) are absent
# on purpose: they belong to the engine, not the caller.


class _Candidate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


C = TypeVar("C", bound=_Candidate)


class MissionCandidate(_Candidate):
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


class TaskCandidate(_Candidate):
    id: Optional[str] = None
    mission_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=SharedConfig.MAX_NAME_LENGTH)
    description: str = Field(default="", max_length=SharedConfig.MAX_DESCRIPTION_LENGTH)
    task_type: TaskType = TaskType.WORK
    status: TaskStatus = TaskStatus.PENDING
    deps: list[str] = Field(default_factory=list)
    required_artifacts: list[str] = Field(default_factory=list)
    assigned_agent: Optional[str] = None


class ProvenanceCandidate(_Candidate):
    producer: Producer
    agent_id: Optional[str] = None
    worktree: Optional[str] = None
    commit_hash: Optional[str] = None


class ArtifactCandidate(_Candidate):
    mission_id: str = Field(min_length=1)
    task_id: Optional[str] = None
    type: str = Field(min_length=1)
    label: str = Field(min_length=1, max_length=SharedConfig.MAX_LABEL_LENGTH)
    payload: Optional[dict[str, Any]] = None
    files: list[str] = Field(default_factory=list)
    provenance: ProvenanceCandidate = Field(
        default_factory=lambda: ProvenanceCandidate(producer=Producer.SYSTEM)
    )


class BreakerCandidate(_Candidate):
    mission_id: str = Field(min_length=1)
    failure_count: int = Field(default=0, ge=0)
    immediate_exec_count: int = Field(default=0, ge=0)
    tripped: bool = False
    tripped_at: Optional[Any] = None
    tripped_reason: Optional[str] = None


def _format_errors(error: PydanticValidationError) -> list[str]:
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "<root>"
        messages.append(f"{location}: {err['msg']}")
    return messages


def _parse(model: type[C], data: Any) -> tuple[Optional[C], list[str]]:
    if not isinstance(data, Mapping):
        return None, [f"<root>: expected an object, got {type(data).__name__}"]
    try:
        return model.model_validate(dict(data)), []
    except PydanticValidationError as e:
        return None, _format_errors(e)


def _duplicates(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for value in values:
        if value in seen and value not in dupes:
            dupes.append(value)
        seen.add(value)
    return dupes


def validate_mission(data: Any, registry: ArtifactTypeRegistry) -> ValidationResult:
    """Validate a mission creation request."""
    result = ValidationResult()
    candidate, errors = _parse(MissionCandidate, data)
    result.extend(errors)
    if candidate is None:
        return result

    for name in candidate.required_artifacts:
        if not registry.is_registered(name):
            result.errors.append(
                f"requiredArtifacts: '{name}' is not a registered artifact type"
            )
    if candidate.allowed_tools is not None:
        for tool in candidate.allowed_tools:
            if not tool.strip():
                result.errors.append("allowedTools: tool patterns cannot be empty")
                break
    if candidate.status in (MissionStatus.COMPLETE, MissionStatus.LOCKED):
        result.errors.append(
            f"status: a mission cannot be created as '{candidate.status.value}'"
        )
    if candidate.status == MissionStatus.BLOCKED and not candidate.blocked_reason:
        result.errors.append("blockedReason: required when status is 'blocked'")
    return result


def validate_task(
    data: Any,
    known_task_ids: Optional[Iterable[str]] = None,
) -> ValidationResult:
    """
    Validate a task creation request.

    Args:
        data: Candidate task
        known_task_ids: Ids the caller asserts exist; when given, every dep
            must be among them. Existence itself is checked by the engine.
    """
    result = ValidationResult()
    candidate, errors = _parse(TaskCandidate, data)
    result.extend(errors)
    if candidate is None:
        return result

    for dupe in _duplicates(candidate.deps):
        result.errors.append(f"deps: '{dupe}' is listed more than once")
    if candidate.id is not None and candidate.id in candidate.deps:
        result.errors.append(f"deps: task '{candidate.id}' cannot depend on itself")
    if known_task_ids is not None:
        known = set(known_task_ids)
        for dep in candidate.deps:
            if dep not in known:
                result.errors.append(f"deps: '{dep}' does not reference a known task")
    if candidate.status != TaskStatus.PENDING:
        result.errors.append("status: tasks are created as 'pending'")
    return result


def validate_artifact(data: Any, registry: ArtifactTypeRegistry) -> ValidationResult:
    """Validate an artifact creation request, including its payload variant."""
    result = ValidationResult()
    candidate, errors = _parse(ArtifactCandidate, data)
    result.extend(errors)
    if candidate is None:
        return result

    if not registry.is_registered(candidate.type):
        result.errors.append(f"type: '{candidate.type}' is not a registered artifact type")
        return result
    _, payload_errors = registry.parse_payload(candidate.type, candidate.payload)
    result.extend(payload_errors)
    return result


def validate_breaker_state(data: Any) -> ValidationResult:
    """Validate a CircuitBreakerState document."""
    result = ValidationResult()
    candidate, errors = _parse(BreakerCandidate, data)
    result.extend(errors)
    if candidate is None:
        return result

    if candidate.tripped and candidate.tripped_at is None:
        result.errors.append("trippedAt: required when tripped")
    if candidate.tripped and not candidate.tripped_reason:
        result.errors.append("trippedReason: required when tripped")
    return result


def validate_artifact_append(
    mode: ArtifactMode,
    existing_payload: Optional[Mapping[str, Any]],
    entries: Mapping[str, Any],
) -> ValidationResult:
    """
    Check that an append keeps every existing payload entry.

    Immutable artifacts accept nothing. Append-only artifacts accept new
    keys, and list values may be extended; any other existing key is
    rejected.
    """
    result = ValidationResult()
    if mode == ArtifactMode.IMMUTABLE:
        return result.extend(["artifactMode: immutable artifacts cannot be modified"])
    if not entries:
        return result.extend(["payload: nothing to append"])
    current = existing_payload or {}
    for key, value in entries.items():
        if key not in current:
            continue
        if isinstance(current[key], list) and isinstance(value, list):
            continue
        result.errors.append(f"payload.{key}: existing entries cannot be overwritten")
    return result


def validate_patch(
    patch: Any,
    allowed_fields: Iterable[str],
    aliases: Mapping[str, str],
) -> ValidationResult:
    """
    Check that a patch only touches caller-editable fields.

    Args:
        patch: Candidate patch mapping (snake_case or camelCase keys)
        allowed_fields: Editable field names
        aliases: camelCase alias -> field name
    """
    result = ValidationResult()
    if not isinstance(patch, Mapping):
        return result.extend([f"<root>: expected an object, got {type(patch).__name__}"])
    if not patch:
        return result.extend(["<root>: patch is empty"])
    allowed = set(allowed_fields)
    for key in patch:
        name = aliases.get(key, key)
        if name not in allowed:
            result.errors.append(f"{key}: field cannot be patched")
    return result
