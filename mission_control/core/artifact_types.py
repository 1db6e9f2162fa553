"""
Artifact Type Registry
======================

Immutable table of artifact kinds: mutability mode and payload variant per
type. Built once at process start and passed by reference to the
validators and the engine; there is no API to change it afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mission_control.models.entities import ArtifactMode
from mission_control.models.payloads import (
    ApprovalRecordPayload,
    CircuitBreakerTripPayload,
    CostEstimatePayload,
    ExecutionViolationPayload,
    ExitStatusPayload,
    FailureReportPayload,
    LogPayload,
    MissionBootstrapPayload,
    RateLimitEventPayload,
    ReportPayload,
    SignalReportPayload,
)


class ArtifactType(str, Enum):
    """Every artifact kind the engine accepts."""

    # Core verification and build artifacts
    GIT_DIFF = "git_diff"
    GIT_COMMIT = "git_commit"
    BUILD_LOG = "build_log"
    RUNTIME_LOG = "runtime_log"
    LIGHTHOUSE_REPORT = "lighthouse_report"
    CONSOLE_ERRORS = "console_errors"
    SCREENSHOT_DESKTOP = "screenshot_desktop"
    SCREENSHOT_MOBILE = "screenshot_mobile"

    # Safety, approval and autonomy control
    PLAN = "plan"
    VERIFICATION_REPORT = "verification_report"
    FAILURE_REPORT = "failure_report"
    SELF_HEAL_PROPOSAL = "self_heal_proposal"
    APPROVAL_RECORD = "approval_record"
    AGENT_RECIPE = "agent_recipe"
    EXIT_STATUS = "exit_status"
    SIGNAL_REPORT = "signal_report"
    CIRCUIT_BREAKER_TRIP = "circuit_breaker_trip"
    POLICY_MATCH_REPORT = "policy_match_report"
    PRE_FLIGHT_SNAPSHOT = "pre_flight_snapshot"
    CHANGE_PLAN = "change_plan"
    COST_ESTIMATE = "cost_estimate"
    RATE_LIMIT_EVENT = "rate_limit_event"

    # Rankings tracking
    VISIBILITY_MAP = "visibility_map"
    LOCAL_PACK_SNAPSHOT = "local_pack_snapshot"
    ORGANIC_SERP_SNAPSHOT = "organic_serp_snapshot"
    RANK_DELTA_REPORT = "rank_delta_report"
    SCAN_METADATA = "scan_metadata"
    COMPETITOR_ANALYSIS = "competitor_analysis"

    # Execution authority
    MISSION_BOOTSTRAP = "mission_bootstrap"
    EXECUTION_VIOLATION = "execution_violation"


class ArtifactCategory(str, Enum):
    CORE = "core"
    SAFETY = "safety"
    RANKINGS = "rankings"
    EXECUTION = "execution"


@dataclass(frozen=True)
class ArtifactTypeSpec:
    """Registry entry for one artifact type."""

    name: str
    category: ArtifactCategory
    mode: ArtifactMode
    payload_model: type[BaseModel]


class ArtifactTypeRegistry:
    """
    Read-only lookup of artifact type specs.

    Example:
        >>> registry = build_default_registry()
        >>> registry.mode_for("build_log")
        <ArtifactMode.APPEND_ONLY: 'append-only'>
    """

    def __init__(self, specs: Iterable[ArtifactTypeSpec]) -> None:
        table = {}
        for spec in specs:
            if spec.name in table:
                raise ValueError(f"duplicate artifact type: {spec.name}")
            table[spec.name] = spec
        self._specs: Mapping[str, ArtifactTypeSpec] = MappingProxyType(table)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def get(self, name: str) -> Optional[ArtifactTypeSpec]:
        return self._specs.get(name)

    def is_registered(self, name: str) -> bool:
        return name in self._specs

    def mode_for(self, name: str) -> ArtifactMode:
        """Mutability mode of a registered type."""
        spec = self._specs.get(name)
        if spec is None:
            raise KeyError(f"unregistered artifact type: {name}")
        return spec.mode

    def payload_model_for(self, name: str) -> type[BaseModel]:
        spec = self._specs.get(name)
        if spec is None:
            raise KeyError(f"unregistered artifact type: {name}")
        return spec.payload_model

    def names_in(self, category: ArtifactCategory) -> list[str]:
        return [name for name, spec in self._specs.items() if spec.category == category]

    def is_safety_type(self, name: str) -> bool:
        spec = self._specs.get(name)
        return spec is not None and spec.category == ArtifactCategory.SAFETY

    def is_execution_type(self, name: str) -> bool:
        spec = self._specs.get(name)
        return spec is not None and spec.category == ArtifactCategory.EXECUTION

    def parse_payload(
        self, name: str, payload: Optional[Mapping[str, Any]]
    ) -> tuple[Optional[dict[str, Any]], list[str]]:
        """
        Check a payload against the type's variant.

        Returns:
            (normalized payload or None, ordered error messages)
        """
        spec = self._specs.get(name)
        if spec is None:
            return None, [f"type: '{name}' is not a registered artifact type"]
        if payload is None:
            payload = {}
        try:
            parsed = spec.payload_model.model_validate(dict(payload))
        except PydanticValidationError as e:
            return None, [
                "payload." + ".".join(str(part) for part in err["loc"]) + f": {err['msg']}"
                if err["loc"]
                else f"payload: {err['msg']}"
                for err in e.errors()
            ]
        return parsed.model_dump(mode="json", by_alias=True, exclude_none=True), []


_APPEND_ONLY = {ArtifactType.BUILD_LOG, ArtifactType.RUNTIME_LOG}

_VARIANTS: dict[ArtifactType, type[BaseModel]] = {
    ArtifactType.BUILD_LOG: LogPayload,
    ArtifactType.RUNTIME_LOG: LogPayload,
    ArtifactType.FAILURE_REPORT: FailureReportPayload,
    ArtifactType.APPROVAL_RECORD: ApprovalRecordPayload,
    ArtifactType.EXIT_STATUS: ExitStatusPayload,
    ArtifactType.SIGNAL_REPORT: SignalReportPayload,
    ArtifactType.CIRCUIT_BREAKER_TRIP: CircuitBreakerTripPayload,
    ArtifactType.COST_ESTIMATE: CostEstimatePayload,
    ArtifactType.RATE_LIMIT_EVENT: RateLimitEventPayload,
    ArtifactType.MISSION_BOOTSTRAP: MissionBootstrapPayload,
    ArtifactType.EXECUTION_VIOLATION: ExecutionViolationPayload,
}

_CATEGORIES: dict[ArtifactCategory, tuple[ArtifactType, ...]] = {
    ArtifactCategory.CORE: (
        ArtifactType.GIT_DIFF,
        ArtifactType.GIT_COMMIT,
        ArtifactType.BUILD_LOG,
        ArtifactType.RUNTIME_LOG,
        ArtifactType.LIGHTHOUSE_REPORT,
        ArtifactType.CONSOLE_ERRORS,
        ArtifactType.SCREENSHOT_DESKTOP,
        ArtifactType.SCREENSHOT_MOBILE,
    ),
    ArtifactCategory.SAFETY: (
        ArtifactType.PLAN,
        ArtifactType.VERIFICATION_REPORT,
        ArtifactType.FAILURE_REPORT,
        ArtifactType.SELF_HEAL_PROPOSAL,
        ArtifactType.APPROVAL_RECORD,
        ArtifactType.AGENT_RECIPE,
        ArtifactType.EXIT_STATUS,
        ArtifactType.SIGNAL_REPORT,
        ArtifactType.CIRCUIT_BREAKER_TRIP,
        ArtifactType.POLICY_MATCH_REPORT,
        ArtifactType.PRE_FLIGHT_SNAPSHOT,
        ArtifactType.CHANGE_PLAN,
        ArtifactType.COST_ESTIMATE,
        ArtifactType.RATE_LIMIT_EVENT,
    ),
    ArtifactCategory.RANKINGS: (
        ArtifactType.VISIBILITY_MAP,
        ArtifactType.LOCAL_PACK_SNAPSHOT,
        ArtifactType.ORGANIC_SERP_SNAPSHOT,
        ArtifactType.RANK_DELTA_REPORT,
        ArtifactType.SCAN_METADATA,
        ArtifactType.COMPETITOR_ANALYSIS,
    ),
    ArtifactCategory.EXECUTION: (
        ArtifactType.MISSION_BOOTSTRAP,
        ArtifactType.EXECUTION_VIOLATION,
    ),
}


def build_default_registry() -> ArtifactTypeRegistry:
    """Build the registry of every known artifact type."""
    specs = []
    for category, members in _CATEGORIES.items():
        for member in members:
            specs.append(
                ArtifactTypeSpec(
                    name=member.value,
                    category=category,
                    mode=(
                        ArtifactMode.APPEND_ONLY
                        if member in _APPEND_ONLY
                        else ArtifactMode.IMMUTABLE
                    ),
                    payload_model=_VARIANTS.get(member, ReportPayload),
                )
            )
    registry = ArtifactTypeRegistry(specs)
    missing = {member.value for member in ArtifactType} - set(registry)
    if missing:
        raise ValueError(f"artifact types without a category: {sorted(missing)}")
    return registry


DEFAULT_REGISTRY = build_default_registry()
