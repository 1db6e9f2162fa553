"""
Mission State Engine
====================

The single mutation gateway for missions, tasks, artifacts and circuit
breaker state. Every mutation is validated, gated, snapshotted when it is
irreversible, persisted atomically and only then made visible to readers.

Concurrency:
- Mutations of one mission are serialized by a per-mission asyncio.Lock.
- Mutations of distinct missions run concurrently.
- Readers see committed entities only: the in-memory cache is swapped after
  the backend commit returns, and reads return deep copies.
- Watchdog intake is serialized by one lock so idempotency checks are atomic.
"""

from __future__ import annotations

import asyncio
import hashlib
import weakref
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..error_instrumentation import BreakerMetrics, ErrorContext, log_with_context
from ..exceptions import (
    ArmedModeRequiredError,
    CircuitBreakerError,
    CostLimitExceededError,
    DependencyNotMetError,
    DestructiveBlockedError,
    MissingArtifactError,
    NotConfiguredError,
    NotFoundError,
    ToolNotAllowedError,
    ValidationError,
)
from ..models.entities import (
    TERMINAL_MISSION_STATUSES,
    Artifact,
    AuditRecord,
    CircuitBreakerState,
    Mission,
    MissionClass,
    MissionStatus,
    Producer,
    Provenance,
    RiskLevel,
    SnapshotRecord,
    Task,
    TaskStatus,
    TriggerSource,
    new_id,
    utcnow,
)
from ..models.payloads import ApprovalDecision, ApprovalRecordPayload, SignalReportPayload
from ..settings import EngineSettings
from ..storage.base import StateBackend, StateBatch
from .artifact_types import DEFAULT_REGISTRY, ArtifactType, ArtifactTypeRegistry
from .circuit_breaker import BudgetDecision, MissionCircuitBreaker, TripDecision, TripReason
from .policy import is_tool_allowed, requires_armed_mode
from .rate_limits import RateLimiter
from .task_graph import TaskGraph, check_acyclic
from .validators import (
    ArtifactCandidate,
    MissionCandidate,
    TaskCandidate,
    validate_artifact,
    validate_artifact_append,
    validate_mission,
    validate_patch,
    validate_task,
)

M = TypeVar("M", bound=BaseModel)

MISSION_PATCH_FIELDS = frozenset(
    {
        "name",
        "description",
        "status",
        "blocked_reason",
        "required_artifacts",
        "risk_level",
        "allowed_tools",
        "max_estimated_cost",
        "max_cost_per_hour",
    }
)

TASK_PATCH_FIELDS = frozenset(
    {
        "title",
        "description",
        "status",
        "blocked_reason",
        "required_artifacts",
        "assigned_agent",
    }
)

# Approvals addressed to these target types may unlock a tripped mission
_UNLOCK_TARGET_TYPES = frozenset({"mission", "circuit_breaker", "circuit_breaker_trip"})


def derive_idempotency_key(
    source: str,
    metric: str,
    observed_at: datetime,
    window_seconds: int,
) -> str:
    """
    Deterministic key for a watchdog signal.

    Signals from the same source and metric inside the same fixed time
    window share a key.
    """
    window_start = int(observed_at.timestamp() // window_seconds) * window_seconds
    digest = hashlib.sha256(f"{source}|{metric}|{window_start}".encode("utf-8")).hexdigest()
    return f"sig-{digest[:32]}"


@dataclass(frozen=True)
class IntakeResult:
    """
    Outcome of a watchdog-triggered mission creation.

    When `created` is False the signal was a duplicate: `mission` is the
    existing mission and nothing new was written.
    """

    created: bool
    mission: Mission
    idempotency_key: str
    artifact: Optional[Artifact] = None

    @property
    def mission_id(self) -> str:
        return self.mission.id


@dataclass(frozen=True)
class ExecutionGrant:
    """An execution request that passed every gate."""

    mission_id: str
    tool: str
    immediate: bool
    projected_cost: Optional[float]
    budget: Optional[BudgetDecision]
    breaker: CircuitBreakerState
    tripped: bool = False


@dataclass(frozen=True)
class CompletionStatus:
    """Whether a mission may move to `complete` right now."""

    mission_id: str
    eligible: bool
    missing_artifacts: list[str]
    approval_required: bool
    approved: bool


class StateStore:
    """
    Authoritative store and gatekeeper for mission state.

    Args:
        backend: Durable state backend (initialized by `initialize()`)
        registry: Artifact type registry
        settings: Breaker limits, signal window and armed-mode threshold
        rate_limiter: Provider limiter consulted by `request_execution`
        metrics: Counters for trips, rejections and budget blocks
        clock: Returns the current tz-aware time

    Example:
        >>> store = StateStore(SQLiteStateBackend(db_path, snapshot_dir))
        >>> await store.initialize()
        >>> mission = await store.create_mission(
        ...     {"name": "Fix CLS", "missionClass": "maintenance"}
        ... )
    """

    def __init__(
        self,
        backend: StateBackend,
        registry: ArtifactTypeRegistry = DEFAULT_REGISTRY,
        settings: Optional[EngineSettings] = None,
        rate_limiter: Optional[RateLimiter] = None,
        metrics: Optional[BreakerMetrics] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.settings = settings or EngineSettings()
        self.breaker = MissionCircuitBreaker(self.settings)
        self.rate_limiter = rate_limiter
        self.metrics = metrics or BreakerMetrics()
        self._clock = clock

        self._missions: dict[str, Mission] = {}
        self._tasks: dict[str, Task] = {}
        self._artifacts: dict[str, Artifact] = {}
        self._breakers: dict[str, CircuitBreakerState] = {}
        self._idempotency: dict[str, str] = {}

        # A lock lives only while a caller holds or awaits it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._intake_lock = asyncio.Lock()
        self._armed = False
        self._risk_threshold = RiskLevel(self.settings.risk_threshold)
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Initialize the backend and load committed state."""
        await self.backend.initialize()
        state = await self.backend.load_all()
        self._missions = {m.id: m for m in state.missions}
        self._tasks = {t.id: t for t in state.tasks}
        self._artifacts = {a.id: a for a in state.artifacts}
        self._breakers = {b.mission_id: b for b in state.breakers}
        self._idempotency = dict(state.idempotency_keys)
        self._initialized = True

        for breaker in self._breakers.values():
            mission = self._missions.get(breaker.mission_id)
            if breaker.tripped and mission is not None and mission.status != MissionStatus.LOCKED:
                log_with_context(
                    "error",
                    "tripped_breaker_on_unlocked_mission",
                    mission_id=breaker.mission_id,
                    status=mission.status.value,
                )

        log_with_context(
            "info",
            "state_store_initialized",
            missions=len(self._missions),
            tasks=len(self._tasks),
            artifacts=len(self._artifacts),
        )

    async def close(self) -> None:
        await self.backend.close()
        self._initialized = False

    async def health_check(self) -> bool:
        return self._initialized and await self.backend.health_check()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lock_for(self, mission_id: str) -> asyncio.Lock:
        lock = self._locks.get(mission_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[mission_id] = lock
        return lock

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("StateStore not initialized. Call initialize() first.")

    def _tick(self, after: Optional[datetime] = None) -> datetime:
        """Current time, strictly later than `after` when given."""
        now = self._clock()
        if after is not None and now <= after:
            now = after + timedelta(microseconds=1)
        return now

    def _require_mission(self, mission_id: str) -> Mission:
        mission = self._missions.get(mission_id)
        if mission is None:
            raise NotFoundError("Mission", mission_id)
        return mission

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def _require_artifact(self, artifact_id: str) -> Artifact:
        artifact = self._artifacts.get(artifact_id)
        if artifact is None:
            raise NotFoundError("Artifact", artifact_id)
        return artifact

    def _mission_tasks(self, mission: Mission) -> list[Task]:
        return [self._tasks[task_id] for task_id in mission.task_ids if task_id in self._tasks]

    def _mission_artifacts(self, mission_id: str, type_name: Optional[str] = None) -> list[Artifact]:
        mission = self._missions.get(mission_id)
        if mission is None:
            return []
        artifacts = [self._artifacts[a] for a in mission.artifact_ids if a in self._artifacts]
        if type_name is not None:
            artifacts = [a for a in artifacts if a.type == type_name]
        return artifacts

    def _missing_artifacts(self, mission_id: str, required: Iterable[str]) -> list[str]:
        present = {a.type for a in self._mission_artifacts(mission_id)}
        return [name for name in required if name not in present]

    def _approvals(self, mission_id: str) -> list[ApprovalRecordPayload]:
        """Approved human decisions recorded on a mission."""
        approvals = []
        for artifact in self._mission_artifacts(mission_id, ArtifactType.APPROVAL_RECORD.value):
            if artifact.provenance.producer != Producer.HUMAN:
                continue
            record = ApprovalRecordPayload.model_validate(artifact.payload or {})
            if record.decision == ApprovalDecision.APPROVE:
                approvals.append(record)
        return approvals

    def _has_approval(self, mission_id: str, target_ids: Iterable[str]) -> bool:
        targets = set(target_ids)
        return any(record.target_id in targets for record in self._approvals(mission_id))

    def _trip_references(self, mission_id: str) -> set[str]:
        """Ids an approval may target to address a mission's trip."""
        trip_ids = {
            a.id
            for a in self._mission_artifacts(mission_id, ArtifactType.CIRCUIT_BREAKER_TRIP.value)
        }
        return {mission_id} | trip_ids

    def _is_locked(self, mission: Mission) -> bool:
        breaker = self._breakers.get(mission.id)
        return mission.status == MissionStatus.LOCKED or (breaker is not None and breaker.tripped)

    def _ensure_unlocked(self, mission: Mission, operation: str) -> None:
        if not self._is_locked(mission):
            return
        breaker = self._breakers.get(mission.id)
        reason = breaker.tripped_reason if breaker and breaker.tripped else mission.blocked_reason
        self.metrics.record_rejection()
        log_with_context(
            "warning",
            "mutation_rejected_locked",
            mission_id=mission.id,
            operation=operation,
            reason=reason,
        )
        raise CircuitBreakerError(mission.id, reason)

    def _normalize_patch(
        self,
        patch: Any,
        allowed: frozenset[str],
        model: type[BaseModel],
        entity: str,
    ) -> dict[str, Any]:
        """Map camelCase keys to field names, rejecting protected fields."""
        aliases = {to_camel(name): name for name in model.model_fields}
        result = validate_patch(patch, allowed, aliases)
        if not result.valid:
            raise ValidationError(result.errors, entity=entity)
        return {aliases.get(key, key): value for key, value in patch.items()}

    def _rebuild(self, model: type[M], current: M, changes: Mapping[str, Any], entity: str) -> M:
        try:
            return model.model_validate({**current.model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError(
                [
                    f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                    for err in e.errors()
                ],
                entity=entity,
            ) from e

    def _needs_snapshot(self, mission: Mission, new_status: MissionStatus) -> bool:
        """Destructive missions, and running -> locked/failed, are irreversible."""
        if mission.mission_class == MissionClass.DESTRUCTIVE:
            return True
        return (
            mission.status == MissionStatus.RUNNING
            and new_status != mission.status
            and new_status in (MissionStatus.LOCKED, MissionStatus.FAILED)
        )

    def _system_artifact(
        self,
        mission_id: str,
        type_name: ArtifactType,
        label: str,
        payload: Mapping[str, Any],
        at: datetime,
        task_id: Optional[str] = None,
    ) -> Artifact:
        normalized, errors = self.registry.parse_payload(type_name.value, payload)
        if errors:
            raise ValidationError(errors, entity=type_name.value)
        return Artifact(
            id=new_id("artifact"),
            mission_id=mission_id,
            task_id=task_id,
            type=type_name.value,
            artifact_mode=self.registry.mode_for(type_name.value),
            label=label[:200],
            payload=normalized,
            provenance=Provenance(producer=Producer.SYSTEM),
            created_at=at,
        )

    def _trip(
        self,
        mission: Mission,
        breaker: CircuitBreakerState,
        reason: TripReason,
        at: datetime,
    ) -> tuple[CircuitBreakerState, Artifact, dict[str, Any]]:
        """
        Trip a breaker.

        Returns:
            (tripped state, circuit_breaker_trip artifact, mission updates)
        """
        tripped = self.breaker.trip(breaker, reason, at)
        artifact = self._system_artifact(
            mission.id,
            ArtifactType.CIRCUIT_BREAKER_TRIP,
            f"Circuit breaker tripped: {reason.value}",
            {
                "reason": reason.value,
                "failure_count": tripped.failure_count,
                "immediate_exec_count": tripped.immediate_exec_count,
                "max_failures": self.breaker.max_failures,
                "max_immediate_execs": self.breaker.max_immediate_execs,
                "tripped_at": at,
            },
            at,
        )
        updates = {
            "status": MissionStatus.LOCKED,
            "blocked_reason": reason.value,
            "artifact_ids": [*mission.artifact_ids, artifact.id],
        }
        return tripped, artifact, updates

    def _dump_state(self) -> dict[str, Any]:
        return {
            "missions": [m.to_document() for m in self._missions.values()],
            "tasks": [t.to_document() for t in self._tasks.values()],
            "artifacts": [a.to_document() for a in self._artifacts.values()],
            "circuitBreakers": [b.to_document() for b in self._breakers.values()],
            "idempotencyKeys": dict(self._idempotency),
        }

    async def _take_snapshot(self, reason: str) -> SnapshotRecord:
        record = await self.backend.write_snapshot(reason, self._dump_state(), self._tick())
        log_with_context(
            "info",
            "snapshot_created",
            snapshot_id=record.snapshot_id,
            reason=reason,
        )
        return record

    def _audit(
        self,
        actor: str,
        action: str,
        entity: BaseModel,
        entity_id: str,
        **details: Any,
    ) -> AuditRecord:
        return AuditRecord(
            at=self._clock(),
            actor=actor,
            action=action,
            entity_type=type(entity).__name__.lower(),
            entity_id=entity_id,
            state_version=getattr(entity, "state_version", None),
            details=details,
        )

    async def _commit(self, operation: str, batch: StateBatch) -> None:
        """Persist a batch, then publish it to readers."""
        try:
            await self.backend.commit(batch)
        except Exception as e:
            ErrorContext(
                operation,
                e,
                {
                    "missions": [m.id for m in batch.missions],
                    "tasks": [t.id for t in batch.tasks],
                    "artifacts": [a.id for a in batch.artifacts],
                },
            ).log()
            raise
        for mission in batch.missions:
            self._missions[mission.id] = mission
        for task in batch.tasks:
            self._tasks[task.id] = task
        for artifact in batch.artifacts:
            self._artifacts[artifact.id] = artifact
        for breaker in batch.breakers:
            self._breakers[breaker.mission_id] = breaker
        self._idempotency.update(batch.idempotency_keys)

    def _record_trip_committed(self, mission_id: str, reason: TripReason, artifact: Artifact) -> None:
        self.metrics.record_trip(mission_id, reason.value)
        log_with_context(
            "critical",
            "circuit_breaker_tripped",
            mission_id=mission_id,
            reason=reason.value,
            artifact_id=artifact.id,
        )

    # ------------------------------------------------------------------
    # Missions
    # ------------------------------------------------------------------

    def _build_mission(self, data: Mapping[str, Any], **overrides: Any) -> Mission:
        result = validate_mission(data, self.registry)
        if not result.valid:
            raise ValidationError(result.errors, entity="mission")
        candidate = MissionCandidate.model_validate(dict(data))
        now = self._tick()
        return Mission(
            id=new_id("mission"),
            **{**candidate.model_dump(), **overrides},
            state_version=1,
            created_at=now,
            updated_at=now,
        )

    async def create_mission(
        self,
        data: Mapping[str, Any],
        actor: str = "system",
        bootstrap: bool = False,
    ) -> Mission:
        """
        Create a mission. No gates apply at creation.

        With `bootstrap`, a mission_bootstrap artifact recording the
        execution policy is committed together with the mission.

        Raises:
            ValidationError: Missing or malformed fields
        """
        self._ensure_initialized()
        mission = self._build_mission(data)
        artifacts = []
        audit = []
        if bootstrap:
            artifact = self._system_artifact(
                mission.id,
                ArtifactType.MISSION_BOOTSTRAP,
                f"Bootstrap: {mission.name}"[:200],
                {"mission_class": mission.mission_class.value, "created_by": actor},
                mission.created_at,
            )
            mission = mission.model_copy(update={"artifact_ids": [artifact.id]})
            artifacts.append(artifact)
            audit.append(self._audit(actor, "create", artifact, artifact.id, type=artifact.type))
        await self._commit(
            "create_mission",
            StateBatch(
                missions=[mission],
                artifacts=artifacts,
                audit=[self._audit(actor, "create", mission, mission.id), *audit],
            ),
        )
        log_with_context(
            "info",
            "mission_created",
            mission_id=mission.id,
            mission_class=mission.mission_class.value,
            actor=actor,
        )
        return mission.model_copy(deep=True)

    async def create_mission_from_signal(
        self,
        data: Mapping[str, Any],
        signal: Mapping[str, Any],
        window_seconds: Optional[int] = None,
        actor: str = "watchdog",
    ) -> IntakeResult:
        """
        Create a mission for a watchdog signal, suppressing duplicates.

        The idempotency key is taken from `data` when the watchdog supplies
        one, otherwise derived from the signal's source, metric and time
        window. A second signal whose key is held by a non-terminal mission
        creates nothing and returns the existing mission.

        Raises:
            ValidationError: Malformed mission data or signal payload
        """
        self._ensure_initialized()
        normalized, errors = self.registry.parse_payload(ArtifactType.SIGNAL_REPORT.value, signal)
        if errors:
            raise ValidationError(errors, entity="signal_report")
        report = SignalReportPayload.model_validate(normalized)
        observed_at = report.observed_at or self._clock()
        key = data.get("idempotency_key") or data.get("idempotencyKey")
        if not key:
            key = derive_idempotency_key(
                report.source,
                report.metric,
                observed_at,
                window_seconds or self.settings.signal_window_seconds,
            )

        async with self._intake_lock:
            existing_id = self._idempotency.get(key)
            existing = self._missions.get(existing_id) if existing_id else None
            if existing is not None and existing.status not in TERMINAL_MISSION_STATUSES:
                log_with_context(
                    "info",
                    "duplicate_signal_suppressed",
                    mission_id=existing.id,
                    idempotency_key=key,
                    source=report.source,
                    metric=report.metric,
                )
                return IntakeResult(
                    created=False,
                    mission=existing.model_copy(deep=True),
                    idempotency_key=key,
                )

            mission = self._build_mission(
                data,
                trigger_source=TriggerSource.WATCHDOG,
                idempotency_key=key,
            )
            artifact = Artifact(
                id=new_id("artifact"),
                mission_id=mission.id,
                type=ArtifactType.SIGNAL_REPORT.value,
                artifact_mode=self.registry.mode_for(ArtifactType.SIGNAL_REPORT.value),
                label=f"Signal: {report.source}.{report.metric}"[:200],
                payload=normalized,
                provenance=Provenance(producer=Producer.WATCHDOG),
                created_at=mission.created_at,
            )
            mission = mission.model_copy(update={"artifact_ids": [artifact.id]})
            await self._commit(
                "create_mission_from_signal",
                StateBatch(
                    missions=[mission],
                    artifacts=[artifact],
                    idempotency_keys={key: mission.id},
                    audit=[
                        self._audit(actor, "create", mission, mission.id, idempotency_key=key),
                        self._audit(actor, "create", artifact, artifact.id, type=artifact.type),
                    ],
                ),
            )

        log_with_context(
            "info",
            "mission_created",
            mission_id=mission.id,
            mission_class=mission.mission_class.value,
            trigger_source=TriggerSource.WATCHDOG.value,
            idempotency_key=key,
            actor=actor,
        )
        return IntakeResult(
            created=True,
            mission=mission.model_copy(deep=True),
            idempotency_key=key,
            artifact=artifact.model_copy(deep=True),
        )

    async def update_mission(
        self,
        mission_id: str,
        patch: Mapping[str, Any],
        actor: str = "system",
    ) -> Mission:
        """
        Apply a patch to a mission.

        Raises:
            NotFoundError: Unknown mission
            ValidationError: Malformed or protected fields, or a frozen mission
            CircuitBreakerError: Mission is locked
            MissingArtifactError: Completion without the required artifacts
            DestructiveBlockedError: Destructive completion without approval
            StorageError: Snapshot or commit failed (nothing changed)
        """
        self._ensure_initialized()
        async with self._lock_for(mission_id):
            current = self._require_mission(mission_id)
            changes = self._normalize_patch(patch, MISSION_PATCH_FIELDS, Mission, "mission")
            self._ensure_unlocked(current, "update_mission")
            if current.status == MissionStatus.COMPLETE:
                raise ValidationError(
                    ["status: mission is complete and accepts no further changes"],
                    entity="mission",
                )

            candidate = self._rebuild(Mission, current, changes, "mission")
            new_status = candidate.status
            blocked_reason = candidate.blocked_reason
            if new_status == MissionStatus.BLOCKED and not blocked_reason:
                raise ValidationError(["blockedReason: required when status is 'blocked'"], "mission")
            if new_status not in (MissionStatus.BLOCKED, MissionStatus.LOCKED) and (
                "blocked_reason" not in changes
            ):
                blocked_reason = None

            if new_status == MissionStatus.COMPLETE:
                if "required_artifacts" in changes:
                    raise ValidationError(
                        ["requiredArtifacts: cannot change in the same update that completes the mission"],
                        entity="mission",
                    )
                missing = self._missing_artifacts(mission_id, current.required_artifacts)
                if missing:
                    log_with_context(
                        "info",
                        "completion_blocked",
                        mission_id=mission_id,
                        missing_artifacts=missing,
                    )
                    raise MissingArtifactError(mission_id, missing)
                if current.mission_class == MissionClass.DESTRUCTIVE and not self._has_approval(
                    mission_id, {mission_id}
                ):
                    raise DestructiveBlockedError(mission_id, "complete")

            breaker = self._breakers.get(mission_id)
            breaker_changed = False
            decision = TripDecision(False)
            if new_status == MissionStatus.FAILED and current.status != MissionStatus.FAILED:
                breaker, decision = self.breaker.record_failure(
                    breaker or self.breaker.new_state(mission_id)
                )
                breaker_changed = True
                self.metrics.failures_recorded += 1
            if decision.should_trip:
                new_status = MissionStatus.LOCKED

            snapshot = None
            if decision.should_trip or self._needs_snapshot(current, new_status):
                snapshot = await self._take_snapshot(
                    f"{mission_id}_{current.status.value}-to-{new_status.value}"
                )
            at = self._tick(snapshot.created_at if snapshot else None)

            updates: dict[str, Any] = {
                "status": new_status,
                "blocked_reason": blocked_reason,
                "state_version": current.state_version + 1,
                "updated_at": at,
            }
            if new_status == MissionStatus.COMPLETE:
                updates["completed_at"] = at
            if snapshot is not None:
                updates["last_snapshot_at"] = snapshot.created_at

            artifacts = []
            trip_artifact = None
            if decision.should_trip and decision.reason is not None and breaker is not None:
                breaker, trip_artifact, trip_updates = self._trip(candidate, breaker, decision.reason, at)
                updates.update(trip_updates)
                artifacts.append(trip_artifact)

            mission = candidate.model_copy(update=updates)
            await self._commit(
                "update_mission",
                StateBatch(
                    missions=[mission],
                    artifacts=artifacts,
                    breakers=[breaker] if breaker_changed and breaker is not None else [],
                    audit=[
                        self._audit(
                            actor,
                            "update",
                            mission,
                            mission.id,
                            fields=sorted(changes),
                            status=new_status.value,
                            snapshot_id=snapshot.snapshot_id if snapshot else None,
                        )
                    ],
                ),
            )

        if trip_artifact is not None and decision.reason is not None:
            self._record_trip_committed(mission_id, decision.reason, trip_artifact)
        log_with_context(
            "info",
            "mission_updated",
            mission_id=mission_id,
            status=mission.status.value,
            state_version=mission.state_version,
            actor=actor,
        )
        return mission.model_copy(deep=True)

    async def record_failure(
        self,
        mission_id: str,
        reason: str,
        task_id: Optional[str] = None,
        actor: str = "system",
    ) -> CircuitBreakerState:
        """
        Record an execution failure reported by the agent runtime.

        Emits a failure_report artifact and trips the breaker when the
        failure limit is reached.

        Raises:
            NotFoundError: Unknown mission or task
            CircuitBreakerError: Mission is already locked
        """
        self._ensure_initialized()
        async with self._lock_for(mission_id):
            current = self._require_mission(mission_id)
            if task_id is not None and self._require_task(task_id).mission_id != mission_id:
                raise ValidationError([f"taskId: task {task_id} belongs to another mission"], "failure")
            self._ensure_unlocked(current, "record_failure")

            breaker, decision = self.breaker.record_failure(
                self._breakers.get(mission_id) or self.breaker.new_state(mission_id)
            )
            self.metrics.failures_recorded += 1

            snapshot = None
            if decision.should_trip:
                snapshot = await self._take_snapshot(f"{mission_id}_trip")
            at = self._tick(snapshot.created_at if snapshot else None)

            report = self._system_artifact(
                mission_id,
                ArtifactType.FAILURE_REPORT,
                f"Failure: {reason}",
                {"error": reason, "task_id": task_id},
                at,
                task_id=task_id,
            )
            updates: dict[str, Any] = {
                "artifact_ids": [*current.artifact_ids, report.id],
                "state_version": current.state_version + 1,
                "updated_at": at,
            }
            artifacts = [report]
            trip_artifact = None
            if decision.should_trip and decision.reason is not None:
                breaker, trip_artifact, trip_updates = self._trip(
                    current.model_copy(update={"artifact_ids": updates["artifact_ids"]}),
                    breaker,
                    decision.reason,
                    at,
                )
                updates.update(trip_updates)
                updates["last_snapshot_at"] = snapshot.created_at if snapshot else None
                artifacts.append(trip_artifact)

            mission = current.model_copy(update=updates)
            tasks = []
            if task_id is not None:
                task = self._tasks[task_id]
                tasks.append(task.model_copy(update={"artifact_ids": [*task.artifact_ids, report.id]}))
            await self._commit(
                "record_failure",
                StateBatch(
                    missions=[mission],
                    tasks=tasks,
                    artifacts=artifacts,
                    breakers=[breaker],
                    audit=[self._audit(actor, "record_failure", mission, mission_id, reason=reason)],
                ),
            )

        if trip_artifact is not None and decision.reason is not None:
            self._record_trip_committed(mission_id, decision.reason, trip_artifact)
        return breaker.model_copy(deep=True)

    async def record_execution_violation(
        self,
        mission_id: str,
        attempted_action: str,
        task_id: Optional[str] = None,
        attempted_by: str = "unknown",
        tool_attempted: Optional[str] = None,
        block_task: bool = True,
        actor: str = "system",
    ) -> Artifact:
        """
        Record an attempt to act outside the agent runtime's authority.

        Writes an execution_violation artifact and, unless `block_task` is
        False, blocks the offending task in the same commit. Complete and
        failed tasks keep their status.

        Raises:
            NotFoundError: Unknown mission or task
            ValidationError: Task belongs to another mission
            CircuitBreakerError: Mission is locked
        """
        self._ensure_initialized()
        async with self._lock_for(mission_id):
            current = self._require_mission(mission_id)
            task = self._require_task(task_id) if task_id is not None else None
            if task is not None and task.mission_id != mission_id:
                raise ValidationError([f"taskId: task {task_id} belongs to another mission"], "violation")
            self._ensure_unlocked(current, "record_execution_violation")

            blocks = (
                task is not None
                and block_task
                and task.status not in (TaskStatus.COMPLETE, TaskStatus.FAILED)
            )
            at = self._tick()
            artifact = self._system_artifact(
                mission_id,
                ArtifactType.EXECUTION_VIOLATION,
                f"Violation: {attempted_action}"[:200],
                {
                    "attempted_action": attempted_action,
                    "attempted_by": attempted_by,
                    "blocked": blocks,
                    "task_id": task_id,
                    "tool_attempted": tool_attempted,
                },
                at,
                task_id=task_id,
            )
            mission = current.model_copy(
                update={
                    "artifact_ids": [*current.artifact_ids, artifact.id],
                    "state_version": current.state_version + 1,
                    "updated_at": at,
                }
            )
            tasks = []
            if task is not None:
                task_updates: dict[str, Any] = {
                    "artifact_ids": [*task.artifact_ids, artifact.id],
                    "state_version": task.state_version + 1,
                    "updated_at": at,
                }
                if blocks:
                    task_updates["status"] = TaskStatus.BLOCKED
                    task_updates["blocked_reason"] = f"EXECUTION_VIOLATION: {attempted_action}"
                tasks.append(task.model_copy(update=task_updates))
            await self._commit(
                "record_execution_violation",
                StateBatch(
                    missions=[mission],
                    tasks=tasks,
                    artifacts=[artifact],
                    audit=[
                        self._audit(
                            actor,
                            "record_execution_violation",
                            artifact,
                            artifact.id,
                            attempted_action=attempted_action,
                            task_id=task_id,
                            blocked=blocks,
                        )
                    ],
                ),
            )

        log_with_context(
            "warning",
            "execution_violation_recorded",
            mission_id=mission_id,
            task_id=task_id,
            attempted_action=attempted_action,
            attempted_by=attempted_by,
            task_blocked=blocks,
        )
        return artifact.model_copy(deep=True)

    async def report_throttle(self, mission_id: str, provider: str, actor: str = "system") -> Artifact:
        """
        Register a provider-side throttle (HTTP 429) seen while executing.

        Starts the limiter's backoff for the provider and records a
        rate_limit_event artifact carrying the retry delay and quota usage.

        Raises:
            NotFoundError: Unknown mission
            NotConfiguredError: No rate limiter, or unknown provider
            CircuitBreakerError: Mission is locked
        """
        self._ensure_initialized()
        if self.rate_limiter is None:
            raise NotConfiguredError(provider, "no rate limiter configured")
        async with self._lock_for(mission_id):
            current = self._require_mission(mission_id)
            self._ensure_unlocked(current, "report_throttle")

            delay = self.rate_limiter.record_throttle(provider)
            usage = self.rate_limiter.usage(provider)
            at = self._tick()
            artifact = self._system_artifact(
                mission_id,
                ArtifactType.RATE_LIMIT_EVENT,
                f"Throttled: {provider}",
                {
                    "provider": provider,
                    "retry_after": delay,
                    "daily_used": usage["daily_used"],
                    "daily_quota": usage["daily_quota"],
                },
                at,
            )
            mission = current.model_copy(
                update={
                    "artifact_ids": [*current.artifact_ids, artifact.id],
                    "state_version": current.state_version + 1,
                    "updated_at": at,
                }
            )
            await self._commit(
                "report_throttle",
                StateBatch(
                    missions=[mission],
                    artifacts=[artifact],
                    audit=[self._audit(actor, "report_throttle", artifact, artifact.id, provider=provider)],
                ),
            )
        return artifact.model_copy(deep=True)

    async def unlock_mission(
        self,
        mission_id: str,
        approval_artifact_id: str,
        actor: str = "human",
    ) -> Mission:
        """
        Clear a tripped breaker with a human approval.

        The approval must be an `approval_record` on this mission, produced
        by a human, with decision `approve`, targeting the mission or its
        trip. The mission moves to `blocked` and waits for an explicit
        resume via `update_mission`.

        Raises:
            NotFoundError: Unknown mission or artifact
            ValidationError: Mission not locked, or the artifact is not a
                usable approval
            CircuitBreakerError: The approval denies the unlock
        """
        self._ensure_initialized()
        async with self._lock_for(mission_id):
            current = self._require_mission(mission_id)
            if not self._is_locked(current):
                raise ValidationError([f"status: mission {mission_id} is not locked"], "unlock")
            artifact = self._require_artifact(approval_artifact_id)

            problems = []
            if artifact.mission_id != mission_id:
                problems.append("approval: artifact belongs to another mission")
            if artifact.type != ArtifactType.APPROVAL_RECORD.value:
                problems.append(f"approval: expected approval_record, got {artifact.type}")
            if artifact.provenance.producer != Producer.HUMAN:
                problems.append("approval: provenance.producer must be 'human'")
            if problems:
                raise ValidationError(problems, entity="unlock")

            record = ApprovalRecordPayload.model_validate(artifact.payload or {})
            if record.target_id not in self._trip_references(mission_id):
                raise ValidationError(
                    [f"approval: targetId '{record.target_id}' does not reference the mission or its trip"],
                    entity="unlock",
                )
            if record.decision != ApprovalDecision.APPROVE:
                self.metrics.record_rejection()
                raise CircuitBreakerError(mission_id, f"unlock denied by {record.approver}")

            new_status = MissionStatus.BLOCKED
            snapshot = None
            if self._needs_snapshot(current, new_status):
                snapshot = await self._take_snapshot(f"{mission_id}_unlock")
            at = self._tick(snapshot.created_at if snapshot else None)

            breaker = self.breaker.clear(
                self._breakers.get(mission_id) or self.breaker.new_state(mission_id),
                approver=record.approver,
                at=at,
            )
            updates: dict[str, Any] = {
                "status": new_status,
                "blocked_reason": f"Unlocked by {record.approver}; awaiting resume",
                "state_version": current.state_version + 1,
                "updated_at": at,
            }
            if snapshot is not None:
                updates["last_snapshot_at"] = snapshot.created_at
            mission = current.model_copy(update=updates)
            await self._commit(
                "unlock_mission",
                StateBatch(
                    missions=[mission],
                    breakers=[breaker],
                    audit=[
                        self._audit(
                            actor,
                            "unlock",
                            mission,
                            mission_id,
                            approval_artifact_id=approval_artifact_id,
                            approver=record.approver,
                        )
                    ],
                ),
            )

        self.metrics.record_clear()
        log_with_context(
            "warning",
            "circuit_breaker_cleared",
            mission_id=mission_id,
            approver=record.approver,
            artifact_id=approval_artifact_id,
        )
        return mission.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(self, data: Mapping[str, Any], actor: str = "system") -> Task:
        """
        Create one task.

        Raises:
            ValidationError: Malformed task, unknown deps or a dependency cycle
            NotFoundError: Unknown mission
            CircuitBreakerError: Mission is locked
        """
        result = validate_task(data)
        if not result.valid:
            raise ValidationError(result.errors, entity="task")
        mission_id = data.get("mission_id") or data.get("missionId")
        tasks = await self.create_tasks(str(mission_id), [data], actor=actor)
        return tasks[0]

    async def create_tasks(
        self,
        mission_id: str,
        items: Sequence[Mapping[str, Any]],
        actor: str = "system",
    ) -> list[Task]:
        """
        Create several tasks of one mission atomically.

        Items may carry their own ids so they can depend on each other.
        Tasks whose dependencies are already complete start as `ready`.
        """
        self._ensure_initialized()
        if not items:
            raise ValidationError(["tasks: at least one task is required"], entity="task")
        async with self._lock_for(mission_id):
            mission = self._require_mission(mission_id)
            self._ensure_unlocked(mission, "create_tasks")
            if mission.status in TERMINAL_MISSION_STATUSES:
                raise ValidationError(
                    [f"status: mission is {mission.status.value} and accepts no new tasks"],
                    entity="task",
                )

            existing = self._mission_tasks(mission)
            prepared = []
            errors: list[str] = []
            seen: set[str] = set()
            for item in items:
                task_id = item.get("id") or new_id("task")
                if task_id in self._tasks or task_id in seen:
                    errors.append(f"id: task '{task_id}' already exists")
                seen.add(task_id)
                fields = {k: v for k, v in item.items() if k != "missionId"}
                prepared.append({**fields, "id": task_id, "mission_id": mission_id})

            known = {t.id for t in existing} | seen
            for index, item in enumerate(prepared):
                result = validate_task(item, known_task_ids=known)
                prefix = f"tasks[{index}]." if len(prepared) > 1 else ""
                errors.extend(prefix + message for message in result.errors)
            if errors:
                raise ValidationError(errors, entity="task")

            now = self._tick()
            new_tasks = [
                Task(
                    **TaskCandidate.model_validate(item).model_dump(),
                    created_at=now,
                    updated_at=now,
                )
                for item in prepared
            ]

            cycle = check_acyclic(existing, new_tasks)
            if cycle is not None:
                raise ValidationError(
                    [f"deps: dependency cycle {' -> '.join(cycle)}"],
                    entity="task",
                )

            graph = TaskGraph.from_tasks([*existing, *new_tasks])
            ready_ids = {t.id for t in graph.ready_candidates()}
            new_tasks = [
                t.model_copy(update={"status": TaskStatus.READY}) if t.id in ready_ids else t
                for t in new_tasks
            ]
            updated_mission = mission.model_copy(
                update={
                    "task_ids": [*mission.task_ids, *(t.id for t in new_tasks)],
                    "state_version": mission.state_version + 1,
                    "updated_at": now,
                }
            )
            await self._commit(
                "create_tasks",
                StateBatch(
                    missions=[updated_mission],
                    tasks=new_tasks,
                    audit=[self._audit(actor, "create", t, t.id) for t in new_tasks],
                ),
            )

        log_with_context(
            "info",
            "tasks_created",
            mission_id=mission_id,
            task_ids=[t.id for t in new_tasks],
            ready=[t.id for t in new_tasks if t.status == TaskStatus.READY],
        )
        return [t.model_copy(deep=True) for t in new_tasks]

    async def update_task(
        self,
        task_id: str,
        patch: Mapping[str, Any],
        actor: str = "system",
    ) -> Task:
        """
        Apply a patch to a task.

        - `ready` is set only by dependency resolution, never by callers
        - `running` and `complete` require every dependency complete
        - `complete` requires the task's required artifacts
        - `failed` counts toward the mission's circuit breaker
        - completing a task promotes satisfied siblings to `ready`

        Raises:
            NotFoundError: Unknown task
            ValidationError: Malformed patch or forbidden transition
            CircuitBreakerError: Mission is locked
            DependencyNotMetError: Dependencies not complete
            MissingArtifactError: Required artifacts missing
        """
        self._ensure_initialized()
        mission_id = self._require_task(task_id).mission_id
        async with self._lock_for(mission_id):
            current = self._require_task(task_id)
            mission = self._require_mission(mission_id)
            changes = self._normalize_patch(patch, TASK_PATCH_FIELDS, Task, "task")
            self._ensure_unlocked(mission, "update_task")
            if current.status == TaskStatus.COMPLETE:
                raise ValidationError(["status: task is complete and accepts no further changes"], "task")

            candidate = self._rebuild(Task, current, changes, "task")
            new_status = candidate.status
            if new_status == TaskStatus.READY and current.status != TaskStatus.READY:
                raise ValidationError(
                    ["status: tasks become 'ready' only when their dependencies complete"],
                    entity="task",
                )
            if new_status == TaskStatus.BLOCKED and not candidate.blocked_reason:
                raise ValidationError(["blockedReason: required when status is 'blocked'"], "task")

            siblings = self._mission_tasks(mission)
            graph = TaskGraph.from_tasks(siblings)
            if new_status in (TaskStatus.RUNNING, TaskStatus.COMPLETE) and new_status != current.status:
                unmet = graph.unmet_dependencies(task_id)
                if unmet:
                    log_with_context(
                        "info",
                        "task_dependencies_unmet",
                        mission_id=mission_id,
                        task_id=task_id,
                        unmet=unmet,
                    )
                    raise DependencyNotMetError(task_id, unmet)
            if new_status == TaskStatus.COMPLETE:
                present = {
                    self._artifacts[a].type for a in current.artifact_ids if a in self._artifacts
                }
                missing = [t for t in candidate.required_artifacts if t not in present]
                if missing:
                    raise MissingArtifactError(task_id, missing)

            breaker = None
            decision = TripDecision(False)
            if new_status == TaskStatus.FAILED and current.status != TaskStatus.FAILED:
                breaker, decision = self.breaker.record_failure(
                    self._breakers.get(mission_id) or self.breaker.new_state(mission_id)
                )
                self.metrics.failures_recorded += 1

            snapshot = None
            if decision.should_trip:
                snapshot = await self._take_snapshot(f"{mission_id}_trip")
            at = self._tick(snapshot.created_at if snapshot else None)

            task_updates: dict[str, Any] = {
                "state_version": current.state_version + 1,
                "updated_at": at,
            }
            if new_status != TaskStatus.BLOCKED and "blocked_reason" not in changes:
                task_updates["blocked_reason"] = None
            if new_status == TaskStatus.COMPLETE:
                task_updates["completed_at"] = at
            task = candidate.model_copy(update=task_updates)

            # Re-resolve readiness; a task reset to pending may also qualify
            graph.add_task(task)
            promoted = [
                t.model_copy(
                    update={
                        "status": TaskStatus.READY,
                        "state_version": t.state_version + (0 if t.id == task_id else 1),
                        "updated_at": at,
                    }
                )
                for t in graph.ready_candidates()
            ]
            promoted_ids = [t.id for t in promoted if t.id != task_id]
            tasks = [t for t in promoted if t.id == task_id] or [task]
            tasks.extend(t for t in promoted if t.id != task_id)

            missions = []
            artifacts = []
            trip_artifact = None
            if decision.should_trip and decision.reason is not None and breaker is not None:
                breaker, trip_artifact, trip_updates = self._trip(mission, breaker, decision.reason, at)
                trip_updates.update(
                    {
                        "state_version": mission.state_version + 1,
                        "updated_at": at,
                        "last_snapshot_at": snapshot.created_at if snapshot else None,
                    }
                )
                missions.append(mission.model_copy(update=trip_updates))
                artifacts.append(trip_artifact)

            await self._commit(
                "update_task",
                StateBatch(
                    missions=missions,
                    tasks=tasks,
                    artifacts=artifacts,
                    breakers=[breaker] if breaker is not None else [],
                    audit=[
                        self._audit(
                            actor,
                            "update",
                            tasks[0],
                            task_id,
                            fields=sorted(changes),
                            status=tasks[0].status.value,
                            promoted=promoted_ids,
                        )
                    ],
                ),
            )

        if trip_artifact is not None and decision.reason is not None:
            self._record_trip_committed(mission_id, decision.reason, trip_artifact)
        log_with_context(
            "info",
            "task_updated",
            mission_id=mission_id,
            task_id=task_id,
            status=tasks[0].status.value,
            promoted=promoted_ids,
            actor=actor,
        )
        return tasks[0].model_copy(deep=True)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    async def create_artifact(self, data: Mapping[str, Any], actor: str = "system") -> Artifact:
        """
        Record an artifact.

        The mode comes from the registry; a caller-supplied mode is ignored.
        Adding an artifact can make completion eligible but never completes
        the mission by itself. On a locked mission only a human approval_record
        that references the mission or its trip is accepted.

        Raises:
            ValidationError: Unknown type, malformed payload or provenance
            NotFoundError: Unknown mission or task
            CircuitBreakerError: Mission is locked
        """
        self._ensure_initialized()
        result = validate_artifact(data, self.registry)
        if not result.valid:
            raise ValidationError(result.errors, entity="artifact")
        candidate = ArtifactCandidate.model_validate(dict(data))
        payload, errors = self.registry.parse_payload(candidate.type, candidate.payload)
        if errors:
            raise ValidationError(errors, entity="artifact")

        mission_id = candidate.mission_id
        async with self._lock_for(mission_id):
            mission = self._require_mission(mission_id)
            task = None
            if candidate.task_id is not None:
                task = self._require_task(candidate.task_id)
                if task.mission_id != mission_id:
                    raise ValidationError(
                        [f"taskId: task {task.id} belongs to another mission"],
                        entity="artifact",
                    )

            if self._is_locked(mission):
                approval = None
                if candidate.type == ArtifactType.APPROVAL_RECORD.value:
                    approval = ApprovalRecordPayload.model_validate(payload)
                if (
                    approval is None
                    or candidate.provenance.producer != Producer.HUMAN
                    or approval.target_id not in self._trip_references(mission_id)
                ):
                    self._ensure_unlocked(mission, "create_artifact")

            at = self._tick()
            artifact = Artifact(
                id=new_id("artifact"),
                mission_id=mission_id,
                task_id=candidate.task_id,
                type=candidate.type,
                artifact_mode=self.registry.mode_for(candidate.type),
                label=candidate.label,
                payload=payload,
                files=candidate.files,
                provenance=Provenance.model_validate(candidate.provenance.model_dump()),
                created_at=at,
            )
            updated_mission = mission.model_copy(
                update={
                    "artifact_ids": [*mission.artifact_ids, artifact.id],
                    "state_version": mission.state_version + 1,
                    "updated_at": at,
                }
            )
            tasks = []
            if task is not None:
                tasks.append(
                    task.model_copy(
                        update={
                            "artifact_ids": [*task.artifact_ids, artifact.id],
                            "state_version": task.state_version + 1,
                            "updated_at": at,
                        }
                    )
                )
            await self._commit(
                "create_artifact",
                StateBatch(
                    missions=[updated_mission],
                    tasks=tasks,
                    artifacts=[artifact],
                    audit=[self._audit(actor, "create", artifact, artifact.id, type=artifact.type)],
                ),
            )

        log_with_context(
            "info",
            "artifact_created",
            mission_id=mission_id,
            artifact_id=artifact.id,
            type=artifact.type,
            producer=artifact.provenance.producer.value,
        )
        if (
            updated_mission.required_artifacts
            and artifact.type in updated_mission.required_artifacts
            and not self._missing_artifacts(mission_id, updated_mission.required_artifacts)
        ):
            log_with_context("info", "completion_gate_satisfied", mission_id=mission_id)
        return artifact.model_copy(deep=True)

    async def append_to_artifact(
        self,
        artifact_id: str,
        entries: Mapping[str, Any],
        files: Optional[Sequence[str]] = None,
        actor: str = "system",
    ) -> Artifact:
        """
        Add payload entries to an append-only artifact.

        New keys are added; existing list values are extended. Existing
        entries are never removed or overwritten.

        Raises:
            NotFoundError: Unknown artifact
            ValidationError: Immutable artifact, or an overwrite attempt
            CircuitBreakerError: Mission is locked
        """
        self._ensure_initialized()
        mission_id = self._require_artifact(artifact_id).mission_id
        async with self._lock_for(mission_id):
            current = self._require_artifact(artifact_id)
            self._ensure_unlocked(self._require_mission(mission_id), "append_to_artifact")

            result = validate_artifact_append(current.artifact_mode, current.payload, entries)
            if not result.valid:
                raise ValidationError(result.errors, entity="artifact")

            merged = dict(current.payload or {})
            for key, value in entries.items():
                if key in merged:
                    merged[key] = [*merged[key], *value]
                else:
                    merged[key] = value
            payload, errors = self.registry.parse_payload(current.type, merged)
            if errors:
                raise ValidationError(errors, entity="artifact")

            artifact = current.model_copy(
                update={
                    "payload": payload,
                    "files": [*current.files, *(files or [])],
                    "updated_at": self._tick(),
                }
            )
            await self._commit(
                "append_to_artifact",
                StateBatch(
                    artifacts=[artifact],
                    audit=[
                        self._audit(actor, "append", artifact, artifact_id, keys=sorted(entries))
                    ],
                ),
            )

        log_with_context(
            "debug",
            "artifact_appended",
            mission_id=mission_id,
            artifact_id=artifact_id,
            keys=sorted(entries),
        )
        return artifact.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Execution gates
    # ------------------------------------------------------------------

    def set_armed_mode(self, enabled: bool, risk_threshold: Optional[str] = None) -> None:
        """Arm or disarm immediate execution above the risk threshold."""
        self._armed = enabled
        if risk_threshold is not None:
            self._risk_threshold = RiskLevel(risk_threshold)
        log_with_context(
            "warning" if enabled else "info",
            "armed_mode_changed",
            armed=enabled,
            risk_threshold=self._risk_threshold.value,
        )

    @property
    def is_armed(self) -> bool:
        return self._armed

    async def request_execution(
        self,
        mission_id: str,
        tool: str,
        projected_cost: Optional[float] = None,
        immediate: bool = False,
        provider: Optional[str] = None,
        actor: str = "agent",
    ) -> ExecutionGrant:
        """
        Gate an execution request.

        Gates run in order: circuit breaker, armed mode (immediate requests
        only), tool allow-list, destructive approval, provider rate limit,
        budget. Rate limiter errors pass through before any state change.
        An immediate execution is counted and may trip the breaker; the
        request that reaches the limit is still granted.

        Raises:
            CircuitBreakerError: Mission is locked
            ArmedModeRequiredError: Immediate request above the risk threshold
            ToolNotAllowedError: Tool outside the allow-list
            DestructiveBlockedError: Destructive mission without approval
            NotConfiguredError, RateLimitedError: From the rate limiter
            CostLimitExceededError: Budget exceeded; mission set to blocked
        """
        self._ensure_initialized()
        async with self._lock_for(mission_id):
            mission = self._require_mission(mission_id)
            self._ensure_unlocked(mission, "request_execution")
            if mission.status in TERMINAL_MISSION_STATUSES:
                raise ValidationError(
                    [f"status: mission is {mission.status.value} and cannot execute"],
                    entity="execution",
                )

            if (
                immediate
                and requires_armed_mode(mission.risk_level, self._risk_threshold)
                and not self._armed
            ):
                raise ArmedModeRequiredError(
                    mission_id, mission.risk_level.value, self._risk_threshold.value
                )
            if not is_tool_allowed(mission, tool):
                log_with_context("warning", "tool_not_allowed", mission_id=mission_id, tool=tool)
                raise ToolNotAllowedError(mission_id, tool)
            if mission.mission_class == MissionClass.DESTRUCTIVE and not self._has_approval(
                mission_id, {mission_id, tool}
            ):
                raise DestructiveBlockedError(mission_id, tool)
            if provider is not None:
                if self.rate_limiter is None:
                    raise NotConfiguredError(provider, "no rate limiter configured")
                self.rate_limiter.check(provider)

            breaker = self._breakers.get(mission_id) or self.breaker.new_state(mission_id)
            budget = None
            if projected_cost is not None:
                budget = self.breaker.evaluate_cost(mission, breaker, projected_cost, self._clock())
                if not budget.allowed:
                    await self._block_for_budget(mission, breaker, budget, projected_cost, tool, actor)

            at = self._tick()
            if projected_cost:
                breaker = self.breaker.record_spend(breaker, projected_cost, tool=tool, at=at)
            decision = TripDecision(False)
            if immediate:
                breaker, decision = self.breaker.record_immediate_execution(breaker)
                self.metrics.immediate_execs_recorded += 1

            missions = []
            artifacts = []
            trip_artifact = None
            if decision.should_trip and decision.reason is not None:
                snapshot = await self._take_snapshot(f"{mission_id}_trip")
                at = self._tick(snapshot.created_at)
                breaker, trip_artifact, trip_updates = self._trip(mission, breaker, decision.reason, at)
                trip_updates.update(
                    {
                        "state_version": mission.state_version + 1,
                        "updated_at": at,
                        "last_snapshot_at": snapshot.created_at,
                    }
                )
                missions.append(mission.model_copy(update=trip_updates))
                artifacts.append(trip_artifact)

            await self._commit(
                "request_execution",
                StateBatch(
                    missions=missions,
                    artifacts=artifacts,
                    breakers=[breaker],
                    audit=[
                        self._audit(
                            actor,
                            "execute",
                            breaker,
                            mission_id,
                            tool=tool,
                            immediate=immediate,
                            projected_cost=projected_cost,
                        )
                    ],
                ),
            )
            if provider is not None and self.rate_limiter is not None:
                self.rate_limiter.record_call(provider)

        if trip_artifact is not None and decision.reason is not None:
            self._record_trip_committed(mission_id, decision.reason, trip_artifact)
        log_with_context(
            "info",
            "execution_granted",
            mission_id=mission_id,
            tool=tool,
            immediate=immediate,
            projected_cost=projected_cost,
            budget_warning=bool(budget and budget.warning),
        )
        return ExecutionGrant(
            mission_id=mission_id,
            tool=tool,
            immediate=immediate,
            projected_cost=projected_cost,
            budget=budget,
            breaker=breaker.model_copy(deep=True),
            tripped=trip_artifact is not None,
        )

    async def _block_for_budget(
        self,
        mission: Mission,
        breaker: CircuitBreakerState,
        budget: BudgetDecision,
        projected_cost: float,
        tool: str,
        actor: str,
    ) -> None:
        """Block the mission for budget, record the evidence, then raise."""
        reason = budget.reason.value if budget.reason else "BUDGET_EXCEEDED"
        limit = budget.limit if budget.limit is not None else 0.0
        new_status = MissionStatus.BLOCKED
        snapshot = None
        if self._needs_snapshot(mission, new_status):
            snapshot = await self._take_snapshot(f"{mission.id}_budget")
        at = self._tick(snapshot.created_at if snapshot else None)

        estimate = self._system_artifact(
            mission.id,
            ArtifactType.COST_ESTIMATE,
            f"Cost estimate for {tool}: over budget",
            {
                "projected_cost": projected_cost,
                "limit": budget.limit,
                "spent_total": budget.spent_total,
                "spent_last_hour": budget.spent_last_hour,
                "within_budget": False,
                "reason": reason,
                "tool": tool,
            },
            at,
        )
        trip = self._system_artifact(
            mission.id,
            ArtifactType.CIRCUIT_BREAKER_TRIP,
            f"Budget gate closed: {reason}",
            {
                "reason": reason,
                "failure_count": breaker.failure_count,
                "immediate_exec_count": breaker.immediate_exec_count,
                "projected_cost": budget.projected,
                "limit": budget.limit,
                "tripped_at": at,
                "required_action": "Raise the mission budget, then resume",
            },
            at,
        )
        updates: dict[str, Any] = {
            "status": new_status,
            "blocked_reason": reason,
            "artifact_ids": [*mission.artifact_ids, estimate.id, trip.id],
            "state_version": mission.state_version + 1,
            "updated_at": at,
        }
        if snapshot is not None:
            updates["last_snapshot_at"] = snapshot.created_at
        blocked = mission.model_copy(update=updates)
        await self._commit(
            "budget_block",
            StateBatch(
                missions=[blocked],
                artifacts=[estimate, trip],
                audit=[
                    self._audit(
                        actor,
                        "budget_block",
                        blocked,
                        mission.id,
                        reason=reason,
                        projected=budget.projected,
                        limit=budget.limit,
                    )
                ],
            ),
        )
        self.metrics.record_budget_block(mission.id, reason)
        raise CostLimitExceededError(mission.id, reason, budget.projected, limit)

    # ------------------------------------------------------------------
    # Snapshots and audit
    # ------------------------------------------------------------------

    async def create_snapshot(self, reason: str) -> str:
        """
        Write a full-state snapshot.

        Returns:
            Snapshot identifier (`YYYY-MM-DD_HH-mm-ss_<reason>`)

        Raises:
            StorageError: If the snapshot could not be written
        """
        self._ensure_initialized()
        record = await self._take_snapshot(reason)
        return record.snapshot_id

    async def list_snapshots(self) -> list[SnapshotRecord]:
        return await self.backend.list_snapshots()

    async def read_snapshot(self, snapshot_id: str) -> Optional[dict[str, Any]]:
        return await self.backend.read_snapshot(snapshot_id)

    async def audit_trail(self, entity_id: Optional[str] = None, limit: int = 100) -> list[AuditRecord]:
        return await self.backend.read_audit(entity_id, limit)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_mission(self, mission_id: str) -> Optional[Mission]:
        mission = self._missions.get(mission_id)
        return mission.model_copy(deep=True) if mission else None

    def get_task(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def get_artifact(self, artifact_id: str) -> Optional[Artifact]:
        artifact = self._artifacts.get(artifact_id)
        return artifact.model_copy(deep=True) if artifact else None

    def get_breaker(self, mission_id: str) -> Optional[CircuitBreakerState]:
        breaker = self._breakers.get(mission_id)
        return breaker.model_copy(deep=True) if breaker else None

    def find_by_idempotency_key(self, key: str) -> Optional[Mission]:
        mission_id = self._idempotency.get(key)
        return self.get_mission(mission_id) if mission_id else None

    def list_missions(
        self,
        status: Optional[MissionStatus | str] = None,
        mission_class: Optional[MissionClass | str] = None,
    ) -> list[Mission]:
        missions = list(self._missions.values())
        if status is not None:
            missions = [m for m in missions if m.status == MissionStatus(status)]
        if mission_class is not None:
            missions = [m for m in missions if m.mission_class == MissionClass(mission_class)]
        return [m.model_copy(deep=True) for m in missions]

    def list_tasks(self, mission_id: str) -> list[Task]:
        """Tasks of a mission in insertion order."""
        mission = self._require_mission(mission_id)
        return [t.model_copy(deep=True) for t in self._mission_tasks(mission)]

    def list_artifacts(self, mission_id: str, type_name: Optional[str] = None) -> list[Artifact]:
        self._require_mission(mission_id)
        return [a.model_copy(deep=True) for a in self._mission_artifacts(mission_id, type_name)]

    def ready_tasks(self, mission_id: str) -> list[Task]:
        """Tasks in `ready` status, in insertion order."""
        return [t for t in self.list_tasks(mission_id) if t.status == TaskStatus.READY]

    def execution_order(self, mission_id: str) -> list[str]:
        """Topological order of a mission's tasks."""
        mission = self._require_mission(mission_id)
        return TaskGraph.from_tasks(self._mission_tasks(mission)).execution_order()

    def completion_status(self, mission_id: str) -> CompletionStatus:
        mission = self._require_mission(mission_id)
        missing = self._missing_artifacts(mission_id, mission.required_artifacts)
        approval_required = mission.mission_class == MissionClass.DESTRUCTIVE
        approved = self._has_approval(mission_id, {mission_id})
        return CompletionStatus(
            mission_id=mission_id,
            eligible=not missing
            and (approved or not approval_required)
            and not self._is_locked(mission),
            missing_artifacts=missing,
            approval_required=approval_required,
            approved=approved,
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "missions": {
                "total": len(self._missions),
                "by_status": dict(Counter(m.status.value for m in self._missions.values())),
            },
            "tasks": {
                "total": len(self._tasks),
                "by_status": dict(Counter(t.status.value for t in self._tasks.values())),
            },
            "artifacts": len(self._artifacts),
            "tripped_breakers": sum(1 for b in self._breakers.values() if b.tripped),
            "armed": self._armed,
            "risk_threshold": self._risk_threshold.value,
            "breaker_metrics": self.metrics.to_dict(),
        }
