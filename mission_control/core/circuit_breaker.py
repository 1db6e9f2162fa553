"""
Mission Circuit Breaker.

Per-mission safety counters and budget evaluation. This module holds the
decision logic only; the state store persists the resulting
CircuitBreakerState, locks the mission and emits the trip artifact.

Counters are monotonic over the mission's lifetime (not a sliding window):
the breaker trips when failures or immediate executions reach their limit,
and only an approved human approval_record clears it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ..error_instrumentation import log_with_context
from ..models.entities import CircuitBreakerState, Mission, SpendRecord, utcnow
from ..settings import EngineSettings


class TripReason(str, Enum):
    """Why a breaker tripped or a budget gate closed."""

    MAX_FAILURES_EXCEEDED = "MAX_FAILURES_EXCEEDED"
    MAX_IMMEDIATE_EXECS_EXCEEDED = "MAX_IMMEDIATE_EXECS_EXCEEDED"
    MAX_ESTIMATED_COST_EXCEEDED = "MAX_ESTIMATED_COST_EXCEEDED"
    MAX_COST_PER_HOUR_EXCEEDED = "MAX_COST_PER_HOUR_EXCEEDED"


@dataclass(frozen=True)
class TripDecision:
    """Outcome of recording a counted event."""

    should_trip: bool
    reason: Optional[TripReason] = None


@dataclass(frozen=True)
class BudgetDecision:
    """
    Outcome of a pre-flight cost check.

    Attributes:
        allowed: False when either ceiling would be exceeded
        reason: Which ceiling was hit (None when allowed)
        projected: Value compared against `limit`
        limit: Ceiling that applied (None when the mission has no ceilings)
        warning: True when allowed but past the warning ratio
        spent_total: Lifetime spend before this request
        spent_last_hour: Spend inside the trailing hour before this request
    """

    allowed: bool
    reason: Optional[TripReason] = None
    projected: float = 0.0
    limit: Optional[float] = None
    warning: bool = False
    spent_total: float = 0.0
    spent_last_hour: float = 0.0


class MissionCircuitBreaker:
    """
    Decision logic over CircuitBreakerState.

    Every method returns a new state; the input is never modified, so the
    caller can discard the result if its commit fails.

    Example:
        >>> breaker = MissionCircuitBreaker(EngineSettings())
        >>> state = breaker.new_state("mission-1")
        >>> state, decision = breaker.record_immediate_execution(state)
        >>> decision.should_trip
        False
    """

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self.settings = settings or EngineSettings()

    @property
    def max_failures(self) -> int:
        return self.settings.max_failures_per_mission

    @property
    def max_immediate_execs(self) -> int:
        return self.settings.max_immediate_execs_per_mission

    def new_state(self, mission_id: str) -> CircuitBreakerState:
        """Fresh, closed breaker state for a mission."""
        return CircuitBreakerState(mission_id=mission_id)

    def record_failure(
        self, state: CircuitBreakerState
    ) -> tuple[CircuitBreakerState, TripDecision]:
        """Count one task/agent failure."""
        updated = state.model_copy(update={"failure_count": state.failure_count + 1})
        log_with_context(
            "info",
            "breaker_failure_recorded",
            mission_id=state.mission_id,
            failure_count=updated.failure_count,
            max_failures=self.max_failures,
        )
        if not updated.tripped and updated.failure_count >= self.max_failures:
            return updated, TripDecision(True, TripReason.MAX_FAILURES_EXCEEDED)
        return updated, TripDecision(False)

    def record_immediate_execution(
        self, state: CircuitBreakerState
    ) -> tuple[CircuitBreakerState, TripDecision]:
        """Count one bypass-queue execution."""
        updated = state.model_copy(
            update={"immediate_exec_count": state.immediate_exec_count + 1}
        )
        log_with_context(
            "info",
            "breaker_immediate_exec_recorded",
            mission_id=state.mission_id,
            immediate_exec_count=updated.immediate_exec_count,
            max_immediate_execs=self.max_immediate_execs,
        )
        if not updated.tripped and updated.immediate_exec_count >= self.max_immediate_execs:
            return updated, TripDecision(True, TripReason.MAX_IMMEDIATE_EXECS_EXCEEDED)
        return updated, TripDecision(False)

    def trip(
        self,
        state: CircuitBreakerState,
        reason: TripReason,
        at: Optional[datetime] = None,
    ) -> CircuitBreakerState:
        """Open the breaker; the mission stays locked until cleared."""
        return state.model_copy(
            update={
                "tripped": True,
                "tripped_at": at or utcnow(),
                "tripped_reason": reason.value,
            }
        )

    def clear(
        self,
        state: CircuitBreakerState,
        approver: str,
        at: Optional[datetime] = None,
    ) -> CircuitBreakerState:
        """
        Close the breaker and reset both counters.

        Only the state store calls this, after validating a human approval.
        Spend history is kept: clearing a trip does not refund the budget.
        """
        return state.model_copy(
            update={
                "failure_count": 0,
                "immediate_exec_count": 0,
                "tripped": False,
                "tripped_at": None,
                "tripped_reason": None,
                "locked_until": None,
                "cleared_at": at or utcnow(),
                "cleared_by": approver,
            }
        )

    def record_spend(
        self,
        state: CircuitBreakerState,
        amount: float,
        tool: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> CircuitBreakerState:
        """Append an honored execution's cost to the spend history."""
        record = SpendRecord(at=at or utcnow(), amount=amount, tool=tool)
        return state.model_copy(update={"spend": [*state.spend, record]})

    def spent_since(self, state: CircuitBreakerState, since: datetime) -> float:
        return sum(record.amount for record in state.spend if record.at > since)

    def evaluate_cost(
        self,
        mission: Mission,
        state: CircuitBreakerState,
        projected_cost: float,
        at: Optional[datetime] = None,
    ) -> BudgetDecision:
        """
        Compare projected spend with the mission's ceilings.

        The lifetime ceiling is checked first, then the trailing-hour one.
        """
        now = at or utcnow()
        spent_total = state.spent_total
        spent_last_hour = self.spent_since(state, now - timedelta(hours=1))
        common = {"spent_total": spent_total, "spent_last_hour": spent_last_hour}

        checks = (
            (
                mission.max_estimated_cost,
                spent_total + projected_cost,
                TripReason.MAX_ESTIMATED_COST_EXCEEDED,
            ),
            (
                mission.max_cost_per_hour,
                spent_last_hour + projected_cost,
                TripReason.MAX_COST_PER_HOUR_EXCEEDED,
            ),
        )
        warning = False
        applied: Optional[float] = None
        applied_projected = projected_cost
        for limit, projected, reason in checks:
            if limit is None:
                continue
            if projected > limit:
                return BudgetDecision(
                    allowed=False,
                    reason=reason,
                    projected=projected,
                    limit=limit,
                    **common,
                )
            if applied is None:
                applied, applied_projected = limit, projected
            if projected >= limit * self.settings.budget_warning_ratio:
                warning = True

        if warning:
            log_with_context(
                "warning",
                "budget_warning",
                mission_id=mission.id,
                projected_cost=projected_cost,
                spent_total=spent_total,
                warning_ratio=self.settings.budget_warning_ratio,
            )
        return BudgetDecision(
            allowed=True,
            projected=applied_projected,
            limit=applied,
            warning=warning,
            **common,
        )
