"""
Error Instrumentation Module
Structured event logging and safety metrics for the state engine.
Every log line carries the correlation IDs of the current operation.
"""

import json
import logging
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context storage (task-local under asyncio)
request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})


def create_request_context(
    actor: Optional[str] = None,
    service_name: str = "mission_control",
) -> Dict[str, Any]:
    """
    Create context with unique IDs for an entire operation.

    Use this at the start of every external request (watchdog tick,
    agent report, approval submission).
    """
    return {
        "request_id": str(uuid.uuid4()),
        "trace_id": str(uuid.uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service_name": service_name,
        "actor": actor,
    }


def get_request_context() -> Dict[str, Any]:
    """
    Get current request context.

    If no context exists, creates one automatically.
    """
    ctx = request_context.get({})
    if not ctx:
        ctx = create_request_context()
        request_context.set(ctx)
    return ctx


def get_correlation_id() -> str:
    """Get correlation ID for this request."""
    return get_request_context().get("request_id", "unknown")


def log_with_context(level: str, message: str, **kwargs: Any) -> None:
    """
    Log with full context and structured data.

    Every log includes correlation IDs, timestamp, and any extra kwargs.
    """
    ctx = get_request_context()
    log_entry = {
        **ctx,
        "message": message,
        "level": level.upper(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **kwargs,
    }
    logger = logging.getLogger(__name__)
    payload = json.dumps(log_entry, default=str)
    if level.upper() == "ERROR":
        logger.error(payload)
    elif level.upper() == "WARNING":
        logger.warning(payload)
    elif level.upper() == "CRITICAL":
        logger.critical(payload)
    elif level.upper() == "DEBUG":
        logger.debug(payload)
    else:
        logger.info(payload)


class ErrorContext:
    """
    Capture complete context when a mutation is rejected or fails.
    """

    def __init__(
        self,
        operation: str,
        error: Exception,
        context: Dict[str, Any],
    ):
        self.operation = operation
        self.error = error
        self.context = context
        self.stack_trace = traceback.format_exc()
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def log(self, level: str = "error") -> None:
        log_with_context(
            level,
            f"{self.operation}_failed",
            error_type=type(self.error).__name__,
            error_code=getattr(self.error, "error_code", None),
            error_message=str(self.error),
            operation_context=self.context,
            timestamp=self.timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "error_type": type(self.error).__name__,
            "error_code": getattr(self.error, "error_code", None),
            "error_message": str(self.error),
            "stack_trace": self.stack_trace,
            "context": self.context,
            "timestamp": self.timestamp,
            "correlation_id": get_correlation_id(),
        }


class BreakerMetrics:
    """Track circuit breaker and budget gate activity across missions."""

    def __init__(self) -> None:
        self.failures_recorded = 0
        self.immediate_execs_recorded = 0
        self.trips = 0
        self.rejections = 0
        self.budget_blocks = 0
        self.clears = 0

    def record_trip(self, mission_id: str, reason: str) -> None:
        self.trips += 1
        log_with_context(
            "warning",
            "circuit_breaker_trip_recorded",
            mission_id=mission_id,
            reason=reason,
            trips=self.trips,
        )

    def record_rejection(self) -> None:
        self.rejections += 1

    def record_budget_block(self, mission_id: str, reason: str) -> None:
        self.budget_blocks += 1
        log_with_context(
            "warning",
            "budget_block_recorded",
            mission_id=mission_id,
            reason=reason,
            budget_blocks=self.budget_blocks,
        )

    def record_clear(self) -> None:
        self.clears += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "failures_recorded": self.failures_recorded,
            "immediate_execs_recorded": self.immediate_execs_recorded,
            "trips": self.trips,
            "rejections": self.rejections,
            "budget_blocks": self.budget_blocks,
            "clears": self.clears,
        }
