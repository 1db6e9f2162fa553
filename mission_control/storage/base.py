"""
mission_control/storage/base.py
Abstract state persistence interface.

This is the contract every state backend implements. The state store depends
only on this interface, never on a concrete database.
Follows: Dependency Injection, Interface Segregation
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..models.entities import (
    Artifact,
    AuditRecord,
    CircuitBreakerState,
    Mission,
    SnapshotRecord,
    Task,
)


@dataclass
class StateBatch:
    """
    Everything one accepted mutation writes.

    A batch is committed atomically: either every entity and audit row in it
    lands, or none does.
    """

    missions: list[Mission] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)
    breakers: list[CircuitBreakerState] = field(default_factory=list)
    idempotency_keys: dict[str, str] = field(default_factory=dict)
    audit: list[AuditRecord] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.missions
            or self.tasks
            or self.artifacts
            or self.breakers
            or self.idempotency_keys
            or self.audit
        )


@dataclass
class LoadedState:
    """Full persisted state, in insertion order."""

    missions: list[Mission] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)
    breakers: list[CircuitBreakerState] = field(default_factory=list)
    idempotency_keys: dict[str, str] = field(default_factory=dict)


class StateBackend(ABC):
    """
    Abstract interface for durable engine state.

    Entities are keyed by id. Snapshots are full-state dumps kept apart from
    the entity tables. The audit trail records every accepted mutation.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Initialize storage (create tables, snapshot area, etc.).

        Must be called before any other operations.

        Raises:
            StorageError: If initialization fails
        """

    @abstractmethod
    async def load_all(self) -> LoadedState:
        """
        Load every persisted entity.

        Raises:
            StorageError: If the read fails
        """

    @abstractmethod
    async def commit(self, batch: StateBatch) -> None:
        """
        Persist one mutation atomically.

        Returns only after the write is durable.

        Raises:
            StorageError: If the write fails (nothing is persisted)
        """

    @abstractmethod
    async def write_snapshot(
        self,
        reason: str,
        state: dict[str, Any],
        created_at: datetime,
    ) -> SnapshotRecord:
        """
        Write a full-state snapshot.

        Args:
            reason: Trigger of the snapshot, used in its name
            state: Serialized missions, tasks, artifacts and breakers
            created_at: Snapshot time, used for the sortable name

        Returns:
            Metadata of the written snapshot

        Raises:
            StorageError: If the snapshot could not be written durably
        """

    @abstractmethod
    async def list_snapshots(self) -> list[SnapshotRecord]:
        """Snapshots sorted oldest first."""

    @abstractmethod
    async def read_snapshot(self, snapshot_id: str) -> Optional[dict[str, Any]]:
        """Snapshot document, or None if unknown."""

    @abstractmethod
    async def read_audit(
        self,
        entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditRecord]:
        """
        Audit records, newest last.

        Args:
            entity_id: Only records about this entity
            limit: Maximum records returned
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the backend is reachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
