"""
mission_control/storage/sqlite.py
SQLite implementation of StateBackend.

Entity rows hold the full JSON document next to its version column so a
reader can never see one without the other. Snapshots are JSON files in a
dedicated directory, written to a temporary file, fsynced and renamed into
place.

Follows: Repository Pattern, Dependency Injection
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import aiosqlite

from shared.config import SharedConfig

from ..exceptions import StorageError
from ..models.entities import (
    Artifact,
    AuditRecord,
    CircuitBreakerState,
    Mission,
    SnapshotRecord,
    Task,
)
from .base import LoadedState, StateBackend, StateBatch

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS missions (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        mission_class TEXT NOT NULL,
        version INTEGER NOT NULL,
        updated_at TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        mission_id TEXT NOT NULL,
        status TEXT NOT NULL,
        version INTEGER NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS artifacts (
        id TEXT PRIMARY KEY,
        mission_id TEXT NOT NULL,
        type TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS circuit_breakers (
        mission_id TEXT PRIMARY KEY,
        tripped INTEGER NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS idempotency_keys (
        key TEXT PRIMARY KEY,
        mission_id TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        at TEXT NOT NULL,
        actor TEXT NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        state_version INTEGER,
        details TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_mission ON tasks(mission_id)",
    "CREATE INDEX IF NOT EXISTS idx_artifacts_mission ON artifacts(mission_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_id)",
)

_SNAPSHOT_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"


def _sanitize_reason(reason: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "-", reason.strip()).strip("-")
    return cleaned[:80] or "snapshot"


class SQLiteStateBackend(StateBackend):
    """
    SQLite-backed engine state with file snapshots.

    Attributes:
        db_path: Path to the SQLite database file
        snapshot_dir: Directory holding snapshot files

    Example:
        >>> backend = SQLiteStateBackend("/tmp/mc/state.db", "/tmp/mc/snapshots")
        >>> await backend.initialize()
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        snapshot_dir: Optional[Union[str, Path]] = None,
        timeout: float = SharedConfig.DB_TIMEOUT,
    ) -> None:
        """
        Args:
            db_path: SQLite file (default: SharedConfig.DB_PATH)
            snapshot_dir: Snapshot directory (default: SharedConfig.SNAPSHOT_DIR)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path or SharedConfig.DB_PATH)
        self.snapshot_dir = Path(snapshot_dir or SharedConfig.SNAPSHOT_DIR)
        self.timeout = timeout
        self._db: Optional[aiosqlite.Connection] = None
        # One connection, so transactions must not interleave
        self._write_lock = asyncio.Lock()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SQLiteStateBackend not initialized. Call initialize() first.")
        return self._db

    async def initialize(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.snapshot_dir.mkdir(parents=True, exist_ok=True)
            # Transactions are opened explicitly in commit()
            self._db = await aiosqlite.connect(
                self.db_path, timeout=self.timeout, isolation_level=None
            )
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=FULL")
            for statement in _SCHEMA:
                await self._db.execute(statement)
            logger.info(
                "State backend initialized",
                extra={"db_path": str(self.db_path), "snapshot_dir": str(self.snapshot_dir)},
            )
        except (sqlite3.Error, OSError) as e:
            logger.error(f"State backend initialization failed: {e}")
            raise StorageError(str(e), operation="initialize") from e

    async def load_all(self) -> LoadedState:
        db = self._conn()
        state = LoadedState()
        try:
            async with db.execute("SELECT doc FROM missions ORDER BY rowid") as cursor:
                state.missions = [
                    Mission.model_validate_json(row["doc"]) async for row in cursor
                ]
            async with db.execute("SELECT doc FROM tasks ORDER BY rowid") as cursor:
                state.tasks = [Task.model_validate_json(row["doc"]) async for row in cursor]
            async with db.execute("SELECT doc FROM artifacts ORDER BY rowid") as cursor:
                state.artifacts = [
                    Artifact.model_validate_json(row["doc"]) async for row in cursor
                ]
            async with db.execute("SELECT doc FROM circuit_breakers ORDER BY rowid") as cursor:
                state.breakers = [
                    CircuitBreakerState.model_validate_json(row["doc"]) async for row in cursor
                ]
            async with db.execute("SELECT key, mission_id FROM idempotency_keys") as cursor:
                state.idempotency_keys = {row["key"]: row["mission_id"] async for row in cursor}
        except sqlite3.Error as e:
            logger.error(f"Failed to load state: {e}")
            raise StorageError(str(e), operation="load_all") from e

        logger.info(
            "State loaded",
            extra={
                "missions": len(state.missions),
                "tasks": len(state.tasks),
                "artifacts": len(state.artifacts),
            },
        )
        return state

    async def commit(self, batch: StateBatch) -> None:
        if batch.is_empty():
            return
        db = self._conn()
        try:
            async with self._write_lock:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    await self._write_batch(db, batch)
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
                await db.execute("COMMIT")
        except sqlite3.Error as e:
            logger.error(f"Failed to commit batch: {e}")
            raise StorageError(str(e), operation="commit") from e

        logger.debug(
            "Batch committed",
            extra={
                "missions": len(batch.missions),
                "tasks": len(batch.tasks),
                "artifacts": len(batch.artifacts),
                "audit": len(batch.audit),
            },
        )

    async def _write_batch(self, db: aiosqlite.Connection, batch: StateBatch) -> None:
        # Upserts keep the original rowid so load order stays insertion order
        if batch.missions:
            await db.executemany(
                """
                INSERT INTO missions (id, status, mission_class, version, updated_at, doc)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    mission_class = excluded.mission_class,
                    version = excluded.version,
                    updated_at = excluded.updated_at,
                    doc = excluded.doc
                """,
                [
                    (
                        m.id,
                        m.status.value,
                        m.mission_class.value,
                        m.state_version,
                        m.updated_at.isoformat(),
                        json.dumps(m.to_document()),
                    )
                    for m in batch.missions
                ],
            )
        if batch.tasks:
            await db.executemany(
                """
                INSERT INTO tasks (id, mission_id, status, version, doc)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    version = excluded.version,
                    doc = excluded.doc
                """,
                [
                    (t.id, t.mission_id, t.status.value, t.state_version, json.dumps(t.to_document()))
                    for t in batch.tasks
                ],
            )
        if batch.artifacts:
            await db.executemany(
                """
                INSERT INTO artifacts (id, mission_id, type, doc)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET doc = excluded.doc
                """,
                [
                    (a.id, a.mission_id, a.type, json.dumps(a.to_document()))
                    for a in batch.artifacts
                ],
            )
        if batch.breakers:
            await db.executemany(
                """
                INSERT INTO circuit_breakers (mission_id, tripped, doc)
                VALUES (?, ?, ?)
                ON CONFLICT(mission_id) DO UPDATE SET
                    tripped = excluded.tripped,
                    doc = excluded.doc
                """,
                [
                    (b.mission_id, int(b.tripped), json.dumps(b.to_document()))
                    for b in batch.breakers
                ],
            )
        if batch.idempotency_keys:
            await db.executemany(
                """
                INSERT INTO idempotency_keys (key, mission_id) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET mission_id = excluded.mission_id
                """,
                list(batch.idempotency_keys.items()),
            )
        if batch.audit:
            await db.executemany(
                """
                INSERT INTO audit_log (
                    at, actor, action, entity_type, entity_id, state_version, details
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        r.at.isoformat(),
                        r.actor,
                        r.action,
                        r.entity_type,
                        r.entity_id,
                        r.state_version,
                        json.dumps(r.details, default=str),
                    )
                    for r in batch.audit
                ],
            )

    async def write_snapshot(
        self,
        reason: str,
        state: dict[str, Any],
        created_at: datetime,
    ) -> SnapshotRecord:
        try:
            return await asyncio.to_thread(self._write_snapshot_file, reason, state, created_at)
        except OSError as e:
            logger.error(f"Snapshot write failed: {e}")
            raise StorageError(str(e), operation="write_snapshot") from e

    def _write_snapshot_file(
        self,
        reason: str,
        state: dict[str, Any],
        created_at: datetime,
    ) -> SnapshotRecord:
        stem = f"{created_at.strftime(_SNAPSHOT_TIME_FORMAT)}_{_sanitize_reason(reason)}"
        snapshot_id = stem
        counter = 1
        while (self.snapshot_dir / f"{snapshot_id}.json").exists():
            counter += 1
            snapshot_id = f"{stem}_{counter}"

        path = self.snapshot_dir / f"{snapshot_id}.json"
        record = SnapshotRecord(
            snapshot_id=snapshot_id,
            reason=reason,
            created_at=created_at,
            path=str(path),
        )
        document = {"snapshot": record.to_document(), "state": state}

        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2, default=str)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
        return record

    async def list_snapshots(self) -> list[SnapshotRecord]:
        return await asyncio.to_thread(self._list_snapshot_files)

    def _list_snapshot_files(self) -> list[SnapshotRecord]:
        records = []
        for path in sorted(self.snapshot_dir.glob("*.json")):
            try:
                with open(path, encoding="utf-8") as handle:
                    document = json.load(handle)
                records.append(SnapshotRecord.model_validate(document["snapshot"]))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable snapshot {path.name}: {e}")
        records.sort(key=lambda r: (r.created_at, r.snapshot_id))
        return records

    async def read_snapshot(self, snapshot_id: str) -> Optional[dict[str, Any]]:
        path = self.snapshot_dir / f"{snapshot_id}.json"
        if path.parent != self.snapshot_dir or not path.exists():
            return None
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
            return json.loads(text)
        except (OSError, ValueError) as e:
            raise StorageError(str(e), operation="read_snapshot") from e

    async def read_audit(
        self,
        entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditRecord]:
        db = self._conn()
        query = "SELECT * FROM audit_log"
        params: tuple[Any, ...] = ()
        if entity_id is not None:
            query += " WHERE entity_id = ?"
            params = (entity_id,)
        query += " ORDER BY id DESC LIMIT ?"
        params += (limit,)
        try:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"Audit read failed: {e}")
            raise StorageError(str(e), operation="read_audit") from e
        return [
            AuditRecord(
                at=row["at"],
                actor=row["actor"],
                action=row["action"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                state_version=row["state_version"],
                details=json.loads(row["details"]),
            )
            for row in reversed(rows)
        ]

    async def health_check(self) -> bool:
        try:
            async with self._conn().execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except (sqlite3.Error, RuntimeError) as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("State backend connection closed")
