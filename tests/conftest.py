"""
Pytest Configuration and Shared Fixtures
========================================

Provides reusable fixtures for all test modules: a state store backed by a
temporary SQLite database, and small builders for mission and artifact
payloads.
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from mission_control.core.rate_limits import RateLimiter
from mission_control.core.state_store import StateStore
from mission_control.settings import EngineSettings
from mission_control.storage.sqlite import SQLiteStateBackend

# ============================================================
# STORAGE FIXTURES
# ============================================================


@pytest.fixture
def backend(tmp_path: Path) -> SQLiteStateBackend:
    """Uninitialized backend under a temporary directory."""
    return SQLiteStateBackend(tmp_path / "state.db", tmp_path / "snapshots")


@pytest.fixture
def settings() -> EngineSettings:
    """Default limits (3 failures, 3 immediate executions)."""
    return EngineSettings()


@pytest.fixture
def limiter_clock() -> list[float]:
    """Mutable epoch-seconds value driving the rate limiter clock."""
    return [1_700_000_000.0]


@pytest.fixture
def rate_limiter(limiter_clock: list[float]) -> RateLimiter:
    return RateLimiter(clock=lambda: limiter_clock[0])


@pytest_asyncio.fixture
async def store(
    backend: SQLiteStateBackend,
    settings: EngineSettings,
    rate_limiter: RateLimiter,
) -> AsyncGenerator[StateStore, None]:
    """Initialized state store; closed after the test."""
    state_store = StateStore(backend, settings=settings, rate_limiter=rate_limiter)
    await state_store.initialize()
    yield state_store
    await state_store.close()


# ============================================================
# DATA BUILDERS
# ============================================================


def mission_data(**overrides: Any) -> dict[str, Any]:
    """Minimal valid mission creation payload (camelCase, as callers send it)."""
    data: dict[str, Any] = {
        "name": "Fix layout shift on /pricing",
        "description": "CLS regression detected by watchdog",
        "missionClass": "maintenance",
    }
    data.update(overrides)
    return data


def signal_payload(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "source": "lighthouse",
        "metric": "cls",
        "value": 0.31,
        "previousValue": 0.08,
        "delta": 0.23,
        "threshold": 0.1,
        "window": "1h",
        "triggered": True,
        "observedAt": "2026-10-17T09:15:00+00:00",
    }
    data.update(overrides)
    return data


def approval_data(
    mission_id: str,
    target_id: str | None = None,
    decision: str = "approve",
    producer: str = "human",
) -> dict[str, Any]:
    return {
        "missionId": mission_id,
        "type": "approval_record",
        "label": f"Approval for {mission_id}",
        "payload": {
            "targetType": "mission",
            "targetId": target_id or mission_id,
            "decision": decision,
            "approver": "ops@example.com",
            "reason": "reviewed",
        },
        "provenance": {"producer": producer},
    }


@pytest.fixture
def make_mission_data():
    return mission_data


@pytest.fixture
def make_signal():
    return signal_payload


@pytest.fixture
def make_approval():
    return approval_data
