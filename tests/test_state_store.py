"""
Integration tests for StateStore: missions, artifacts, snapshots and intake.

Each test runs against a fresh SQLite database under tmp_path.
"""

from __future__ import annotations

import asyncio
import gc
import re

import pytest

from mission_control.core.state_store import StateStore, derive_idempotency_key
from mission_control.exceptions import (
    DestructiveBlockedError,
    ErrorCode,
    MissingArtifactError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from mission_control.models.entities import ArtifactMode, MissionStatus, Producer, TriggerSource
from mission_control.storage.sqlite import SQLiteStateBackend


class TestCreateMission:
    """Tests for create_mission."""

    @pytest.mark.asyncio
    async def test_create_assigns_id_and_version(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        assert mission.id.startswith("mission-")
        assert re.fullmatch(r"mission-\d+-[a-z0-9]{6}", mission.id)
        assert mission.state_version == 1
        assert mission.status == MissionStatus.QUEUED
        assert mission.trigger_source == TriggerSource.MANUAL
        assert mission.to_document()["_stateVersion"] == 1

    @pytest.mark.asyncio
    async def test_invalid_data_raises_validation_error(self, store: StateStore) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await store.create_mission({"name": ""})
        assert exc_info.value.error_code == ErrorCode.VALIDATION_ERROR.value
        assert any(e.startswith("missionClass") for e in exc_info.value.errors)
        assert store.list_missions() == []

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        copy = store.get_mission(mission.id)
        copy.task_ids.append("task-tampered")
        assert store.get_mission(mission.id).task_ids == []

    @pytest.mark.asyncio
    async def test_list_filters(self, store: StateStore, make_mission_data) -> None:
        await store.create_mission(make_mission_data())
        await store.create_mission(make_mission_data(missionClass="exploration"))
        assert len(store.list_missions()) == 2
        assert len(store.list_missions(mission_class="exploration")) == 1
        assert len(store.list_missions(status=MissionStatus.RUNNING)) == 0

    @pytest.mark.asyncio
    async def test_bootstrap_artifact(self, store: StateStore, make_mission_data) -> None:
        plain = await store.create_mission(make_mission_data())
        assert plain.artifact_ids == []

        mission = await store.create_mission(make_mission_data(), actor="ops", bootstrap=True)
        [bootstrap] = store.list_artifacts(mission.id, "mission_bootstrap")
        assert mission.artifact_ids == [bootstrap.id]
        assert mission.state_version == 1
        assert bootstrap.artifact_mode == ArtifactMode.IMMUTABLE
        assert bootstrap.provenance.producer == Producer.SYSTEM
        assert bootstrap.payload["missionClass"] == "maintenance"
        assert bootstrap.payload["createdBy"] == "ops"
        assert bootstrap.payload["delegationRequired"] is True
        assert bootstrap.created_at == mission.created_at


class TestCompletionGate:
    """A mission completes only with its required artifacts."""

    @pytest.mark.asyncio
    async def test_m1_example(self, store: StateStore, make_mission_data) -> None:
        m1 = await store.create_mission(make_mission_data(requiredArtifacts=["signal_report"]))

        with pytest.raises(MissingArtifactError) as exc_info:
            await store.update_mission(m1.id, {"status": "complete"})
        assert exc_info.value.error_code == ErrorCode.COMPLETION_BLOCKED.value
        assert exc_info.value.missing_artifacts == ["signal_report"]
        assert store.get_mission(m1.id).state_version == 1

        await store.create_artifact(
            {
                "missionId": m1.id,
                "type": "signal_report",
                "label": "CLS spike",
                "payload": {"source": "lighthouse", "metric": "cls", "value": 0.31},
                "provenance": {"producer": "watchdog"},
            }
        )
        assert store.completion_status(m1.id).eligible
        assert store.get_mission(m1.id).status == MissionStatus.QUEUED

        completed = await store.update_mission(m1.id, {"status": "complete"})
        assert completed.status == MissionStatus.COMPLETE
        assert completed.completed_at is not None
        # create (1), artifact (2), completion (3)
        assert completed.state_version == 3

    @pytest.mark.asyncio
    async def test_complete_is_terminal(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        await store.update_mission(mission.id, {"status": "complete"})
        with pytest.raises(ValidationError):
            await store.update_mission(mission.id, {"status": "running"})

    @pytest.mark.asyncio
    async def test_destructive_completion_needs_approval(
        self, store: StateStore, make_mission_data, make_approval
    ) -> None:
        mission = await store.create_mission(make_mission_data(missionClass="destructive"))
        with pytest.raises(DestructiveBlockedError):
            await store.update_mission(mission.id, {"status": "complete"})

        await store.create_artifact(make_approval(mission.id, decision="deny"))
        with pytest.raises(DestructiveBlockedError):
            await store.update_mission(mission.id, {"status": "complete"})

        await store.create_artifact(make_approval(mission.id))
        completed = await store.update_mission(mission.id, {"status": "complete"})
        assert completed.status == MissionStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_requirements_cannot_be_dropped_on_completion(
        self, store: StateStore, make_mission_data
    ) -> None:
        mission = await store.create_mission(make_mission_data(requiredArtifacts=["signal_report"]))

        with pytest.raises(ValidationError) as exc_info:
            await store.update_mission(mission.id, {"status": "complete", "requiredArtifacts": []})
        assert any("requiredArtifacts" in error for error in exc_info.value.errors)
        current = store.get_mission(mission.id)
        assert current.status == MissionStatus.QUEUED
        assert current.required_artifacts == ["signal_report"]
        assert current.state_version == 1

        # Requirements change only in an update that does not complete
        relaxed = await store.update_mission(mission.id, {"requiredArtifacts": []})
        assert relaxed.required_artifacts == []
        completed = await store.update_mission(mission.id, {"status": "complete"})
        assert completed.status == MissionStatus.COMPLETE


class TestUpdateMission:
    """Tests for update_mission."""

    @pytest.mark.asyncio
    async def test_unknown_mission(self, store: StateStore) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await store.update_mission("mission-0-ghost0", {"status": "running"})
        assert exc_info.value.error_code == ErrorCode.NOT_FOUND.value

    @pytest.mark.asyncio
    async def test_protected_fields_rejected(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        with pytest.raises(ValidationError) as exc_info:
            await store.update_mission(mission.id, {"_stateVersion": 99, "taskIds": []})
        assert len(exc_info.value.errors) == 2

    @pytest.mark.asyncio
    async def test_bad_value_rejected(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        with pytest.raises(ValidationError):
            await store.update_mission(mission.id, {"status": "snoozing"})

    @pytest.mark.asyncio
    async def test_blocked_needs_reason_and_resume_clears_it(
        self, store: StateStore, make_mission_data
    ) -> None:
        mission = await store.create_mission(make_mission_data())
        with pytest.raises(ValidationError):
            await store.update_mission(mission.id, {"status": "blocked"})
        blocked = await store.update_mission(
            mission.id, {"status": "blocked", "blockedReason": "OAuth token expired"}
        )
        assert blocked.blocked_reason == "OAuth token expired"
        resumed = await store.update_mission(mission.id, {"status": "running"})
        assert resumed.blocked_reason is None
        assert resumed.state_version == 3

    @pytest.mark.asyncio
    async def test_each_update_bumps_version_once(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        updated = await store.update_mission(mission.id, {"name": "Renamed", "riskLevel": "medium"})
        assert updated.state_version == 2
        assert updated.updated_at > mission.updated_at


class TestSnapshots:
    """Irreversible transitions are snapshotted before they commit."""

    @pytest.mark.asyncio
    async def test_destructive_mission_snapshot_precedes_update(
        self, store: StateStore, make_mission_data
    ) -> None:
        mission = await store.create_mission(make_mission_data(missionClass="destructive"))
        updated = await store.update_mission(mission.id, {"status": "running"})

        snapshots = await store.list_snapshots()
        assert len(snapshots) == 1
        assert snapshots[0].created_at < updated.updated_at
        assert updated.last_snapshot_at == snapshots[0].created_at

        document = await store.read_snapshot(snapshots[0].snapshot_id)
        saved = document["state"]["missions"][0]
        assert saved["status"] == "queued"
        assert saved["_stateVersion"] == 1

    @pytest.mark.asyncio
    async def test_running_to_failed_snapshots(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        await store.update_mission(mission.id, {"status": "running"})
        assert await store.list_snapshots() == []

        failed = await store.update_mission(mission.id, {"status": "failed"})
        snapshots = await store.list_snapshots()
        assert len(snapshots) == 1
        assert snapshots[0].created_at < failed.updated_at
        assert store.get_breaker(mission.id).failure_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_failure_fails_mutation(
        self, store: StateStore, make_mission_data, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        mission = await store.create_mission(make_mission_data(missionClass="destructive"))

        async def broken_snapshot(*args, **kwargs):
            raise StorageError("disk full", operation="write_snapshot")

        monkeypatch.setattr(store.backend, "write_snapshot", broken_snapshot)
        with pytest.raises(StorageError):
            await store.update_mission(mission.id, {"status": "running"})
        current = store.get_mission(mission.id)
        assert current.status == MissionStatus.QUEUED
        assert current.state_version == 1

    @pytest.mark.asyncio
    async def test_create_snapshot_naming(self, store: StateStore, make_mission_data) -> None:
        await store.create_mission(make_mission_data())
        first = await store.create_snapshot("manual check!")
        second = await store.create_snapshot("manual check!")
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}_manual-check(_\d+)?", first)
        assert first != second
        document = await store.read_snapshot(first)
        assert len(document["state"]["missions"]) == 1
        assert await store.read_snapshot("does-not-exist") is None


class TestArtifacts:
    """Tests for create_artifact and append_to_artifact."""

    @pytest.mark.asyncio
    async def test_mode_derived_from_type(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        artifact = await store.create_artifact(
            {
                "missionId": mission.id,
                "type": "build_log",
                "label": "build",
                "artifactMode": "immutable",
                "payload": {"entries": ["npm ci"]},
                "provenance": {"producer": "agent", "agentId": "agent-7", "commitHash": "abc123"},
            }
        )
        assert artifact.artifact_mode == ArtifactMode.APPEND_ONLY
        assert artifact.provenance.producer == Producer.AGENT
        assert artifact.provenance.agent_id == "agent-7"
        assert store.get_mission(mission.id).artifact_ids == [artifact.id]

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        with pytest.raises(ValidationError):
            await store.create_artifact({"missionId": mission.id, "type": "mixtape", "label": "x"})

    @pytest.mark.asyncio
    async def test_unknown_mission(self, store: StateStore) -> None:
        with pytest.raises(NotFoundError):
            await store.create_artifact({"missionId": "mission-0-nobody", "type": "plan", "label": "x"})

    @pytest.mark.asyncio
    async def test_append_only_gains_entries(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        log = await store.create_artifact(
            {
                "missionId": mission.id,
                "type": "runtime_log",
                "label": "runtime",
                "payload": {"entries": ["boot"]},
            }
        )
        log = await store.append_to_artifact(log.id, {"entries": ["ready"]}, files=["logs/run.txt"])
        log = await store.append_to_artifact(log.id, {"stage": "serve"})
        assert log.payload["entries"] == ["boot", "ready"]
        assert log.payload["stage"] == "serve"
        assert log.files == ["logs/run.txt"]
        assert log.updated_at is not None

        with pytest.raises(ValidationError):
            await store.append_to_artifact(log.id, {"stage": "shutdown"})
        assert store.get_artifact(log.id).payload["stage"] == "serve"

    @pytest.mark.asyncio
    async def test_immutable_rejects_append(self, store: StateStore, make_mission_data) -> None:
        mission = await store.create_mission(make_mission_data())
        diff = await store.create_artifact(
            {"missionId": mission.id, "type": "git_diff", "label": "diff", "payload": {"summary": "1 file"}}
        )
        with pytest.raises(ValidationError):
            await store.append_to_artifact(diff.id, {"extra": True})
        assert store.get_artifact(diff.id).payload == {"summary": "1 file"}


class TestIdempotentIntake:
    """Watchdog signals create at most one active mission per key."""

    @pytest.mark.asyncio
    async def test_duplicate_signal_suppressed(
        self, store: StateStore, make_mission_data, make_signal
    ) -> None:
        first = await store.create_mission_from_signal(make_mission_data(), make_signal())
        assert first.created
        assert first.mission.trigger_source == TriggerSource.WATCHDOG
        assert first.mission.idempotency_key == first.idempotency_key
        assert first.artifact.type == "signal_report"

        second = await store.create_mission_from_signal(
            make_mission_data(), make_signal(observedAt="2026-10-17T09:40:00+00:00")
        )
        assert not second.created
        assert second.mission_id == first.mission_id
        assert second.artifact is None
        assert len(store.list_missions()) == 1
        assert len(store.list_artifacts(first.mission_id)) == 1

    @pytest.mark.asyncio
    async def test_next_window_creates_new_mission(
        self, store: StateStore, make_mission_data, make_signal
    ) -> None:
        first = await store.create_mission_from_signal(make_mission_data(), make_signal())
        later = await store.create_mission_from_signal(
            make_mission_data(), make_signal(observedAt="2026-10-17T10:15:00+00:00")
        )
        assert later.created
        assert later.mission_id != first.mission_id

    @pytest.mark.asyncio
    async def test_terminal_mission_releases_key(
        self, store: StateStore, make_mission_data, make_signal
    ) -> None:
        first = await store.create_mission_from_signal(make_mission_data(), make_signal())
        await store.update_mission(first.mission_id, {"status": "complete"})
        again = await store.create_mission_from_signal(make_mission_data(), make_signal())
        assert again.created
        assert store.find_by_idempotency_key(again.idempotency_key).id == again.mission_id

    @pytest.mark.asyncio
    async def test_concurrent_duplicates(self, store: StateStore, make_mission_data, make_signal) -> None:
        results = await asyncio.gather(
            *(store.create_mission_from_signal(make_mission_data(), make_signal()) for _ in range(5))
        )
        assert sum(result.created for result in results) == 1
        assert len({result.mission_id for result in results}) == 1

    @pytest.mark.asyncio
    async def test_explicit_key_and_bad_signal(
        self, store: StateStore, make_mission_data, make_signal
    ) -> None:
        result = await store.create_mission_from_signal(
            make_mission_data(idempotencyKey="wd-cls-pricing"), make_signal()
        )
        assert result.idempotency_key == "wd-cls-pricing"
        with pytest.raises(ValidationError):
            await store.create_mission_from_signal(make_mission_data(), {"source": "lighthouse"})

    def test_derived_key_is_window_stable(self) -> None:
        from datetime import datetime, timezone

        at = datetime(2026, 10, 17, 9, 15, tzinfo=timezone.utc)
        same = datetime(2026, 10, 17, 9, 59, tzinfo=timezone.utc)
        other = datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc)
        key = derive_idempotency_key("lighthouse", "cls", at, 3600)
        assert key == derive_idempotency_key("lighthouse", "cls", same, 3600)
        assert key != derive_idempotency_key("lighthouse", "cls", other, 3600)
        assert key != derive_idempotency_key("lighthouse", "lcp", at, 3600)


class TestConcurrencyAndDurability:
    """Per-mission serialization and restart survival."""

    @pytest.mark.asyncio
    async def test_concurrent_artifacts_serialize_versions(
        self, store: StateStore, make_mission_data
    ) -> None:
        mission = await store.create_mission(make_mission_data())
        other = await store.create_mission(make_mission_data())

        await asyncio.gather(
            *(
                store.create_artifact(
                    {"missionId": mid, "type": "plan", "label": f"plan {i}"}
                )
                for i in range(10)
                for mid in (mission.id, other.id)
            )
        )
        for mid in (mission.id, other.id):
            current = store.get_mission(mid)
            assert current.state_version == 11
            assert len(current.artifact_ids) == 10
            assert len(set(current.artifact_ids)) == 10

    @pytest.mark.asyncio
    async def test_concurrent_updates_across_missions(
        self, store: StateStore, make_mission_data
    ) -> None:
        missions = [await store.create_mission(make_mission_data()) for _ in range(5)]

        updated = await asyncio.gather(
            *(
                store.update_mission(m.id, {"description": f"triaged {i}"})
                for i, m in enumerate(missions)
            )
        )
        assert [m.state_version for m in updated] == [2] * 5
        for i, mission in enumerate(missions):
            assert store.get_mission(mission.id).description == f"triaged {i}"
        assert len(await store.audit_trail()) == 10

    @pytest.mark.asyncio
    async def test_idle_mission_locks_are_released(self, store: StateStore, make_mission_data) -> None:
        missions = [await store.create_mission(make_mission_data()) for _ in range(3)]
        for mission in missions:
            await store.update_mission(mission.id, {"status": "running"})
            await store.update_mission(mission.id, {"status": "complete"})
        gc.collect()
        assert len(store._locks) == 0

    @pytest.mark.asyncio
    async def test_state_survives_restart(self, store: StateStore, make_mission_data, tmp_path) -> None:
        mission = await store.create_mission(make_mission_data(requiredArtifacts=["plan"]))
        await store.create_artifact({"missionId": mission.id, "type": "plan", "label": "plan"})
        tasks = await store.create_tasks(mission.id, [{"id": "t-1", "title": "one"}])
        await store.close()

        reopened = StateStore(SQLiteStateBackend(tmp_path / "state.db", tmp_path / "snapshots"))
        await reopened.initialize()
        try:
            restored = reopened.get_mission(mission.id)
            assert restored.state_version == 3
            assert restored.task_ids == [tasks[0].id]
            assert reopened.completion_status(mission.id).eligible
            trail = await reopened.audit_trail(mission.id)
            assert [r.action for r in trail] == ["create"]
            assert await reopened.health_check()
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_stats(self, store: StateStore, make_mission_data) -> None:
        await store.create_mission(make_mission_data())
        stats = store.get_stats()
        assert stats["missions"]["total"] == 1
        assert stats["missions"]["by_status"] == {"queued": 1}
        assert stats["tripped_breakers"] == 0
