"""
Unit tests for schema validators.

Validators never raise; they return ordered field-level messages.
"""

from __future__ import annotations

from mission_control.core.artifact_types import DEFAULT_REGISTRY
from mission_control.core.validators import (
    ValidationResult,
    validate_artifact,
    validate_artifact_append,
    validate_breaker_state,
    validate_mission,
    validate_patch,
    validate_task,
)
from mission_control.models.entities import ArtifactMode


class TestValidateMission:
    """Tests for validate_mission."""

    def test_minimal_valid(self) -> None:
        result = validate_mission({"name": "m", "missionClass": "exploration"}, DEFAULT_REGISTRY)
        assert result.valid
        assert result.errors == []

    def test_snake_case_accepted(self) -> None:
        result = validate_mission({"name": "m", "mission_class": "exploration"}, DEFAULT_REGISTRY)
        assert result.valid

    def test_missing_required_fields(self) -> None:
        result = validate_mission({}, DEFAULT_REGISTRY)
        assert not result.valid
        assert any(e.startswith("name") for e in result.errors)
        assert any(e.startswith("missionClass") for e in result.errors)

    def test_bad_enum(self) -> None:
        result = validate_mission({"name": "m", "missionClass": "yolo"}, DEFAULT_REGISTRY)
        assert any(e.startswith("missionClass") for e in result.errors)

    def test_name_too_long(self) -> None:
        result = validate_mission({"name": "x" * 201, "missionClass": "exploration"}, DEFAULT_REGISTRY)
        assert any(e.startswith("name") for e in result.errors)

    def test_unregistered_required_artifact(self) -> None:
        result = validate_mission(
            {"name": "m", "missionClass": "maintenance", "requiredArtifacts": ["signal_report", "nope"]},
            DEFAULT_REGISTRY,
        )
        assert result.errors == ["requiredArtifacts: 'nope' is not a registered artifact type"]

    def test_negative_cost_ceiling(self) -> None:
        result = validate_mission(
            {"name": "m", "missionClass": "maintenance", "maxEstimatedCost": -1},
            DEFAULT_REGISTRY,
        )
        assert any(e.startswith("maxEstimatedCost") for e in result.errors)

    def test_cannot_create_complete_or_locked(self) -> None:
        for status in ("complete", "locked"):
            result = validate_mission(
                {"name": "m", "missionClass": "maintenance", "status": status},
                DEFAULT_REGISTRY,
            )
            assert not result.valid

    def test_blocked_requires_reason(self) -> None:
        result = validate_mission(
            {"name": "m", "missionClass": "maintenance", "status": "blocked"},
            DEFAULT_REGISTRY,
        )
        assert result.errors == ["blockedReason: required when status is 'blocked'"]

    def test_empty_tool_pattern(self) -> None:
        result = validate_mission(
            {"name": "m", "missionClass": "maintenance", "allowedTools": ["task.*", " "]},
            DEFAULT_REGISTRY,
        )
        assert result.errors == ["allowedTools: tool patterns cannot be empty"]

    def test_non_mapping_input(self) -> None:
        result = validate_mission(["not", "a", "dict"], DEFAULT_REGISTRY)
        assert result.errors == ["<root>: expected an object, got list"]


class TestValidateTask:
    """Tests for validate_task."""

    def test_valid(self) -> None:
        assert validate_task({"missionId": "m1", "title": "t"}).valid

    def test_duplicate_deps(self) -> None:
        result = validate_task({"missionId": "m1", "title": "t", "deps": ["a", "a"]})
        assert result.errors == ["deps: 'a' is listed more than once"]

    def test_self_dependency(self) -> None:
        result = validate_task({"id": "t1", "missionId": "m1", "title": "t", "deps": ["t1"]})
        assert "deps: task 't1' cannot depend on itself" in result.errors

    def test_unknown_dep_when_known_ids_given(self) -> None:
        result = validate_task(
            {"missionId": "m1", "title": "t", "deps": ["a", "b"]},
            known_task_ids=["a"],
        )
        assert result.errors == ["deps: 'b' does not reference a known task"]

    def test_existence_not_checked_without_known_ids(self) -> None:
        assert validate_task({"missionId": "m1", "title": "t", "deps": ["ghost"]}).valid

    def test_must_start_pending(self) -> None:
        result = validate_task({"missionId": "m1", "title": "t", "status": "ready"})
        assert result.errors == ["status: tasks are created as 'pending'"]

    def test_bad_task_type(self) -> None:
        result = validate_task({"missionId": "m1", "title": "t", "taskType": "nap"})
        assert any(e.startswith("taskType") for e in result.errors)


class TestValidateArtifact:
    """Tests for validate_artifact."""

    def test_valid_with_default_provenance(self) -> None:
        result = validate_artifact(
            {"missionId": "m1", "type": "git_diff", "label": "diff"},
            DEFAULT_REGISTRY,
        )
        assert result.valid

    def test_unregistered_type(self) -> None:
        result = validate_artifact(
            {"missionId": "m1", "type": "horoscope", "label": "x"},
            DEFAULT_REGISTRY,
        )
        assert result.errors == ["type: 'horoscope' is not a registered artifact type"]

    def test_payload_shape_checked(self) -> None:
        result = validate_artifact(
            {"missionId": "m1", "type": "signal_report", "label": "s", "payload": {"source": "x"}},
            DEFAULT_REGISTRY,
        )
        assert not result.valid
        assert all(e.startswith("payload.") for e in result.errors)

    def test_bad_producer(self) -> None:
        result = validate_artifact(
            {"missionId": "m1", "type": "git_diff", "label": "d", "provenance": {"producer": "ghost"}},
            DEFAULT_REGISTRY,
        )
        assert any(e.startswith("provenance.producer") for e in result.errors)

    def test_caller_mode_ignored(self) -> None:
        result = validate_artifact(
            {"missionId": "m1", "type": "git_diff", "label": "d", "artifactMode": "append-only"},
            DEFAULT_REGISTRY,
        )
        assert result.valid

    def test_label_too_long(self) -> None:
        result = validate_artifact(
            {"missionId": "m1", "type": "git_diff", "label": "x" * 201},
            DEFAULT_REGISTRY,
        )
        assert any(e.startswith("label") for e in result.errors)


class TestValidateBreakerState:
    """Tests for validate_breaker_state."""

    def test_valid(self) -> None:
        assert validate_breaker_state({"missionId": "m1", "failureCount": 2}).valid

    def test_negative_counter(self) -> None:
        result = validate_breaker_state({"missionId": "m1", "failureCount": -1})
        assert any(e.startswith("failureCount") for e in result.errors)

    def test_tripped_requires_time_and_reason(self) -> None:
        result = validate_breaker_state({"missionId": "m1", "tripped": True})
        assert result.errors == [
            "trippedAt: required when tripped",
            "trippedReason: required when tripped",
        ]


class TestValidateArtifactAppend:
    """Append-only artifacts only gain entries."""

    def test_immutable_rejects(self) -> None:
        result = validate_artifact_append(ArtifactMode.IMMUTABLE, {}, {"a": 1})
        assert not result.valid

    def test_new_key_allowed(self) -> None:
        assert validate_artifact_append(ArtifactMode.APPEND_ONLY, {"a": 1}, {"b": 2}).valid

    def test_list_extension_allowed(self) -> None:
        assert validate_artifact_append(
            ArtifactMode.APPEND_ONLY, {"entries": ["x"]}, {"entries": ["y"]}
        ).valid

    def test_overwrite_rejected(self) -> None:
        result = validate_artifact_append(ArtifactMode.APPEND_ONLY, {"a": 1}, {"a": 2})
        assert result.errors == ["payload.a: existing entries cannot be overwritten"]

    def test_empty_append_rejected(self) -> None:
        assert not validate_artifact_append(ArtifactMode.APPEND_ONLY, {}, {}).valid


class TestValidatePatch:
    """Only editable fields may be patched."""

    def test_alias_and_name(self) -> None:
        result = validate_patch(
            {"status": "running", "blockedReason": None},
            {"status", "blocked_reason"},
            {"blockedReason": "blocked_reason"},
        )
        assert result.valid

    def test_protected_field(self) -> None:
        result = validate_patch({"_stateVersion": 9}, {"status"}, {})
        assert result.errors == ["_stateVersion: field cannot be patched"]

    def test_empty_patch(self) -> None:
        assert validate_patch({}, {"status"}, {}).errors == ["<root>: patch is empty"]


def test_validation_result_to_dict() -> None:
    result = ValidationResult(["a: bad"])
    assert result.to_dict() == {"valid": False, "errors": ["a: bad"]}
