"""
Unit tests for the artifact type registry.

Tests modes, payload variants and registry immutability.
"""

from __future__ import annotations

import pytest

from mission_control.core.artifact_types import (
    DEFAULT_REGISTRY,
    ArtifactCategory,
    ArtifactType,
    ArtifactTypeRegistry,
    ArtifactTypeSpec,
    build_default_registry,
)
from mission_control.models.entities import ArtifactMode
from mission_control.models.payloads import ReportPayload, SignalReportPayload


class TestRegistryContents:
    """Every artifact type is registered exactly once."""

    def test_every_enum_member_registered(self) -> None:
        for member in ArtifactType:
            assert DEFAULT_REGISTRY.is_registered(member.value)
        assert len(DEFAULT_REGISTRY) == len(ArtifactType)

    def test_unknown_type_not_registered(self) -> None:
        assert not DEFAULT_REGISTRY.is_registered("tarot_reading")
        assert "tarot_reading" not in DEFAULT_REGISTRY

    def test_logs_are_append_only(self) -> None:
        assert DEFAULT_REGISTRY.mode_for("build_log") == ArtifactMode.APPEND_ONLY
        assert DEFAULT_REGISTRY.mode_for("runtime_log") == ArtifactMode.APPEND_ONLY

    def test_everything_else_immutable(self) -> None:
        for name in DEFAULT_REGISTRY:
            if name in ("build_log", "runtime_log"):
                continue
            assert DEFAULT_REGISTRY.mode_for(name) == ArtifactMode.IMMUTABLE

    def test_mode_for_unknown_raises(self) -> None:
        with pytest.raises(KeyError):
            DEFAULT_REGISTRY.mode_for("nope")

    def test_categories(self) -> None:
        assert DEFAULT_REGISTRY.is_safety_type("approval_record")
        assert DEFAULT_REGISTRY.is_safety_type("circuit_breaker_trip")
        assert not DEFAULT_REGISTRY.is_safety_type("git_diff")
        assert DEFAULT_REGISTRY.is_execution_type("mission_bootstrap")
        assert set(DEFAULT_REGISTRY.names_in(ArtifactCategory.RANKINGS)) == {
            "visibility_map",
            "local_pack_snapshot",
            "organic_serp_snapshot",
            "rank_delta_report",
            "scan_metadata",
            "competitor_analysis",
        }

    def test_payload_variants(self) -> None:
        assert DEFAULT_REGISTRY.payload_model_for("signal_report") is SignalReportPayload
        assert DEFAULT_REGISTRY.payload_model_for("lighthouse_report") is ReportPayload


class TestRegistryImmutability:
    """The registry is built once and cannot be changed."""

    def test_specs_mapping_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            DEFAULT_REGISTRY._specs["new_type"] = None  # type: ignore[index]

    def test_duplicate_spec_rejected(self) -> None:
        spec = ArtifactTypeSpec("plan", ArtifactCategory.SAFETY, ArtifactMode.IMMUTABLE, ReportPayload)
        with pytest.raises(ValueError):
            ArtifactTypeRegistry([spec, spec])

    def test_builds_are_independent(self) -> None:
        assert build_default_registry() is not DEFAULT_REGISTRY
        assert set(build_default_registry()) == set(DEFAULT_REGISTRY)


class TestParsePayload:
    """Payloads are checked against the type's variant."""

    def test_valid_signal_report_normalized_to_camel_case(self) -> None:
        payload, errors = DEFAULT_REGISTRY.parse_payload(
            "signal_report",
            {"source": "lighthouse", "metric": "cls", "value": 0.3, "previous_value": 0.1},
        )
        assert errors == []
        assert payload is not None
        assert payload["previousValue"] == 0.1
        assert payload["triggered"] is True

    def test_missing_required_field(self) -> None:
        payload, errors = DEFAULT_REGISTRY.parse_payload("signal_report", {"source": "x"})
        assert payload is None
        assert any(e.startswith("payload.metric") for e in errors)
        assert any(e.startswith("payload.value") for e in errors)

    def test_closed_variant_rejects_unknown_keys(self) -> None:
        _, errors = DEFAULT_REGISTRY.parse_payload(
            "approval_record",
            {
                "targetType": "mission",
                "targetId": "m1",
                "decision": "approve",
                "approver": "ops",
                "mood": "cheerful",
            },
        )
        assert any("mood" in e for e in errors)

    def test_bad_enum_value(self) -> None:
        _, errors = DEFAULT_REGISTRY.parse_payload(
            "approval_record",
            {"targetType": "mission", "targetId": "m1", "decision": "maybe", "approver": "ops"},
        )
        assert any(e.startswith("payload.decision") for e in errors)

    def test_open_report_accepts_extra_fields(self) -> None:
        payload, errors = DEFAULT_REGISTRY.parse_payload(
            "lighthouse_report", {"summary": "ok", "performance": 91}
        )
        assert errors == []
        assert payload == {"summary": "ok", "performance": 91}

    def test_none_payload_for_open_variant(self) -> None:
        payload, errors = DEFAULT_REGISTRY.parse_payload("git_diff", None)
        assert errors == []
        assert payload == {}

    def test_unregistered_type(self) -> None:
        payload, errors = DEFAULT_REGISTRY.parse_payload("nope", {})
        assert payload is None
        assert errors == ["type: 'nope' is not a registered artifact type"]
