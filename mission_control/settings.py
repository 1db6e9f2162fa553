"""Environment-driven limits for the state engine.

Circuit breaker thresholds, the watchdog deduplication window and the armed
mode risk threshold. Values come from MISSION_CONTROL_* variables and are
loaded once; the engine receives the instance through its constructor.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_RISK_LEVELS = ("low", "medium", "high")


class EngineSettings(BaseSettings):
    """Safety knobs for circuit breakers, budgets and signal intake."""

    model_config = SettingsConfigDict(env_prefix="MISSION_CONTROL_", extra="ignore")

    max_failures_per_mission: int = Field(default=3)
    max_immediate_execs_per_mission: int = Field(default=3)
    signal_window_seconds: int = Field(default=3600)
    risk_threshold: str = Field(default="medium")
    budget_warning_ratio: float = Field(default=0.8)

    @field_validator(
        "max_failures_per_mission",
        "max_immediate_execs_per_mission",
        "signal_window_seconds",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("risk_threshold")
    @classmethod
    def _validate_threshold(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _RISK_LEVELS:
            raise ValueError("MISSION_CONTROL_RISK_THRESHOLD must be low, medium, or high")
        return normalized

    @field_validator("budget_warning_ratio")
    @classmethod
    def _validate_ratio(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("budget_warning_ratio must be in (0, 1]")
        return value
