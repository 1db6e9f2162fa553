"""
Execution policy: tool allow-lists and armed mode.

Missions without an explicit `allowed_tools` list fall back to the default
patterns of their class. Patterns use shell-style wildcards
(`ranking.*`, `*.get`, `*`).
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from types import MappingProxyType
from typing import Mapping, Sequence

from ..models.entities import Mission, MissionClass, RiskLevel

DEFAULT_ALLOWED_TOOLS: Mapping[MissionClass, tuple[str, ...]] = MappingProxyType(
    {
        MissionClass.EXPLORATION: (
            "*.list",
            "*.get",
            "ranking.*",
            "gsc.inspect_url",
            "provider.health",
        ),
        MissionClass.IMPLEMENTATION: (
            "*.list",
            "*.get",
            "spawn_agent",
            "task.*",
            "mission.*",
            "artifact.*",
            "ranking.*",
            "provider.health",
        ),
        MissionClass.MAINTENANCE: (
            "*.list",
            "*.get",
            "spawn_agent",
            "task.*",
            "mission.*",
            "artifact.*",
            "approval.*",
            "ranking.*",
            "provider.health",
        ),
        # Everything, but every action still needs a human approval
        MissionClass.DESTRUCTIVE: ("*",),
        MissionClass.CONTINUOUS: (
            "signal_report",
            "append_log",
            "ranking.*",
            "provider.health",
            "watchdog.*",
            "*.list",
            "*.get",
        ),
    }
)

_RISK_ORDER = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


def effective_tools(mission: Mission) -> Sequence[str]:
    """Allow-list in force for a mission."""
    if mission.allowed_tools is not None:
        return mission.allowed_tools
    return DEFAULT_ALLOWED_TOOLS[mission.mission_class]


def is_tool_allowed(mission: Mission, tool: str) -> bool:
    return any(fnmatchcase(tool, pattern) for pattern in effective_tools(mission))


def risk_rank(level: RiskLevel | str) -> int:
    return _RISK_ORDER[RiskLevel(level)]


def requires_armed_mode(risk: RiskLevel | str, threshold: RiskLevel | str) -> bool:
    """True when `risk` is strictly above the armed-mode threshold."""
    return risk_rank(risk) > risk_rank(threshold)
