"""
shared/config.py
Shared configuration for the Mission Control state engine.

Centralized paths and logging settings that every component can access.
Follows: Single Source of Truth principle
"""

import os
from pathlib import Path


class SharedConfig:
    """
    Shared configuration constants.

    Paths can be redirected with MISSION_CONTROL_HOME; tests pass explicit
    paths to the storage backend instead.
    """

    # Storage settings
    STATE_DIR = Path(
        os.getenv("MISSION_CONTROL_HOME", str(Path.home() / ".mission-control"))
    )
    DB_PATH = STATE_DIR / "state.db"
    SNAPSHOT_DIR = STATE_DIR / "snapshots"
    DB_TIMEOUT = 30  # seconds

    # Logging settings
    LOG_LEVEL = os.getenv("MISSION_CONTROL_LOG_LEVEL", "INFO")
    LOG_PATH = STATE_DIR / "logs"
    LOG_FILE = LOG_PATH / "mission_control.jsonl"

    # Entity limits
    MAX_NAME_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000
    MAX_LABEL_LENGTH = 200
