"""Domain enumerations for the EchoPulse relay."""
from __future__ import annotations

from enum import Enum


class AllianceColor(str, Enum):
    RED = "red"
    BLUE = "blue"


class Round(int, Enum):
    """RobotEvents round numbering. R16 was added after the other elimination rounds."""

    PRACTICE = 1
    QUALIFICATION = 2
    QUARTER_FINAL = 3
    SEMI_FINAL = 4
    FINAL = 5
    ROUND_OF_16 = 6


class LiveActivityEvent(str, Enum):
    """ActivityKit push event kinds."""

    START = "start"
    UPDATE = "update"
    END = "end"

    @property
    def push_type(self) -> str:
        return "liveactivity"
