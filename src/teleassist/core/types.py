"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    CONSOLE = "console"


class Intent(StrEnum):
    CODING = "coding"
    MATH = "math"
    GENERAL = "general"
    CURRENT_EVENTS = "current_events"
    AMBIGUOUS_PYTHON = "ambiguous_python"


class Verbosity(StrEnum):
    CONCISE = "concise"
    NORMAL = "normal"
    DETAILED = "detailed"
