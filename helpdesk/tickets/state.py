from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    NEW = "New"
    ATTENDING = "Attending"
    COMPLETED = "Completed"
    ESCALATED = "Escalated"
    RESOLVED = "Resolved"


class TicketPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Level(str, Enum):
    """Support tiers. Agent roles share the same values."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


class Criticality(str, Enum):
    C1 = "C1"
    C2 = "C2"
    C3 = "C3"


_LEVEL_ORDER: tuple[Level, ...] = (Level.L1, Level.L2, Level.L3)

# Criticalities allowed to sit at the top tier.
L3_ELIGIBLE: frozenset[Criticality] = frozenset({Criticality.C1, Criticality.C2})


class LevelLadder:
    """Validate tier movements. Tickets only ever climb one rung at a time."""

    @classmethod
    def initial_level(cls) -> Level:
        return Level.L1

    @classmethod
    def next_level(cls, current: Level) -> Level | None:
        position = current.rank + 1
        if position >= len(_LEVEL_ORDER):
            return None
        return _LEVEL_ORDER[position]

    @classmethod
    def can_climb(cls, current: Level, target: Level) -> bool:
        return cls.next_level(current) == target

    @classmethod
    def assert_climb(cls, current: Level, target: Level) -> None:
        if not cls.can_climb(current, target):
            raise ValueError(f"Invalid level transition: {current.value} -> {target.value}")
