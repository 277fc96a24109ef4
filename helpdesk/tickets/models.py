from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from .errors import InvalidTicketTransitionError
from .permissions import DenialReason
from .state import Criticality, L3_ELIGIBLE, Level, LevelLadder, TicketPriority, TicketStatus

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000
CATEGORY_MAX_LENGTH = 100
REASON_MAX_LENGTH = 500
NOTES_MAX_LENGTH = 1000
ACTION_MAX_LENGTH = 200
DETAILS_MAX_LENGTH = 1000
RESOLUTION_DETAILS_PREFIX = "Resolution: "
# Resolution text is stored inside the action-log details.
RESOLUTION_MAX_LENGTH = DETAILS_MAX_LENGTH - len(RESOLUTION_DETAILS_PREFIX)

C3_AT_L3_MESSAGE = "C3 tickets cannot be escalated to L3. Only C1 and C2 tickets can reach L3."


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated caller as resolved by the auth layer."""

    id: str
    role: Level


@dataclass(frozen=True, slots=True)
class Escalation:
    """Record of a ticket moving up one support tier."""

    from_level: Level
    to_level: Level
    reason: str
    escalated_by: str
    escalated_at: datetime
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class ActionLog:
    """History entry describing a change or note on a ticket."""

    action: str
    performed_by: str
    performed_at: datetime
    details: str | None = None
    previous_status: TicketStatus | None = None
    new_status: TicketStatus | None = None


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket and its embedded audit trail.

    The two history sequences are tuples of frozen records. They only grow
    through :meth:`record_action` and :meth:`record_escalation`.
    """

    id: str
    title: str
    description: str
    category: str
    priority: TicketPriority
    expected_completion_date: datetime
    created_by: str
    created_at: datetime
    updated_at: datetime
    status: TicketStatus = TicketStatus.NEW
    current_level: Level = Level.L1
    critical_value: Criticality | None = None
    assigned_to: str | None = None
    escalation_history: tuple[Escalation, ...] = field(default_factory=tuple)
    action_logs: tuple[ActionLog, ...] = field(default_factory=tuple)
    version: int = 0

    @property
    def is_resolved(self) -> bool:
        return self.status == TicketStatus.RESOLVED

    def clone(self) -> "Ticket":
        # Histories are immutable tuples of frozen records, so a shallow copy is independent.
        return replace(self)

    def change_status(self, status: TicketStatus) -> None:
        self.status = status

    def assign_criticality(self, value: Criticality) -> None:
        _ensure_level_criticality(self.current_level, value)
        self.critical_value = value

    def climb_to(self, level: Level) -> None:
        try:
            LevelLadder.assert_climb(self.current_level, level)
        except ValueError as exc:
            raise InvalidTicketTransitionError(str(exc)) from exc
        _ensure_level_criticality(level, self.critical_value)
        self.current_level = level

    def record_action(self, entry: ActionLog) -> None:
        self.action_logs = (*self.action_logs, entry)

    def record_escalation(self, entry: Escalation) -> None:
        self.escalation_history = (*self.escalation_history, entry)

    def check_invariants(self) -> None:
        _ensure_level_criticality(self.current_level, self.critical_value)


def _ensure_level_criticality(level: Level, criticality: Criticality | None) -> None:
    if level == Level.L3 and criticality is not None and criticality not in L3_ELIGIBLE:
        raise InvalidTicketTransitionError(C3_AT_L3_MESSAGE, reason=DenialReason.CRITICALITY_INELIGIBLE.value)
