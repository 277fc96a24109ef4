"""Builders for the entries appended to a ticket's audit trail."""

from __future__ import annotations

from datetime import datetime

from .models import RESOLUTION_DETAILS_PREFIX, ActionLog, Actor, Escalation
from .state import Criticality, Level, TicketPriority, TicketStatus

TICKET_CREATED = "Ticket created"
TICKET_RESOLVED = "Ticket resolved"
CRITICAL_VALUE_UPDATED = "Critical value updated"


def _criticality_label(value: Criticality | None) -> str:
    return value.value if value is not None else "none"


def created_entry(actor: Actor, *, priority: TicketPriority, at: datetime) -> ActionLog:
    return ActionLog(
        action=TICKET_CREATED,
        performed_by=actor.id,
        performed_at=at,
        details=f"Ticket created with priority {priority.value}",
        new_status=TicketStatus.NEW,
    )


def status_entry(
    actor: Actor,
    *,
    previous: TicketStatus,
    new: TicketStatus,
    at: datetime,
    criticality_change: tuple[Criticality | None, Criticality] | None = None,
    ignored_criticality: Criticality | None = None,
) -> ActionLog:
    details: str | None = None
    if criticality_change is not None:
        before, after = criticality_change
        details = f"Critical value changed from {_criticality_label(before)} to {after.value}"
    elif ignored_criticality is not None:
        details = (
            f"Critical value {ignored_criticality.value} ignored: "
            f"only L2 agents can update critical value"
        )
    return ActionLog(
        action=f"Status updated from {previous.value} to {new.value}",
        performed_by=actor.id,
        performed_at=at,
        details=details,
        previous_status=previous,
        new_status=new,
    )


def criticality_entry(
    actor: Actor, *, previous: Criticality | None, new: Criticality, at: datetime
) -> ActionLog:
    return ActionLog(
        action=CRITICAL_VALUE_UPDATED,
        performed_by=actor.id,
        performed_at=at,
        details=f"Critical value changed from {_criticality_label(previous)} to {new.value}",
    )


def escalation_entries(
    actor: Actor,
    *,
    from_level: Level,
    to_level: Level,
    previous_status: TicketStatus,
    reason: str,
    notes: str | None,
    at: datetime,
) -> tuple[Escalation, ActionLog]:
    """Return the escalation record and its matching action log entry."""

    escalation = Escalation(
        from_level=from_level,
        to_level=to_level,
        reason=reason,
        escalated_by=actor.id,
        escalated_at=at,
        notes=notes,
    )
    details = f"Reason: {reason}"
    if notes:
        details += f" | Notes: {notes}"
    action = ActionLog(
        action=f"Ticket escalated from {from_level.value} to {to_level.value}",
        performed_by=actor.id,
        performed_at=at,
        details=details,
        previous_status=previous_status,
        new_status=TicketStatus.ESCALATED,
    )
    return escalation, action


def resolution_entry(
    actor: Actor, *, previous: TicketStatus, resolution: str, at: datetime
) -> ActionLog:
    return ActionLog(
        action=TICKET_RESOLVED,
        performed_by=actor.id,
        performed_at=at,
        details=f"{RESOLUTION_DETAILS_PREFIX}{resolution}",
        previous_status=previous,
        new_status=TicketStatus.RESOLVED,
    )


def note_entry(actor: Actor, *, action: str, details: str | None, at: datetime) -> ActionLog:
    return ActionLog(action=action, performed_by=actor.id, performed_at=at, details=details)
