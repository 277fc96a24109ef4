"""Visibility rules deciding which tickets an actor may list or open."""

from __future__ import annotations

from dataclasses import dataclass

from .models import Actor, Ticket
from .permissions import DenialReason
from .state import Criticality, L3_ELIGIBLE, Level


@dataclass(frozen=True, slots=True)
class VisibilityScope:
    """Conjunction of constraints over tickets. ``None`` leaves a field unconstrained."""

    created_by: str | None = None
    levels: frozenset[Level] | None = None
    criticalities: frozenset[Criticality] | None = None

    @classmethod
    def for_actor(cls, actor: Actor) -> "VisibilityScope":
        if actor.role == Level.L1:
            return cls(created_by=actor.id)
        if actor.role == Level.L2:
            return cls(levels=frozenset({Level.L2, Level.L3}))
        return cls(levels=frozenset({Level.L3}), criticalities=L3_ELIGIBLE)

    def denial_for(self, ticket: Ticket) -> DenialReason | None:
        """Return the reason the ticket falls outside this scope, or ``None`` when visible."""

        if self.created_by is not None and ticket.created_by != self.created_by:
            return DenialReason.NOT_OWNER
        if self.levels is not None and ticket.current_level not in self.levels:
            return DenialReason.WRONG_LEVEL
        if self.criticalities is not None and ticket.critical_value not in self.criticalities:
            return DenialReason.CRITICALITY_INELIGIBLE
        return None

    def matches(self, ticket: Ticket) -> bool:
        return self.denial_for(ticket) is None


def can_view(actor: Actor, ticket: Ticket) -> bool:
    return VisibilityScope.for_actor(actor).matches(ticket)
