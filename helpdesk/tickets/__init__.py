"""Ticket lifecycle domain: entities, permission matrix, visibility and transitions."""

from .access import VisibilityScope, can_view
from .errors import (
    ConcurrentTicketUpdateError,
    InvalidTicketTransitionError,
    TicketForbiddenError,
    TicketNotFoundError,
    TicketPersistenceError,
    TicketServiceError,
    UnauthenticatedError,
)
from .models import ActionLog, Actor, Escalation, Ticket
from .permissions import DenialReason, Operation, PermissionMatrix
from .repository import InMemoryTicketRepository, SQLTicketRepository, TicketStore
from .service import TicketPolicy, TicketService
from .state import Criticality, Level, LevelLadder, TicketPriority, TicketStatus

__all__ = [
    "ActionLog",
    "Actor",
    "ConcurrentTicketUpdateError",
    "Criticality",
    "DenialReason",
    "Escalation",
    "InMemoryTicketRepository",
    "InvalidTicketTransitionError",
    "Level",
    "LevelLadder",
    "Operation",
    "PermissionMatrix",
    "SQLTicketRepository",
    "Ticket",
    "TicketForbiddenError",
    "TicketNotFoundError",
    "TicketPersistenceError",
    "TicketPolicy",
    "TicketPriority",
    "TicketService",
    "TicketServiceError",
    "TicketStatus",
    "TicketStore",
    "UnauthenticatedError",
    "VisibilityScope",
    "can_view",
]
