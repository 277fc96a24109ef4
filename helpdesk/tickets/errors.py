"""Typed failures raised by the ticket transition engine."""

from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class UnauthenticatedError(TicketServiceError):
    """Raised when an operation is attempted without an actor."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""


class TicketForbiddenError(TicketServiceError):
    """Raised when the permission matrix or access filter denies an actor."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class InvalidTicketTransitionError(TicketServiceError):
    """Raised when a payload is inconsistent with the ticket's current state."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class TicketPersistenceError(TicketServiceError):
    """Opaque failure reported by the ticket store."""


class ConcurrentTicketUpdateError(TicketPersistenceError):
    """Raised when a save loses the optimistic lock on a ticket."""
