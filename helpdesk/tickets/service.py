from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from opentelemetry import trace

from . import audit
from .access import VisibilityScope
from .errors import (
    ConcurrentTicketUpdateError,
    InvalidTicketTransitionError,
    TicketForbiddenError,
    TicketNotFoundError,
    UnauthenticatedError,
)
from .models import (
    ACTION_MAX_LENGTH,
    DETAILS_MAX_LENGTH,
    NOTES_MAX_LENGTH,
    REASON_MAX_LENGTH,
    RESOLUTION_MAX_LENGTH,
    ActionLog,
    Actor,
    Ticket,
)
from .permissions import DenialReason, Operation, PermissionMatrix
from .repository import TicketStore
from .state import Criticality, Level, LevelLadder, TicketPriority, TicketStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Statuses only reachable through their dedicated operations.
_RESERVED_STATUSES = frozenset({TicketStatus.ESCALATED, TicketStatus.RESOLVED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class TicketPolicy:
    """Behaviour switches for edge cases the permission matrix does not settle."""

    resolved_is_terminal: bool = True
    strict_criticality_updates: bool = False
    reserve_workflow_statuses: bool = True


class TicketService:
    """Permission-gated transitions over tickets, each saved together with its audit entries."""

    def __init__(
        self,
        store: TicketStore,
        *,
        matrix: PermissionMatrix | None = None,
        policy: TicketPolicy | None = None,
        clock: Clock | None = None,
        tracer: trace.Tracer | None = None,
    ) -> None:
        self._store = store
        self._matrix = matrix or PermissionMatrix()
        self._policy = policy or TicketPolicy()
        self._clock = clock or _utcnow
        self._tracer = tracer or trace.get_tracer(__name__)

    @property
    def policy(self) -> TicketPolicy:
        return self._policy

    async def create_ticket(
        self,
        actor: Actor | None,
        *,
        title: str,
        description: str,
        category: str,
        priority: TicketPriority,
        expected_completion_date: datetime,
    ) -> Ticket:
        actor = self._require_actor(actor)
        self._authorize(actor, Operation.CREATE)

        now = self._clock()
        if _as_aware(expected_completion_date) <= now:
            raise InvalidTicketTransitionError("Expected completion date must be in the future")

        ticket = Ticket(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            category=category,
            priority=TicketPriority(priority),
            expected_completion_date=expected_completion_date,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
            status=TicketStatus.NEW,
            current_level=LevelLadder.initial_level(),
        )
        ticket.record_action(audit.created_entry(actor, priority=ticket.priority, at=now))

        with self._tracer.start_as_current_span("tickets.add", attributes={"ticket.id": ticket.id}):
            stored = await self._store.add(ticket)
        logger.info("Ticket %s created by %s", stored.id, actor.id)
        return stored

    async def get_ticket(self, actor: Actor | None, ticket_id: str) -> Ticket:
        actor = self._require_actor(actor)
        ticket = await self._load(ticket_id)
        denial = VisibilityScope.for_actor(actor).denial_for(ticket)
        if denial is not None:
            logger.warning(
                "Actor %s (%s) denied access to ticket %s: %s",
                actor.id,
                actor.role.value,
                ticket_id,
                denial.value,
            )
            raise TicketForbiddenError("Access denied", reason=denial.value)
        return ticket

    async def list_tickets(
        self,
        actor: Actor | None,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
        level: Level | None = None,
    ) -> Sequence[Ticket]:
        actor = self._require_actor(actor)
        scope = VisibilityScope.for_actor(actor)
        with self._tracer.start_as_current_span("tickets.list", attributes={"actor.role": actor.role.value}):
            return await self._store.list(scope, status=status, priority=priority, level=level)

    async def update_status(
        self,
        actor: Actor | None,
        ticket_id: str,
        *,
        status: TicketStatus | None = None,
        critical_value: Criticality | None = None,
    ) -> Ticket:
        actor = self._require_actor(actor)
        ticket = await self._load(ticket_id)
        self._ensure_open(ticket)
        self._authorize(actor, Operation.UPDATE_STATUS, ticket)

        if self._policy.reserve_workflow_statuses and status in _RESERVED_STATUSES:
            raise InvalidTicketTransitionError(
                f"Status {status.value} can only be set by the dedicated "
                f"{'escalate' if status == TicketStatus.ESCALATED else 'resolve'} operation"
            )

        apply_criticality = critical_value is not None and actor.role == Level.L2
        if critical_value is not None and not apply_criticality and self._policy.strict_criticality_updates:
            raise TicketForbiddenError(
                "Only L2 agents can update critical value",
                reason=DenialReason.ROLE_NOT_PERMITTED.value,
            )

        now = self._clock()
        draft = ticket.clone()
        previous_status = draft.status
        new_status = status or previous_status
        draft.change_status(new_status)

        criticality_change: tuple[Criticality | None, Criticality] | None = None
        ignored: Criticality | None = None
        if apply_criticality and critical_value is not None:
            criticality_change = (draft.critical_value, critical_value)
            draft.assign_criticality(critical_value)
        elif critical_value is not None:
            ignored = critical_value
            logger.info(
                "Ignoring critical value %s from %s actor %s on ticket %s",
                critical_value.value,
                actor.role.value,
                actor.id,
                ticket_id,
            )

        entry = audit.status_entry(
            actor,
            previous=previous_status,
            new=new_status,
            at=now,
            criticality_change=criticality_change,
            ignored_criticality=ignored,
        )
        return await self._commit(draft, entry, expected_version=ticket.version, now=now)

    async def assign_criticality(
        self,
        actor: Actor | None,
        ticket_id: str,
        *,
        critical_value: Criticality | str,
    ) -> Ticket:
        actor = self._require_actor(actor)
        ticket = await self._load(ticket_id)
        self._ensure_open(ticket)
        self._authorize(actor, Operation.ASSIGN_CRITICALITY, ticket)

        try:
            value = Criticality(critical_value)
        except ValueError as exc:
            raise InvalidTicketTransitionError("Critical value must be C1, C2, or C3") from exc

        now = self._clock()
        draft = ticket.clone()
        previous = draft.critical_value
        draft.assign_criticality(value)
        entry = audit.criticality_entry(actor, previous=previous, new=value, at=now)
        return await self._commit(draft, entry, expected_version=ticket.version, now=now)

    async def escalate(
        self,
        actor: Actor | None,
        ticket_id: str,
        *,
        to_level: Level,
        reason: str,
        notes: str | None = None,
    ) -> Ticket:
        actor = self._require_actor(actor)
        ticket = await self._load(ticket_id)
        self._ensure_open(ticket)
        self._authorize(actor, Operation.ESCALATE, ticket, target=to_level)

        reason = (reason or "").strip()
        if not reason:
            raise InvalidTicketTransitionError("Escalation reason is required")
        if len(reason) > REASON_MAX_LENGTH:
            raise InvalidTicketTransitionError(
                f"Escalation reason must not exceed {REASON_MAX_LENGTH} characters"
            )
        notes = notes.strip() if notes else None
        if notes and len(notes) > NOTES_MAX_LENGTH:
            raise InvalidTicketTransitionError(f"Notes must not exceed {NOTES_MAX_LENGTH} characters")

        now = self._clock()
        draft = ticket.clone()
        from_level = draft.current_level
        previous_status = draft.status
        draft.climb_to(to_level)
        draft.change_status(TicketStatus.ESCALATED)

        escalation, entry = audit.escalation_entries(
            actor,
            from_level=from_level,
            to_level=to_level,
            previous_status=previous_status,
            reason=reason,
            notes=notes,
            at=now,
        )
        draft.record_escalation(escalation)
        stored = await self._commit(draft, entry, expected_version=ticket.version, now=now)
        logger.info(
            "Ticket %s escalated from %s to %s by %s",
            ticket_id,
            from_level.value,
            to_level.value,
            actor.id,
        )
        return stored

    async def resolve(self, actor: Actor | None, ticket_id: str, *, resolution: str) -> Ticket:
        actor = self._require_actor(actor)
        ticket = await self._load(ticket_id)
        self._ensure_open(ticket)
        self._authorize(actor, Operation.RESOLVE, ticket)

        if not resolution or not resolution.strip():
            raise InvalidTicketTransitionError("Resolution is required")
        if len(resolution) > RESOLUTION_MAX_LENGTH:
            raise InvalidTicketTransitionError(
                f"Resolution must not exceed {RESOLUTION_MAX_LENGTH} characters"
            )

        now = self._clock()
        draft = ticket.clone()
        previous_status = draft.status
        draft.change_status(TicketStatus.RESOLVED)
        entry = audit.resolution_entry(actor, previous=previous_status, resolution=resolution, at=now)
        stored = await self._commit(draft, entry, expected_version=ticket.version, now=now)
        logger.info("Ticket %s resolved by %s", ticket_id, actor.id)
        return stored

    async def add_action_log(
        self,
        actor: Actor | None,
        ticket_id: str,
        *,
        action: str,
        details: str | None = None,
    ) -> Ticket:
        actor = self._require_actor(actor)
        ticket = await self._load(ticket_id)
        self._ensure_open(ticket)
        self._authorize(actor, Operation.ADD_ACTION_LOG, ticket)

        action = (action or "").strip()
        if not action:
            raise InvalidTicketTransitionError("Action description is required")
        if len(action) > ACTION_MAX_LENGTH:
            raise InvalidTicketTransitionError(
                f"Action description must not exceed {ACTION_MAX_LENGTH} characters"
            )
        details = details.strip() if details else None
        if details and len(details) > DETAILS_MAX_LENGTH:
            raise InvalidTicketTransitionError(f"Details must not exceed {DETAILS_MAX_LENGTH} characters")

        now = self._clock()
        draft = ticket.clone()
        entry = audit.note_entry(actor, action=action, details=details, at=now)
        return await self._commit(draft, entry, expected_version=ticket.version, now=now)

    def _require_actor(self, actor: Actor | None) -> Actor:
        if actor is None:
            raise UnauthenticatedError()
        return actor

    async def _load(self, ticket_id: str) -> Ticket:
        with self._tracer.start_as_current_span("tickets.load", attributes={"ticket.id": ticket_id}):
            ticket = await self._store.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    def _ensure_open(self, ticket: Ticket) -> None:
        if self._policy.resolved_is_terminal and ticket.is_resolved:
            raise InvalidTicketTransitionError(f"Ticket {ticket.id} is already resolved")

    def _authorize(
        self,
        actor: Actor,
        operation: Operation,
        ticket: Ticket | None = None,
        *,
        target: Level | None = None,
    ) -> None:
        decision = self._matrix.evaluate(
            actor.role,
            operation,
            level=ticket.current_level if ticket is not None else None,
            criticality=ticket.critical_value if ticket is not None else None,
            target=target,
        )
        if not decision.allowed:
            logger.warning(
                "Denied %s for %s actor %s: %s",
                operation.value,
                actor.role.value,
                actor.id,
                decision.message,
            )
        decision.raise_for_denial()

    async def _commit(self, draft: Ticket, entry: ActionLog, *, expected_version: int, now: datetime) -> Ticket:
        draft.record_action(entry)
        draft.updated_at = now
        attributes = {"ticket.id": draft.id, "ticket.version": expected_version, "ticket.action": entry.action}
        with self._tracer.start_as_current_span("tickets.save", attributes=attributes):
            try:
                return await self._store.save(draft, expected_version=expected_version)
            except ConcurrentTicketUpdateError:
                logger.warning("Lost optimistic lock on ticket %s at version %s", draft.id, expected_version)
                raise


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
