from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, col, select

from packages.db.models import TicketTable

from .access import VisibilityScope
from .errors import ConcurrentTicketUpdateError, TicketNotFoundError, TicketPersistenceError
from .models import ActionLog, Escalation, Ticket
from .state import Criticality, Level, TicketPriority, TicketStatus

logger = logging.getLogger(__name__)


class TicketStore(Protocol):
    """Persistence port consumed by the transition engine.

    ``save`` is an atomic compare-and-set on the ticket's ``version``: it only
    succeeds when the stored version still equals ``expected_version``.
    """

    async def get(self, ticket_id: str) -> Ticket | None:
        ...

    async def add(self, ticket: Ticket) -> Ticket:
        ...

    async def save(self, ticket: Ticket, *, expected_version: int) -> Ticket:
        ...

    async def list(
        self,
        scope: VisibilityScope,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
        level: Level | None = None,
    ) -> Sequence[Ticket]:
        ...


def _matches_filters(
    ticket: Ticket,
    *,
    status: TicketStatus | None,
    priority: TicketPriority | None,
    level: Level | None,
) -> bool:
    if status is not None and ticket.status != status:
        return False
    if priority is not None and ticket.priority != priority:
        return False
    if level is not None and ticket.current_level != level:
        return False
    return True


class InMemoryTicketRepository:
    """Process-local ticket store, used when no database is configured and in tests."""

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._lock = asyncio.Lock()

    async def get(self, ticket_id: str) -> Ticket | None:
        stored = self._tickets.get(ticket_id)
        return stored.clone() if stored is not None else None

    async def add(self, ticket: Ticket) -> Ticket:
        ticket.check_invariants()
        async with self._lock:
            if ticket.id in self._tickets:
                raise TicketPersistenceError(f"Ticket {ticket.id} already exists")
            stored = ticket.clone()
            stored.version = 1
            self._tickets[ticket.id] = stored
            return stored.clone()

    async def save(self, ticket: Ticket, *, expected_version: int) -> Ticket:
        ticket.check_invariants()
        async with self._lock:
            current = self._tickets.get(ticket.id)
            if current is None:
                raise TicketNotFoundError(f"Ticket {ticket.id} not found")
            if current.version != expected_version:
                raise ConcurrentTicketUpdateError(
                    f"Ticket {ticket.id} was modified concurrently "
                    f"(expected version {expected_version}, found {current.version})"
                )
            stored = ticket.clone()
            stored.version = expected_version + 1
            self._tickets[ticket.id] = stored
            return stored.clone()

    async def list(
        self,
        scope: VisibilityScope,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
        level: Level | None = None,
    ) -> Sequence[Ticket]:
        matches = [
            ticket.clone()
            for ticket in self._tickets.values()
            if scope.matches(ticket) and _matches_filters(ticket, status=status, priority=priority, level=level)
        ]
        matches.sort(key=lambda ticket: ticket.created_at, reverse=True)
        return matches


class SQLTicketRepository:
    """Ticket store backed by a single ``tickets`` table with embedded JSON histories."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def get(self, ticket_id: str) -> Ticket | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(TicketTable, ticket_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load ticket %s", ticket_id)
            raise TicketPersistenceError(f"Failed to load ticket {ticket_id}") from exc
        if row is None:
            return None
        return self._table_to_ticket(row)

    async def add(self, ticket: Ticket) -> Ticket:
        ticket.check_invariants()
        row = TicketTable(**self._ticket_values(ticket), id=ticket.id, version=1)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as exc:
            logger.exception("Failed to insert ticket %s", ticket.id)
            raise TicketPersistenceError(f"Failed to insert ticket {ticket.id}") from exc
        stored = ticket.clone()
        stored.version = 1
        return stored

    async def save(self, ticket: Ticket, *, expected_version: int) -> Ticket:
        ticket.check_invariants()
        statement = (
            update(TicketTable)
            .where(col(TicketTable.id) == ticket.id, col(TicketTable.version) == expected_version)
            .values(**self._ticket_values(ticket), version=expected_version + 1)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(statement)
                    updated = result.rowcount
                    exists = updated > 0 or await session.get(TicketTable, ticket.id) is not None
        except SQLAlchemyError as exc:
            logger.exception("Failed to save ticket %s", ticket.id)
            raise TicketPersistenceError(f"Failed to save ticket {ticket.id}") from exc

        if not updated:
            if not exists:
                raise TicketNotFoundError(f"Ticket {ticket.id} not found")
            raise ConcurrentTicketUpdateError(
                f"Ticket {ticket.id} was modified concurrently (expected version {expected_version})"
            )
        stored = ticket.clone()
        stored.version = expected_version + 1
        return stored

    async def list(
        self,
        scope: VisibilityScope,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
        level: Level | None = None,
    ) -> Sequence[Ticket]:
        statement = select(TicketTable)
        if scope.created_by is not None:
            statement = statement.where(col(TicketTable.created_by) == scope.created_by)
        if scope.levels is not None:
            statement = statement.where(col(TicketTable.current_level).in_([item.value for item in scope.levels]))
        if scope.criticalities is not None:
            statement = statement.where(
                col(TicketTable.critical_value).in_([item.value for item in scope.criticalities])
            )
        if status is not None:
            statement = statement.where(col(TicketTable.status) == status.value)
        if priority is not None:
            statement = statement.where(col(TicketTable.priority) == priority.value)
        if level is not None:
            statement = statement.where(col(TicketTable.current_level) == level.value)
        statement = statement.order_by(col(TicketTable.created_at).desc())

        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to list tickets")
            raise TicketPersistenceError("Failed to list tickets") from exc
        return [self._table_to_ticket(row) for row in rows]

    @staticmethod
    def _ticket_values(ticket: Ticket) -> dict[str, Any]:
        return {
            "title": ticket.title,
            "description": ticket.description,
            "category": ticket.category,
            "priority": ticket.priority.value,
            "status": ticket.status.value,
            "current_level": ticket.current_level.value,
            "critical_value": ticket.critical_value.value if ticket.critical_value else None,
            "expected_completion_date": ticket.expected_completion_date,
            "created_by": ticket.created_by,
            "assigned_to": ticket.assigned_to,
            "escalation_history": [_escalation_to_json(entry) for entry in ticket.escalation_history],
            "action_logs": [_action_log_to_json(entry) for entry in ticket.action_logs],
            "created_at": ticket.created_at,
            "updated_at": ticket.updated_at,
        }

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            title=row.title,
            description=row.description,
            category=row.category,
            priority=TicketPriority(row.priority),
            status=TicketStatus(row.status),
            current_level=Level(row.current_level),
            critical_value=Criticality(row.critical_value) if row.critical_value else None,
            expected_completion_date=_ensure_datetime(row.expected_completion_date),
            created_by=row.created_by,
            assigned_to=row.assigned_to,
            escalation_history=tuple(_escalation_from_json(item) for item in row.escalation_history or []),
            action_logs=tuple(_action_log_from_json(item) for item in row.action_logs or []),
            version=row.version,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )


def _escalation_to_json(entry: Escalation) -> dict[str, Any]:
    return {
        "from_level": entry.from_level.value,
        "to_level": entry.to_level.value,
        "reason": entry.reason,
        "escalated_by": entry.escalated_by,
        "escalated_at": entry.escalated_at.isoformat(),
        "notes": entry.notes,
    }


def _escalation_from_json(data: dict[str, Any]) -> Escalation:
    return Escalation(
        from_level=Level(data["from_level"]),
        to_level=Level(data["to_level"]),
        reason=data["reason"],
        escalated_by=data["escalated_by"],
        escalated_at=_ensure_datetime(datetime.fromisoformat(data["escalated_at"])),
        notes=data.get("notes"),
    )


def _action_log_to_json(entry: ActionLog) -> dict[str, Any]:
    return {
        "action": entry.action,
        "performed_by": entry.performed_by,
        "performed_at": entry.performed_at.isoformat(),
        "details": entry.details,
        "previous_status": entry.previous_status.value if entry.previous_status else None,
        "new_status": entry.new_status.value if entry.new_status else None,
    }


def _action_log_from_json(data: dict[str, Any]) -> ActionLog:
    previous = data.get("previous_status")
    new = data.get("new_status")
    return ActionLog(
        action=data["action"],
        performed_by=data["performed_by"],
        performed_at=_ensure_datetime(datetime.fromisoformat(data["performed_at"])),
        details=data.get("details"),
        previous_status=TicketStatus(previous) if previous else None,
        new_status=TicketStatus(new) if new else None,
    )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
