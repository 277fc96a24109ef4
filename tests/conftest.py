from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.tickets.models import ActionLog, Actor, Ticket
from helpdesk.tickets.repository import InMemoryTicketRepository
from helpdesk.tickets.service import TicketPolicy, TicketService
from helpdesk.tickets.state import Criticality, Level, TicketPriority, TicketStatus

FIXED_NOW = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)


class FrozenClock:
    """Clock returning a fixed instant unless advanced explicitly."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_ticket(
    *,
    ticket_id: str = "ticket-1",
    level: Level = Level.L1,
    criticality: Criticality | None = None,
    status: TicketStatus = TicketStatus.NEW,
    created_by: str = "agent-l1",
    created_at: datetime = FIXED_NOW,
    priority: TicketPriority = TicketPriority.MEDIUM,
) -> Ticket:
    return Ticket(
        id=ticket_id,
        title="VPN drops every hour",
        description="Remote staff lose the VPN tunnel roughly every sixty minutes.",
        category="Network",
        priority=priority,
        expected_completion_date=created_at + timedelta(days=3),
        created_by=created_by,
        created_at=created_at,
        updated_at=created_at,
        status=status,
        current_level=level,
        critical_value=criticality,
        action_logs=(
            ActionLog(
                action="Ticket created",
                performed_by=created_by,
                performed_at=created_at,
                new_status=TicketStatus.NEW,
            ),
        ),
    )


@pytest.fixture
def l1_actor() -> Actor:
    return Actor(id="agent-l1", role=Level.L1)


@pytest.fixture
def l2_actor() -> Actor:
    return Actor(id="agent-l2", role=Level.L2)


@pytest.fixture
def l3_actor() -> Actor:
    return Actor(id="agent-l3", role=Level.L3)


@pytest.fixture
def actors(l1_actor: Actor, l2_actor: Actor, l3_actor: Actor) -> dict[Level, Actor]:
    return {Level.L1: l1_actor, Level.L2: l2_actor, Level.L3: l3_actor}


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def service(repository: InMemoryTicketRepository, clock: FrozenClock) -> TicketService:
    return TicketService(repository, policy=TicketPolicy(), clock=clock)


@pytest.fixture
def ticket_factory():
    return make_ticket
