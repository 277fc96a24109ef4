import pytest

from helpdesk.tickets.access import VisibilityScope, can_view
from helpdesk.tickets.models import Actor
from helpdesk.tickets.state import Criticality, Level


def test_l1_sees_only_own_tickets(ticket_factory, l1_actor):
    own = ticket_factory(created_by=l1_actor.id)
    other = ticket_factory(created_by="agent-l1-other")

    assert can_view(l1_actor, own)
    assert not can_view(l1_actor, other)


def test_l1_keeps_seeing_own_ticket_after_escalation(ticket_factory, l1_actor):
    ticket = ticket_factory(created_by=l1_actor.id, level=Level.L2)

    assert can_view(l1_actor, ticket)


@pytest.mark.parametrize(
    ("level", "visible"),
    [(Level.L1, False), (Level.L2, True), (Level.L3, True)],
)
def test_l2_sees_l2_and_l3_queues(ticket_factory, l2_actor, level, visible):
    criticality = Criticality.C1 if level == Level.L3 else None
    assert can_view(l2_actor, ticket_factory(level=level, criticality=criticality)) is visible


@pytest.mark.parametrize(
    ("level", "criticality", "visible"),
    [
        (Level.L3, Criticality.C1, True),
        (Level.L3, Criticality.C2, True),
        (Level.L3, Criticality.C3, False),
        (Level.L3, None, False),
        (Level.L2, Criticality.C1, False),
    ],
)
def test_l3_sees_only_critical_l3_tickets(ticket_factory, l3_actor, level, criticality, visible):
    assert can_view(l3_actor, ticket_factory(level=level, criticality=criticality)) is visible


def test_scope_for_actor_exposes_constraints():
    scope = VisibilityScope.for_actor(Actor(id="agent-l3", role=Level.L3))

    assert scope.created_by is None
    assert scope.levels == frozenset({Level.L3})
    assert scope.criticalities == frozenset({Criticality.C1, Criticality.C2})
