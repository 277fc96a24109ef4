from dataclasses import FrozenInstanceError
from datetime import timedelta

import pytest

from helpdesk.tickets.errors import InvalidTicketTransitionError
from helpdesk.tickets.models import ActionLog, Escalation
from helpdesk.tickets.state import Criticality, Level, LevelLadder


def test_level_ladder_only_climbs_one_rung():
    assert LevelLadder.initial_level() == Level.L1
    assert LevelLadder.can_climb(Level.L1, Level.L2)
    assert LevelLadder.can_climb(Level.L2, Level.L3)
    assert not LevelLadder.can_climb(Level.L1, Level.L3)
    assert not LevelLadder.can_climb(Level.L2, Level.L1)
    assert LevelLadder.next_level(Level.L3) is None


def test_level_ladder_rejects_invalid_climb():
    with pytest.raises(ValueError):
        LevelLadder.assert_climb(Level.L3, Level.L1)


def test_climb_to_l3_rejects_c3_ticket(ticket_factory):
    ticket = ticket_factory(level=Level.L2, criticality=Criticality.C3)

    with pytest.raises(InvalidTicketTransitionError) as exc:
        ticket.climb_to(Level.L3)

    assert "C3 tickets cannot be escalated to L3" in exc.value.message
    assert ticket.current_level == Level.L2


def test_climb_to_rejects_skipping_a_level(ticket_factory):
    ticket = ticket_factory(level=Level.L1)

    with pytest.raises(InvalidTicketTransitionError):
        ticket.climb_to(Level.L3)


def test_assigning_c3_at_l3_is_rejected(ticket_factory):
    ticket = ticket_factory(level=Level.L3, criticality=Criticality.C1)

    with pytest.raises(InvalidTicketTransitionError):
        ticket.assign_criticality(Criticality.C3)

    assert ticket.critical_value == Criticality.C1


def test_check_invariants_flags_corrupt_ticket(ticket_factory):
    ticket = ticket_factory(level=Level.L3, criticality=Criticality.C3)

    with pytest.raises(InvalidTicketTransitionError):
        ticket.check_invariants()


def test_clone_does_not_share_history(ticket_factory):
    ticket = ticket_factory()
    draft = ticket.clone()
    draft.record_action(
        ActionLog(action="Called customer", performed_by="agent-l1", performed_at=ticket.created_at)
    )

    assert len(ticket.action_logs) == 1
    assert len(draft.action_logs) == 2


def test_history_entries_are_immutable(ticket_factory):
    ticket = ticket_factory()
    entry = ticket.action_logs[0]

    with pytest.raises(FrozenInstanceError):
        entry.action = "rewritten"  # type: ignore[misc]

    escalation = Escalation(
        from_level=Level.L1,
        to_level=Level.L2,
        reason="Needs network team",
        escalated_by="agent-l1",
        escalated_at=ticket.created_at,
    )
    with pytest.raises(FrozenInstanceError):
        escalation.reason = "other"  # type: ignore[misc]
    assert isinstance(ticket.action_logs, tuple)


def test_action_logs_keep_insertion_order_with_identical_timestamps(ticket_factory):
    ticket = ticket_factory()
    at = ticket.created_at + timedelta(minutes=5)
    first = ActionLog(action="first", performed_by="agent-l1", performed_at=at)
    second = ActionLog(action="second", performed_by="agent-l1", performed_at=at)

    ticket.record_action(first)
    ticket.record_action(second)

    assert [entry.action for entry in ticket.action_logs] == ["Ticket created", "first", "second"]
