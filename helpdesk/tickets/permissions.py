"""Role/level permission matrix for ticket operations.

Every rule lives in :data:`PERMISSION_MATRIX` as data. :class:`PermissionMatrix`
interprets it in a fixed order: role, escalation target, ticket level,
criticality. Evaluation is pure and never touches the store.

A denial is either a refusal of the actor (raised as ``TicketForbiddenError``)
or a conflict between the payload and the ticket state (raised as
``InvalidTicketTransitionError``), e.g. an illegal escalation target.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from .errors import InvalidTicketTransitionError, TicketForbiddenError
from .state import Criticality, L3_ELIGIBLE, Level


class Operation(str, Enum):
    CREATE = "create"
    UPDATE_STATUS = "update_status"
    ADD_ACTION_LOG = "add_action_log"
    ASSIGN_CRITICALITY = "assign_criticality"
    ESCALATE = "escalate"
    RESOLVE = "resolve"


class DenialReason(str, Enum):
    ROLE_NOT_PERMITTED = "role not permitted"
    WRONG_LEVEL = "wrong level for role"
    INVALID_TARGET = "escalation target invalid"
    CRITICALITY_INELIGIBLE = "criticality missing or C3"
    TERMINAL_TIER = "terminal tier"
    NOT_OWNER = "not ticket creator"


@dataclass(frozen=True, slots=True)
class PermissionDecision:
    allowed: bool
    reason: DenialReason | None = None
    message: str = ""
    # Set when the payload, not the actor, is at fault.
    conflict: bool = False

    @classmethod
    def allow(cls) -> "PermissionDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason, message: str, *, conflict: bool = False) -> "PermissionDecision":
        return cls(allowed=False, reason=reason, message=message, conflict=conflict)

    def raise_for_denial(self) -> None:
        if self.allowed or self.reason is None:
            return
        if self.conflict:
            raise InvalidTicketTransitionError(self.message, reason=self.reason.value)
        raise TicketForbiddenError(self.message, reason=self.reason.value)


@dataclass(frozen=True, slots=True)
class PermissionRule:
    """What a role needs from a ticket to perform one operation.

    Messages may reference ``{role}``, ``{level}``, ``{target}`` and
    ``{criticality}``.
    """

    levels: frozenset[Level] | None = None
    criticality: frozenset[Criticality] | None = None
    target: Level | None = None
    level_message: str = ""
    criticality_message: str = ""
    missing_criticality_message: str | None = None
    criticality_conflict: bool = False
    target_message: str = ""
    denial: DenialReason | None = None
    denial_message: str = ""

    @classmethod
    def never(cls, message: str, *, reason: DenialReason = DenialReason.ROLE_NOT_PERMITTED) -> "PermissionRule":
        return cls(denial=reason, denial_message=message)


_UPDATE_L3_MESSAGE = "L3 agents can only update critical (C1, C2) tickets at L3 level"
_ADD_LOG_MESSAGE = "You do not have permission to add action logs to this ticket"
_RESOLVE_MESSAGE = "{role} agents can only resolve tickets at {role} level (ticket is at {level})"
_ESCALATE_LEVEL_MESSAGE = "Can only escalate tickets at your current level ({role})"


def _levels(*levels: Level) -> frozenset[Level]:
    return frozenset(levels)


PERMISSION_MATRIX: Mapping[tuple[Level, Operation], PermissionRule] = {
    (Level.L1, Operation.CREATE): PermissionRule(),
    (Level.L2, Operation.CREATE): PermissionRule.never("Only L1 agents can create tickets"),
    (Level.L3, Operation.CREATE): PermissionRule.never("Only L1 agents can create tickets"),
    (Level.L1, Operation.UPDATE_STATUS): PermissionRule(
        levels=_levels(Level.L1),
        level_message="L1 agents can only update tickets at L1 level",
    ),
    (Level.L2, Operation.UPDATE_STATUS): PermissionRule(
        levels=_levels(Level.L1, Level.L2),
        level_message="L2 agents can only update tickets at L1 or L2 level",
    ),
    (Level.L3, Operation.UPDATE_STATUS): PermissionRule(
        levels=_levels(Level.L3),
        criticality=L3_ELIGIBLE,
        level_message=_UPDATE_L3_MESSAGE,
        criticality_message=_UPDATE_L3_MESSAGE,
    ),
    (Level.L1, Operation.ADD_ACTION_LOG): PermissionRule(
        levels=_levels(Level.L1),
        level_message=_ADD_LOG_MESSAGE,
    ),
    (Level.L2, Operation.ADD_ACTION_LOG): PermissionRule(
        levels=_levels(Level.L1, Level.L2),
        level_message=_ADD_LOG_MESSAGE,
    ),
    (Level.L3, Operation.ADD_ACTION_LOG): PermissionRule(
        levels=_levels(Level.L3),
        criticality=L3_ELIGIBLE,
        level_message=_ADD_LOG_MESSAGE,
        criticality_message=_ADD_LOG_MESSAGE,
    ),
    (Level.L1, Operation.ASSIGN_CRITICALITY): PermissionRule.never("Only L2 agents can update critical value"),
    (Level.L2, Operation.ASSIGN_CRITICALITY): PermissionRule(
        levels=_levels(Level.L2),
        level_message="Can only update critical value for tickets at L2 level",
    ),
    (Level.L3, Operation.ASSIGN_CRITICALITY): PermissionRule.never("Only L2 agents can update critical value"),
    (Level.L1, Operation.ESCALATE): PermissionRule(
        levels=_levels(Level.L1),
        target=Level.L2,
        target_message="L1 can only escalate to L2",
        level_message=_ESCALATE_LEVEL_MESSAGE,
    ),
    (Level.L2, Operation.ESCALATE): PermissionRule(
        levels=_levels(Level.L2),
        target=Level.L3,
        criticality=L3_ELIGIBLE,
        target_message="L2 can only escalate to L3",
        level_message=_ESCALATE_LEVEL_MESSAGE,
        missing_criticality_message="Cannot escalate to L3 without critical value assignment",
        criticality_conflict=True,
        criticality_message="C3 tickets cannot be escalated to L3",
    ),
    (Level.L3, Operation.ESCALATE): PermissionRule.never(
        "L3 is the highest level, cannot escalate further",
        reason=DenialReason.TERMINAL_TIER,
    ),
    (Level.L1, Operation.RESOLVE): PermissionRule(
        levels=_levels(Level.L1),
        level_message=_RESOLVE_MESSAGE,
    ),
    (Level.L2, Operation.RESOLVE): PermissionRule(
        levels=_levels(Level.L2),
        level_message=_RESOLVE_MESSAGE,
    ),
    (Level.L3, Operation.RESOLVE): PermissionRule(
        levels=_levels(Level.L3),
        criticality=L3_ELIGIBLE,
        level_message=_RESOLVE_MESSAGE,
        criticality_message="L3 agents can only resolve critical (C1, C2) tickets at L3 level",
    ),
}


class PermissionMatrix:
    """Interpreter for a table of :class:`PermissionRule` objects."""

    def __init__(self, rules: Mapping[tuple[Level, Operation], PermissionRule] | None = None) -> None:
        self._rules = rules or PERMISSION_MATRIX

    def rule_for(self, role: Level, operation: Operation) -> PermissionRule | None:
        return self._rules.get((role, operation))

    def evaluate(
        self,
        role: Level,
        operation: Operation,
        *,
        level: Level | None = None,
        criticality: Criticality | None = None,
        target: Level | None = None,
    ) -> PermissionDecision:
        rule = self.rule_for(role, operation)
        if rule is None:
            return PermissionDecision.deny(
                DenialReason.ROLE_NOT_PERMITTED,
                f"{role.value} agents are not permitted to {operation.value.replace('_', ' ')}",
            )

        context = {
            "role": role.value,
            "level": level.value if level is not None else "none",
            "target": target.value if target is not None else "none",
            "criticality": criticality.value if criticality is not None else "none",
        }

        if rule.denial is not None:
            return PermissionDecision.deny(rule.denial, rule.denial_message.format(**context))
        if rule.target is not None and target != rule.target:
            return PermissionDecision.deny(
                DenialReason.INVALID_TARGET, rule.target_message.format(**context), conflict=True
            )
        if rule.levels is not None and level not in rule.levels:
            return PermissionDecision.deny(DenialReason.WRONG_LEVEL, rule.level_message.format(**context))
        if rule.criticality is not None and criticality not in rule.criticality:
            message = rule.criticality_message
            if criticality is None and rule.missing_criticality_message:
                message = rule.missing_criticality_message
            return PermissionDecision.deny(
                DenialReason.CRITICALITY_INELIGIBLE,
                message.format(**context),
                conflict=rule.criticality_conflict,
            )
        return PermissionDecision.allow()

    def allows(self, role: Level, operation: Operation, **kwargs: Level | Criticality | None) -> bool:
        return self.evaluate(role, operation, **kwargs).allowed
