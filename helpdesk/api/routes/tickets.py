from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from helpdesk.dependencies.auth import CurrentActor
from helpdesk.dependencies.tickets import TicketServiceDep
from helpdesk.tickets.errors import (
    ConcurrentTicketUpdateError,
    InvalidTicketTransitionError,
    TicketForbiddenError,
    TicketNotFoundError,
    TicketPersistenceError,
    TicketServiceError,
    UnauthenticatedError,
)
from helpdesk.tickets.models import (
    ACTION_MAX_LENGTH,
    CATEGORY_MAX_LENGTH,
    DESCRIPTION_MAX_LENGTH,
    DETAILS_MAX_LENGTH,
    NOTES_MAX_LENGTH,
    REASON_MAX_LENGTH,
    RESOLUTION_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    ActionLog,
    Escalation,
    Ticket,
)
from helpdesk.tickets.state import Criticality, Level, TicketPriority, TicketStatus


router = APIRouter(prefix="/tickets", tags=["tickets"])


class EscalationModel(BaseModel):
    from_level: Level
    to_level: Level
    reason: str
    escalated_by: str
    escalated_at: str
    notes: str | None = None

    @classmethod
    def from_entity(cls, entity: Escalation) -> "EscalationModel":
        return cls(
            from_level=entity.from_level,
            to_level=entity.to_level,
            reason=entity.reason,
            escalated_by=entity.escalated_by,
            escalated_at=entity.escalated_at.isoformat(),
            notes=entity.notes,
        )


class ActionLogModel(BaseModel):
    action: str
    performed_by: str
    performed_at: str
    details: str | None = None
    previous_status: TicketStatus | None = None
    new_status: TicketStatus | None = None

    @classmethod
    def from_entity(cls, entity: ActionLog) -> "ActionLogModel":
        return cls(
            action=entity.action,
            performed_by=entity.performed_by,
            performed_at=entity.performed_at.isoformat(),
            details=entity.details,
            previous_status=entity.previous_status,
            new_status=entity.new_status,
        )


class TicketModel(BaseModel):
    id: str
    title: str
    description: str
    category: str
    priority: TicketPriority
    status: TicketStatus
    current_level: Level
    critical_value: Criticality | None = None
    expected_completion_date: str
    created_by: str
    assigned_to: str | None = None
    escalation_history: list[EscalationModel] = Field(default_factory=list)
    action_logs: list[ActionLogModel] = Field(default_factory=list)
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        return cls(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            category=ticket.category,
            priority=ticket.priority,
            status=ticket.status,
            current_level=ticket.current_level,
            critical_value=ticket.critical_value,
            expected_completion_date=ticket.expected_completion_date.isoformat(),
            created_by=ticket.created_by,
            assigned_to=ticket.assigned_to,
            escalation_history=[EscalationModel.from_entity(entry) for entry in ticket.escalation_history],
            action_logs=[ActionLogModel.from_entity(entry) for entry in ticket.action_logs],
            created_at=ticket.created_at.isoformat(),
            updated_at=ticket.updated_at.isoformat(),
        )


class TicketCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str = Field(min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    category: str = Field(min_length=1, max_length=CATEGORY_MAX_LENGTH)
    priority: TicketPriority
    expected_completion_date: datetime

    @field_validator("title", "description", "category")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("expected_completion_date")
    @classmethod
    def _must_be_future(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if value <= datetime.now(timezone.utc):
            raise ValueError("Expected completion date must be in the future")
        return value


class TicketStatusUpdateRequest(BaseModel):
    status: TicketStatus | None = None
    critical_value: Criticality | None = None


class CriticalValueRequest(BaseModel):
    critical_value: Criticality


class EscalationRequest(BaseModel):
    to_level: Level
    reason: str = Field(min_length=1, max_length=REASON_MAX_LENGTH)
    notes: str | None = Field(default=None, max_length=NOTES_MAX_LENGTH)


class ActionLogRequest(BaseModel):
    action: str = Field(min_length=1, max_length=ACTION_MAX_LENGTH)
    details: str | None = Field(default=None, max_length=DETAILS_MAX_LENGTH)


class ResolveRequest(BaseModel):
    resolution: str = Field(min_length=1, max_length=RESOLUTION_MAX_LENGTH)


def _to_http_error(exc: TicketServiceError) -> HTTPException:
    if isinstance(exc, UnauthenticatedError):
        return HTTPException(status_code=401, detail={"message": str(exc), "reason": None})
    if isinstance(exc, TicketNotFoundError):
        return HTTPException(status_code=404, detail={"message": str(exc), "reason": None})
    if isinstance(exc, TicketForbiddenError):
        return HTTPException(status_code=403, detail={"message": exc.message, "reason": exc.reason})
    if isinstance(exc, InvalidTicketTransitionError):
        return HTTPException(status_code=400, detail={"message": exc.message, "reason": exc.reason})
    if isinstance(exc, ConcurrentTicketUpdateError):
        return HTTPException(status_code=409, detail={"message": str(exc), "reason": None})
    if isinstance(exc, TicketPersistenceError):
        return HTTPException(status_code=503, detail={"message": str(exc), "reason": None})
    return HTTPException(status_code=500, detail={"message": str(exc), "reason": None})


@router.get("", response_model=list[TicketModel], summary="List tickets visible to the caller")
async def list_tickets(
    service: TicketServiceDep,
    actor: CurrentActor,
    status_filter: Annotated[TicketStatus | None, Query(alias="status")] = None,
    priority: TicketPriority | None = None,
    level: Level | None = None,
) -> list[TicketModel]:
    try:
        tickets = await service.list_tickets(actor, status=status_filter, priority=priority, level=level)
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return [TicketModel.from_entity(ticket) for ticket in tickets]


@router.post("", response_model=TicketModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketModel:
    try:
        ticket = await service.create_ticket(
            actor,
            title=payload.title,
            description=payload.description,
            category=payload.category,
            priority=payload.priority,
            expected_completion_date=payload.expected_completion_date,
        )
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.get("/{ticket_id}", response_model=TicketModel)
async def get_ticket(ticket_id: str, service: TicketServiceDep, actor: CurrentActor) -> TicketModel:
    try:
        ticket = await service.get_ticket(actor, ticket_id)
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.patch("/{ticket_id}/status", response_model=TicketModel)
async def update_ticket_status(
    ticket_id: str,
    payload: TicketStatusUpdateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketModel:
    try:
        ticket = await service.update_status(
            actor,
            ticket_id,
            status=payload.status,
            critical_value=payload.critical_value,
        )
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.patch("/{ticket_id}/critical-value", response_model=TicketModel)
async def update_critical_value(
    ticket_id: str,
    payload: CriticalValueRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketModel:
    try:
        ticket = await service.assign_criticality(actor, ticket_id, critical_value=payload.critical_value)
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/escalate", response_model=TicketModel)
async def escalate_ticket(
    ticket_id: str,
    payload: EscalationRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketModel:
    try:
        ticket = await service.escalate(
            actor,
            ticket_id,
            to_level=payload.to_level,
            reason=payload.reason,
            notes=payload.notes,
        )
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/action-log", response_model=ActionLogModel)
async def add_action_log(
    ticket_id: str,
    payload: ActionLogRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> ActionLogModel:
    try:
        ticket = await service.add_action_log(actor, ticket_id, action=payload.action, details=payload.details)
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return ActionLogModel.from_entity(ticket.action_logs[-1])


@router.post("/{ticket_id}/resolve", response_model=TicketModel)
async def resolve_ticket(
    ticket_id: str,
    payload: ResolveRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketModel:
    try:
        ticket = await service.resolve(actor, ticket_id, resolution=payload.resolution)
    except TicketServiceError as exc:
        raise _to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)
