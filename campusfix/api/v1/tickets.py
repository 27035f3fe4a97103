from fastapi import APIRouter, Query, status
from typing import Optional

from campusfix.api.deps import DbSession, CurrentActor, Sink
from campusfix.schemas.ticket import (
    TicketCreate,
    TicketResponse,
    TransitionRequest,
    SeverityUpdate,
    AllowedTransitionsResponse,
)
from campusfix.services.approval_workflow import TransitionPayload
from campusfix.services.ticket_lifecycle import TicketLifecycle

router = APIRouter()


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    ticket_data: TicketCreate,
    db: DbSession,
    actor: CurrentActor,
    sink: Sink,
):
    """Report a new ticket."""
    return await TicketLifecycle(db, sink).create_ticket(ticket_data, actor)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    db: DbSession,
    actor: CurrentActor,
):
    """Get a single ticket with its status history."""
    return await TicketLifecycle(db).get_ticket(ticket_id)


@router.get("/{ticket_id}/transitions", response_model=AllowedTransitionsResponse)
async def get_allowed_transitions(
    ticket_id: str,
    db: DbSession,
    actor: CurrentActor,
):
    """Statuses the caller may move this ticket to."""
    lifecycle = TicketLifecycle(db)
    ticket = await lifecycle.get_ticket(ticket_id)
    allowed = lifecycle.allowed_for(ticket, actor)
    return AllowedTransitionsResponse(
        ticket_id=ticket.id,
        status=ticket.status,
        role=actor.role.value,
        allowed=sorted(allowed, key=lambda s: s.value),
    )


@router.post("/{ticket_id}/transitions", response_model=TicketResponse)
async def transition_ticket(
    ticket_id: str,
    request: TransitionRequest,
    db: DbSession,
    actor: CurrentActor,
    sink: Sink,
):
    """Move a ticket to a new status."""
    payload = TransitionPayload(**request.model_dump(exclude={"target_status"}))
    return await TicketLifecycle(db, sink).transition(ticket_id, actor, request.target_status, payload)


@router.post("/{ticket_id}/assign", response_model=TicketResponse)
async def resolve_assignment(
    ticket_id: str,
    db: DbSession,
    actor: CurrentActor,
    sink: Sink,
    deadline: Optional[float] = Query(None, gt=0, description="Timeout in seconds"),
):
    """Assign a reported ticket to the best available worker."""
    return await TicketLifecycle(db, sink).resolve_assignment(ticket_id, actor, deadline=deadline)


@router.patch("/{ticket_id}/severity", response_model=TicketResponse)
async def update_severity(
    ticket_id: str,
    update: SeverityUpdate,
    db: DbSession,
    actor: CurrentActor,
):
    """Change a ticket's severity (approvers only)."""
    return await TicketLifecycle(db).update_severity(ticket_id, actor, update.severity)
