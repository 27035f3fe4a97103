"""
Ticket lifecycle service.

Owns every ticket mutation. A transition is checked against the transition
table first, then against the actor's identity, then against the workflow
guards; only after all three pass is the change written, through a
compare-and-set on (status, version), together with its history entry in
the same transaction. Notifications are emitted after commit.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from campusfix.database import utcnow
from campusfix.exceptions import (
    ConcurrentModification,
    InvalidTransition,
    NoWorkerAvailable,
    NotFoundError,
    ValidationFailure,
)
from campusfix.models.ticket import Ticket, TicketStatus, TicketStatusHistory, Severity
from campusfix.repositories.ticket_store import TicketStore
from campusfix.repositories.worker_directory import WorkerDirectory, LocationStore
from campusfix.schemas.ticket import TicketCreate
from campusfix.services.approval_workflow import TransitionPayload, clean_evidence, workflow_patch
from campusfix.services.assignment_resolver import AssignmentResolver
from campusfix.services.deadline import with_deadline
from campusfix.services.notification_sink import (
    APPROVERS,
    REVIEWERS,
    NotificationEvent,
    NotificationSink,
    notify,
)
from campusfix.services.priority_service import calculate_severity, categories_for_skill
from campusfix.services.transitions import Actor, ActorRole, allowed_transitions

logger = logging.getLogger(__name__)

# Actor used for assignments the engine makes on its own
SYSTEM_ACTOR = Actor(id="system", role=ActorRole.APPROVER)


class TicketLifecycle:
    """Ticket state machine bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        sink: Optional[NotificationSink] = None,
        directory: Optional[WorkerDirectory] = None,
    ):
        self.db = db
        self.sink = sink
        self.tickets = TicketStore(db)
        self.locations = LocationStore(db)
        self.directory = directory or WorkerDirectory(db)
        self.resolver = AssignmentResolver(self.directory)

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket", ticket_id)
        return ticket

    async def _reload(self, ticket: Ticket) -> Ticket:
        ticket_id = ticket.id
        self.db.expire(ticket)
        return await self.get_ticket(ticket_id)

    def allowed_for(self, ticket: Ticket, actor: Actor) -> frozenset[TicketStatus]:
        """Statuses ``actor`` may move ``ticket`` to right now."""
        targets = allowed_transitions(ticket.ticket_status, actor.role, ticket.ticket_closure_path)
        try:
            self._check_identity(ticket, actor, ticket.ticket_status, None)
        except InvalidTransition:
            return frozenset()
        return targets

    async def create_ticket(self, data: TicketCreate, reporter: Actor) -> Ticket:
        location = await self.locations.get(data.location_id)
        if location is None:
            raise NotFoundError("Location", data.location_id)

        category = data.category.strip().lower()
        existing = await self.tickets.find_open_for_location(location.id, category)
        if existing is not None:
            raise ValidationFailure(
                f"An open {category} ticket already exists for this location ({existing.id})",
                field="location_id",
            )

        severity = data.severity or calculate_severity(data.title, data.description, category)
        ticket = Ticket(
            id=str(uuid.uuid4()),
            title=data.title.strip(),
            description=data.description,
            category=category,
            location_id=location.id,
            area=location.block,
            reporter_id=reporter.id,
            status=TicketStatus.reported.value,
            severity=Severity(severity).value,
            closure_path=data.closure_path.value,
            version=1,
            images=clean_evidence(data.images, "images"),
            video=data.video,
            geolocation=data.geolocation.model_dump() if data.geolocation else None,
        )
        ticket.history.append(TicketStatusHistory(
            sequence=1,
            status=TicketStatus.reported.value,
            actor_id=reporter.id,
            actor_role=reporter.role.value,
            note="Ticket reported",
        ))
        self.tickets.add(ticket)
        await self.db.commit()
        ticket = await self._reload(ticket)

        logger.info(
            f"Ticket {ticket.id} reported: {category} at {location.name} ({ticket.severity})",
            extra={"ticket_id": ticket.id, "reporter_id": reporter.id},
        )
        await notify(self.sink, NotificationEvent(
            type="ticket_reported",
            recipient=APPROVERS,
            message=f"New {ticket.severity} {category} ticket at {location.name}: {ticket.title}",
            ticket_id=ticket.id,
        ))
        return ticket

    def _check_identity(
        self,
        ticket: Ticket,
        actor: Actor,
        current: TicketStatus,
        target: Optional[TicketStatus],
    ) -> None:
        if actor.role == ActorRole.WORKER and actor.id != ticket.assignee_id:
            raise InvalidTransition(
                current.value, target.value if target else "*", actor.role.value,
                "only the assigned worker may act on this ticket",
            )
        if actor.role == ActorRole.REPORTER and actor.id != ticket.reporter_id:
            raise InvalidTransition(
                current.value, target.value if target else "*", actor.role.value,
                "only the reporter may close this ticket",
            )

    async def _build_patch(
        self,
        ticket: Ticket,
        target: TicketStatus,
        payload: TransitionPayload,
    ) -> tuple[dict, Optional[str]]:
        """Run the guards for ``target``. Writes nothing."""
        if target == TicketStatus.assigned:
            decision = await self.resolver.resolve(ticket.category, ticket.area)
            patch = {
                "assignee_id": decision.worker.id,
                "assigned_at": utcnow(),
                "awaiting_worker": False,
            }
            return patch, decision.describe()

        if target == TicketStatus.rejected:
            reason = (payload.reason or payload.comment or "").strip()
            if not reason:
                raise ValidationFailure("A reason is required to reject a ticket", field="reason")
            return {"rejection_reason": reason, "awaiting_worker": False}, reason

        patch = workflow_patch(ticket, target, payload)
        note = payload.note or payload.comment or payload.reason
        return patch or {}, note

    async def _apply(
        self,
        ticket: Ticket,
        actor: Actor,
        target: TicketStatus,
        payload: TransitionPayload,
    ) -> None:
        current = ticket.ticket_status
        patch, note = await self._build_patch(ticket, target, payload)
        patch["status"] = target.value

        try:
            updated = await self.tickets.update_if_status(ticket.id, current, ticket.version, patch)
            if not updated:
                raise ConcurrentModification("Ticket", ticket.id)
            await self.tickets.append_history(ticket.id, target, actor.id, actor.role.value, note)
            await self.db.flush()
        except Exception:
            await self.db.rollback()
            raise

    async def transition(
        self,
        ticket_id: str,
        actor: Actor,
        target: TicketStatus,
        payload: Optional[TransitionPayload] = None,
        deadline: Optional[float] = None,
    ) -> Ticket:
        """Move a ticket to ``target`` on behalf of ``actor``.

        Raises:
            InvalidTransition: move not allowed for this role, path or actor
            ValidationFailure: missing proof, comment, rating, reason or OTP
            NoWorkerAvailable: assignment found no candidate; the ticket is
                flagged as waiting and stays ``reported``
            ConcurrentModification: another writer changed the ticket first
            DeadlineExceeded: ``deadline`` seconds elapsed before commit
        """
        payload = payload or TransitionPayload()
        target = TicketStatus(target)
        ticket = await self.get_ticket(ticket_id)
        current = ticket.ticket_status

        if target not in allowed_transitions(current, actor.role, ticket.ticket_closure_path):
            raise InvalidTransition(current.value, target.value, actor.role.value)
        self._check_identity(ticket, actor, current, target)

        try:
            await with_deadline(
                self._apply(ticket, actor, target, payload),
                deadline,
                f"Ticket {ticket_id} {current.value}->{target.value}",
                self.db,
            )
        except NoWorkerAvailable:
            await self._mark_awaiting_worker(ticket)
            raise

        await self.db.commit()
        ticket = await self._reload(ticket)

        logger.info(
            f"Ticket {ticket_id}: {current.value} -> {target.value} by {actor.role.value} {actor.id}",
            extra={"ticket_id": ticket_id, "version": ticket.version},
        )
        await notify(self.sink, *self._events_for(ticket, target))
        return ticket

    async def resolve_assignment(
        self,
        ticket_id: str,
        actor: Actor,
        deadline: Optional[float] = None,
    ) -> Ticket:
        """Assign a reported ticket to the best available worker."""
        return await self.transition(ticket_id, actor, TicketStatus.assigned, deadline=deadline)

    async def _mark_awaiting_worker(self, ticket: Ticket) -> None:
        if ticket.awaiting_worker:
            return
        ticket_id = ticket.id
        await self.tickets.update_if_open(ticket_id, {"awaiting_worker": True})
        await self.db.commit()
        logger.warning(f"No worker available for ticket {ticket_id}; waiting for staff")
        await notify(self.sink, NotificationEvent(
            type="no_worker_available",
            recipient=APPROVERS,
            message=f"No available worker for ticket {ticket_id}; it will be assigned when staff frees up",
            ticket_id=ticket_id,
        ))

    async def update_severity(self, ticket_id: str, actor: Actor, severity: Severity) -> Ticket:
        """Approver-only severity edit. Leaves status, version and history untouched."""
        ticket = await self.get_ticket(ticket_id)
        current = ticket.ticket_status
        if actor.role != ActorRole.APPROVER:
            raise InvalidTransition(
                current.value, current.value, actor.role.value, "only approvers may change severity"
            )
        if current.is_terminal:
            raise InvalidTransition(
                current.value, current.value, actor.role.value, "ticket is already finished"
            )

        updated = await self.tickets.update_if_open(ticket.id, {"severity": Severity(severity).value})
        if not updated:
            await self.db.rollback()
            raise ConcurrentModification("Ticket", ticket_id)
        await self.db.commit()
        logger.info(f"Ticket {ticket_id} severity set to {Severity(severity).value} by {actor.id}")
        return await self._reload(ticket)

    async def retry_waiting_assignments(self, worker_id: str) -> int:
        """Assign waiting tickets this worker's skill can take. Returns the number assigned."""
        worker = await self.directory.get_worker(worker_id)
        if worker is None or not worker.is_available:
            return 0

        waiting = await self.tickets.list_waiting(categories_for_skill(worker.skill))
        waiting_ids = [t.id for t in waiting]
        assigned = 0
        for ticket_id in waiting_ids:
            try:
                await self.transition(ticket_id, SYSTEM_ACTOR, TicketStatus.assigned)
                assigned += 1
            except NoWorkerAvailable:
                break
            except (ConcurrentModification, InvalidTransition) as e:
                logger.info(f"Skipping waiting ticket {ticket_id}: {e}")
        if assigned:
            logger.info(f"Assigned {assigned} waiting ticket(s) after {worker.name} became available")
        return assigned

    def _events_for(self, ticket: Ticket, target: TicketStatus) -> list[NotificationEvent]:
        tid = ticket.id
        events = []

        def event(type_: str, recipient: Optional[str], message: str, **metadata):
            if recipient:
                events.append(NotificationEvent(
                    type=type_, recipient=recipient, message=message, ticket_id=tid, metadata=metadata,
                ))

        if target == TicketStatus.assigned:
            event("ticket_assigned", ticket.assignee_id, f"New {ticket.severity} ticket assigned: {ticket.title}")
            event("ticket_assigned", ticket.reporter_id, f"Your ticket '{ticket.title}' has been assigned")
        elif target == TicketStatus.rejected:
            event("ticket_rejected", ticket.reporter_id, f"Your ticket was rejected: {ticket.rejection_reason}")
        elif target == TicketStatus.in_progress:
            event("work_started", ticket.reporter_id, f"Work has started on '{ticket.title}'")
        elif target == TicketStatus.work_submitted:
            event("work_submitted", REVIEWERS, f"Work submitted for review on '{ticket.title}'")
        elif target == TicketStatus.rework_required:
            event("rework_required", ticket.assignee_id, f"Rework required: {ticket.admin_comment}")
        elif target in (TicketStatus.work_approved, TicketStatus.feedback_pending):
            event("work_approved", ticket.assignee_id, f"Your work on '{ticket.title}' was approved")
            event("feedback_requested", ticket.reporter_id, f"Please rate the work on '{ticket.title}'")
        elif target == TicketStatus.resolved:
            event("otp_issued", ticket.assignee_id, f"Closure OTP for '{ticket.title}'", otp=ticket.otp)
            event("ticket_resolved", ticket.reporter_id, f"'{ticket.title}' is resolved; share the OTP to close it")
        elif target == TicketStatus.closed:
            event("ticket_closed", ticket.assignee_id, f"'{ticket.title}' was closed", rating=ticket.rating)
            event("ticket_closed", APPROVERS, f"Ticket '{ticket.title}' closed", rating=ticket.rating)
        return events
