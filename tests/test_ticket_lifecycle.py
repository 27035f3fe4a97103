"""
Tests for the ticket lifecycle service.
"""
import asyncio

import pytest

from campusfix.exceptions import (
    ConcurrentModification,
    DeadlineExceeded,
    InvalidTransition,
    NoWorkerAvailable,
    ValidationFailure,
)
from campusfix.models import Location, Worker
from campusfix.models.ticket import TicketStatus, Severity
from campusfix.repositories.ticket_store import TicketStore
from campusfix.repositories.worker_directory import WorkerDirectory
from campusfix.schemas.ticket import TicketCreate
from campusfix.services.approval_workflow import TransitionPayload
from campusfix.services.notification_sink import APPROVERS, REVIEWERS
from campusfix.services.ticket_lifecycle import TicketLifecycle
from campusfix.services.transitions import Actor, ActorRole
from campusfix.services.worker_availability import set_worker_availability
from tests.sinks import FailingNotificationSink
from tests.factories import LocationFactory, TicketCreateFactory, WorkerFactory, UnavailableWorkerFactory

S = TicketStatus

REPORTER = Actor("student-001", ActorRole.REPORTER)
APPROVER = Actor("warden-001", ActorRole.APPROVER)
REVIEWER = Actor("admin-001", ActorRole.REVIEWER)

PROOF = ["https://files.example.edu/after-1.jpg"]


async def _add(test_db, *rows):
    test_db.add_all(list(rows))
    await test_db.commit()


async def _report(lifecycle, location_id, **kwargs):
    data = TicketCreate(**TicketCreateFactory(location_id=location_id, **kwargs))
    return await lifecycle.create_ticket(data, REPORTER)


@pytest.fixture
def room():
    return LocationFactory(block="A")


@pytest.fixture
def electrician():
    return WorkerFactory(skill="electrical", coverage_area="A")


class TestCreateTicket:
    @pytest.mark.asyncio
    async def test_starts_reported_with_history(self, test_db, sink, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db, sink)

        ticket = await _report(lifecycle, room["id"])

        assert ticket.status == S.reported.value
        assert ticket.version == 1
        assert ticket.area == "A"
        assert [h.status for h in ticket.history] == ["reported"]
        assert sink.of_type("ticket_reported")[0].recipient == APPROVERS

    @pytest.mark.asyncio
    async def test_severity_calculated_when_omitted(self, test_db, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db)

        ticket = await _report(
            lifecycle, room["id"], severity=None, title="Sparks and smoke from switchboard"
        )

        assert ticket.severity == Severity.high.value

    @pytest.mark.asyncio
    async def test_duplicate_open_ticket_rejected(self, test_db, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db)
        await _report(lifecycle, room["id"], category="plumbing")

        with pytest.raises(ValidationFailure):
            await _report(lifecycle, room["id"], category="Plumbing")

        # A different category at the same place is fine
        other = await _report(lifecycle, room["id"], category="electrical")
        assert other.status == S.reported.value


class TestReviewPath:
    @pytest.mark.asyncio
    async def test_full_lifecycle_with_rework(self, test_db, sink, room, electrician):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db, sink)
        worker = Actor(electrician["id"], ActorRole.WORKER)

        ticket = await _report(lifecycle, room["id"])
        ticket_id = ticket.id

        ticket = await lifecycle.resolve_assignment(ticket_id, APPROVER)
        assert ticket.status == S.assigned.value
        assert ticket.assignee_id == electrician["id"]
        assert ticket.assigned_at is not None

        ticket = await lifecycle.transition(ticket_id, worker, S.in_progress)
        ticket = await lifecycle.transition(
            ticket_id, worker, S.work_submitted, TransitionPayload(proof=PROOF, note="Replaced ballast")
        )
        assert ticket.work_proof == PROOF

        ticket = await lifecycle.transition(
            ticket_id, REVIEWER, S.rework_required, TransitionPayload(comment="Still flickering")
        )
        assert ticket.work_proof == []
        assert ticket.admin_comment == "Still flickering"

        ticket = await lifecycle.transition(
            ticket_id, worker, S.work_submitted, TransitionPayload(proof=["https://files.example.edu/after-2.jpg"])
        )
        ticket = await lifecycle.transition(ticket_id, REVIEWER, S.work_approved)
        assert ticket.resolved_at is not None

        ticket = await lifecycle.transition(
            ticket_id, REPORTER, S.closed, TransitionPayload(rating=4, feedback="Works now")
        )

        assert ticket.status == S.closed.value
        assert ticket.rating == 4
        assert ticket.closed_at is not None
        # creation entry plus one per transition
        assert [h.status for h in ticket.history] == [
            "reported",
            "assigned",
            "in_progress",
            "work_submitted",
            "rework_required",
            "work_submitted",
            "work_approved",
            "closed",
        ]
        assert [h.sequence for h in ticket.history] == list(range(1, 9))
        assert ticket.history[-1].status == ticket.status
        assert ticket.version == 8

        assert sink.of_type("work_submitted")[0].recipient == REVIEWERS
        assert sink.of_type("rework_required")[0].recipient == electrician["id"]

    @pytest.mark.asyncio
    async def test_feedback_pending_then_close(self, test_db, room, electrician):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db)
        worker = Actor(electrician["id"], ActorRole.WORKER)
        ticket_id = (await _report(lifecycle, room["id"])).id

        await lifecycle.resolve_assignment(ticket_id, APPROVER)
        await lifecycle.transition(ticket_id, worker, S.in_progress)
        await lifecycle.transition(ticket_id, worker, S.work_submitted, TransitionPayload(proof=PROOF))
        await lifecycle.transition(ticket_id, REVIEWER, S.feedback_pending)

        with pytest.raises(ValidationFailure):
            await lifecycle.transition(ticket_id, REPORTER, S.closed, TransitionPayload(rating=0))

        ticket = await lifecycle.transition(ticket_id, REPORTER, S.closed, TransitionPayload(rating=5))
        assert ticket.status == S.closed.value


class TestGuards:
    """Rejected moves leave the ticket untouched."""

    @pytest.mark.asyncio
    async def test_move_not_in_table(self, test_db, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id

        with pytest.raises(InvalidTransition) as exc_info:
            await lifecycle.transition(ticket_id, REPORTER, S.closed, TransitionPayload(rating=5))
        assert exc_info.value.status_code == 409

        ticket = await lifecycle.get_ticket(ticket_id)
        assert ticket.status == S.reported.value
        assert ticket.version == 1
        assert len(ticket.history) == 1

    @pytest.mark.asyncio
    async def test_only_assignee_may_start(self, test_db, room, electrician):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id
        await lifecycle.resolve_assignment(ticket_id, APPROVER)

        with pytest.raises(InvalidTransition):
            await lifecycle.transition(ticket_id, Actor("someone-else", ActorRole.WORKER), S.in_progress)

        ticket = await lifecycle.get_ticket(ticket_id)
        assert ticket.status == S.assigned.value

    @pytest.mark.asyncio
    async def test_only_reporter_may_close(self, test_db, room, electrician):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db)
        worker = Actor(electrician["id"], ActorRole.WORKER)
        ticket_id = (await _report(lifecycle, room["id"])).id
        await lifecycle.resolve_assignment(ticket_id, APPROVER)
        await lifecycle.transition(ticket_id, worker, S.in_progress)
        await lifecycle.transition(ticket_id, worker, S.work_submitted, TransitionPayload(proof=PROOF))
        await lifecycle.transition(ticket_id, REVIEWER, S.work_approved)

        with pytest.raises(InvalidTransition):
            await lifecycle.transition(
                ticket_id, Actor("student-999", ActorRole.REPORTER), S.closed, TransitionPayload(rating=5)
            )

    @pytest.mark.asyncio
    async def test_submission_without_proof(self, test_db, room, electrician):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db)
        worker = Actor(electrician["id"], ActorRole.WORKER)
        ticket_id = (await _report(lifecycle, room["id"])).id
        await lifecycle.resolve_assignment(ticket_id, APPROVER)
        await lifecycle.transition(ticket_id, worker, S.in_progress)

        with pytest.raises(ValidationFailure):
            await lifecycle.transition(ticket_id, worker, S.work_submitted, TransitionPayload(proof=[]))

        ticket = await lifecycle.get_ticket(ticket_id)
        assert ticket.status == S.in_progress.value
        assert len(ticket.history) == 3

    @pytest.mark.asyncio
    async def test_reject_requires_reason_and_is_terminal(self, test_db, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id

        with pytest.raises(ValidationFailure):
            await lifecycle.transition(ticket_id, APPROVER, S.rejected)

        ticket = await lifecycle.transition(
            ticket_id, APPROVER, S.rejected, TransitionPayload(reason="Not a facilities issue")
        )
        assert ticket.rejection_reason == "Not a facilities issue"

        with pytest.raises(InvalidTransition):
            await lifecycle.transition(ticket_id, APPROVER, S.assigned)

    @pytest.mark.asyncio
    async def test_allowed_for_respects_identity(self, test_db, room, electrician):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id
        ticket = await lifecycle.resolve_assignment(ticket_id, APPROVER)

        assert lifecycle.allowed_for(ticket, Actor(electrician["id"], ActorRole.WORKER)) == {S.in_progress}
        assert lifecycle.allowed_for(ticket, Actor("other", ActorRole.WORKER)) == frozenset()
        assert lifecycle.allowed_for(ticket, APPROVER) == frozenset()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_stale_version_does_not_update(self, test_db, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id
        store = TicketStore(test_db)

        assert await store.update_if_status(ticket_id, S.reported, 1, {"status": "rejected"})
        assert not await store.update_if_status(ticket_id, S.reported, 1, {"status": "assigned"})

    @pytest.mark.asyncio
    async def test_lost_race_raises_and_writes_nothing(self, test_db, room, electrician, monkeypatch):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id

        async def lose_race(self, *args, **kwargs):
            return False

        monkeypatch.setattr(TicketStore, "update_if_status", lose_race)

        with pytest.raises(ConcurrentModification):
            await lifecycle.resolve_assignment(ticket_id, APPROVER)

        monkeypatch.undo()
        ticket = await lifecycle.get_ticket(ticket_id)
        assert ticket.status == S.reported.value
        assert ticket.assignee_id is None
        assert len(ticket.history) == 1

    @pytest.mark.asyncio
    async def test_deadline_aborts_assignment(self, test_db, room, electrician, monkeypatch):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id

        original = WorkerDirectory.list_eligible_workers

        async def slow_directory(self, *args, **kwargs):
            await asyncio.sleep(1)
            return await original(self, *args, **kwargs)

        monkeypatch.setattr(WorkerDirectory, "list_eligible_workers", slow_directory)

        with pytest.raises(DeadlineExceeded):
            await lifecycle.resolve_assignment(ticket_id, APPROVER, deadline=0.05)

        monkeypatch.undo()
        ticket = await lifecycle.get_ticket(ticket_id)
        assert ticket.status == S.reported.value
        assert ticket.version == 1


class TestAssignment:
    @pytest.mark.asyncio
    async def test_degraded_fallback_noted_in_history(self, test_db, room):
        plumber = WorkerFactory(skill="plumbing", coverage_area="B")
        await _add(test_db, Location(**room), Worker(**plumber))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"], category="electrical")).id

        ticket = await lifecycle.resolve_assignment(ticket_id, APPROVER)

        assert ticket.assignee_id == plumber["id"]
        assert "general pool" in ticket.history[-1].note

    @pytest.mark.asyncio
    async def test_least_loaded_worker_chosen(self, test_db, electrician):
        rooms = LocationFactory.build_batch(2, block="A")
        second = WorkerFactory(skill="electrical", coverage_area="A")
        await _add(test_db, *[Location(**r) for r in rooms], Worker(**electrician), Worker(**second))
        lifecycle = TicketLifecycle(test_db)

        first_ticket = await _report(lifecycle, rooms[0]["id"])
        second_ticket = await _report(lifecycle, rooms[1]["id"])
        first_ticket = await lifecycle.resolve_assignment(first_ticket.id, APPROVER)
        second_ticket = await lifecycle.resolve_assignment(second_ticket.id, APPROVER)

        assert first_ticket.assignee_id == electrician["id"]
        assert second_ticket.assignee_id == second["id"]

    @pytest.mark.asyncio
    async def test_no_worker_leaves_ticket_waiting(self, test_db, sink, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db, sink)
        ticket_id = (await _report(lifecycle, room["id"])).id

        with pytest.raises(NoWorkerAvailable):
            await lifecycle.resolve_assignment(ticket_id, APPROVER)

        ticket = await lifecycle.get_ticket(ticket_id)
        assert ticket.status == S.reported.value
        assert ticket.awaiting_worker is True
        assert len(ticket.history) == 1
        assert sink.of_type("no_worker_available")

    @pytest.mark.asyncio
    async def test_waiting_ticket_assigned_when_worker_returns(self, test_db, sink, room):
        off_shift = UnavailableWorkerFactory(skill="electrical", coverage_area="A")
        await _add(test_db, Location(**room), Worker(**off_shift))
        lifecycle = TicketLifecycle(test_db, sink)
        ticket_id = (await _report(lifecycle, room["id"])).id
        with pytest.raises(NoWorkerAvailable):
            await lifecycle.resolve_assignment(ticket_id, APPROVER)

        assigned = await set_worker_availability(test_db, off_shift["id"], True, sink)

        assert assigned == 1
        ticket = await lifecycle.get_ticket(ticket_id)
        assert ticket.status == S.assigned.value
        assert ticket.assignee_id == off_shift["id"]
        assert ticket.awaiting_worker is False
        assert ticket.history[-1].actor_id == "system"


class TestOtpPath:
    @pytest.mark.asyncio
    async def test_direct_resolve_and_otp_close(self, test_db, sink, room, electrician):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db, sink)
        worker = Actor(electrician["id"], ActorRole.WORKER)
        ticket_id = (await _report(lifecycle, room["id"], closure_path="otp")).id
        await lifecycle.resolve_assignment(ticket_id, APPROVER)
        await lifecycle.transition(ticket_id, worker, S.in_progress)

        with pytest.raises(InvalidTransition):
            await lifecycle.transition(ticket_id, worker, S.work_submitted, TransitionPayload(proof=PROOF))

        ticket = await lifecycle.transition(ticket_id, worker, S.resolved)
        otp = ticket.otp
        assert len(otp) == 4 and otp.isdigit()
        assert sink.of_type("otp_issued")[0].metadata["otp"] == otp

        wrong = "1234" if otp != "1234" else "4321"
        for bad in (wrong, int(otp), f" {otp}"):
            with pytest.raises(ValidationFailure):
                await lifecycle.transition(ticket_id, REPORTER, S.closed, TransitionPayload(otp=bad))

        ticket = await lifecycle.transition(ticket_id, REPORTER, S.closed, TransitionPayload(otp=otp))
        assert ticket.status == S.closed.value
        assert ticket.otp_verified is True


class TestSeverityAndNotifications:
    @pytest.mark.asyncio
    async def test_severity_edit_keeps_version_and_history(self, test_db, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id

        ticket = await lifecycle.update_severity(ticket_id, APPROVER, Severity.critical)

        assert ticket.severity == "critical"
        assert ticket.version == 1
        assert len(ticket.history) == 1

    @pytest.mark.asyncio
    async def test_severity_edit_approver_only(self, test_db, room):
        await _add(test_db, Location(**room))
        lifecycle = TicketLifecycle(test_db)
        ticket_id = (await _report(lifecycle, room["id"])).id

        with pytest.raises(InvalidTransition):
            await lifecycle.update_severity(ticket_id, REPORTER, Severity.critical)

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_undo_transition(self, test_db, room, electrician):
        await _add(test_db, Location(**room), Worker(**electrician))
        lifecycle = TicketLifecycle(test_db, FailingNotificationSink())
        ticket_id = (await _report(lifecycle, room["id"])).id

        ticket = await lifecycle.resolve_assignment(ticket_id, APPROVER)

        assert ticket.status == S.assigned.value
