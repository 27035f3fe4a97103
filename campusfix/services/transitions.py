"""
Ticket transition table.

Who may move a ticket where is a pure function of (current status, actor
role, closure path). Nothing is mutated here; TicketLifecycle consults
``allowed_transitions`` before touching the store.
"""

from dataclasses import dataclass
from enum import Enum

from campusfix.models.ticket import TicketStatus, ClosurePath


class ActorRole(str, Enum):
    """Actor roles."""
    REPORTER = "reporter"
    WORKER = "worker"
    REVIEWER = "reviewer"
    APPROVER = "approver"


@dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole


S = TicketStatus

# (from, role) -> targets
TRANSITIONS: dict[tuple[TicketStatus, ActorRole], frozenset[TicketStatus]] = {
    (S.reported, ActorRole.APPROVER): frozenset({S.assigned, S.rejected}),
    (S.assigned, ActorRole.WORKER): frozenset({S.in_progress}),
    (S.in_progress, ActorRole.WORKER): frozenset({S.work_submitted, S.resolved}),
    (S.rework_required, ActorRole.WORKER): frozenset({S.work_submitted}),
    (S.work_submitted, ActorRole.REVIEWER): frozenset({
        S.work_approved,
        S.feedback_pending,
        S.rework_required,
    }),
    (S.work_approved, ActorRole.REPORTER): frozenset({S.closed}),
    (S.feedback_pending, ActorRole.REPORTER): frozenset({S.closed}),
    (S.resolved, ActorRole.REPORTER): frozenset({S.closed}),
}

# Targets that only exist on one closure path
PATH_RESTRICTED: dict[TicketStatus, ClosurePath] = {
    S.work_submitted: ClosurePath.review,
    S.resolved: ClosurePath.otp,
}


def allowed_transitions(
    current: TicketStatus,
    role: ActorRole,
    closure_path: ClosurePath = ClosurePath.review,
) -> frozenset[TicketStatus]:
    """Return the statuses ``role`` may move a ticket to from ``current``."""
    targets = TRANSITIONS.get((TicketStatus(current), ActorRole(role)), frozenset())
    return frozenset(
        target for target in targets
        if PATH_RESTRICTED.get(target, closure_path) == closure_path
    )


def is_allowed(
    current: TicketStatus,
    role: ActorRole,
    target: TicketStatus,
    closure_path: ClosurePath = ClosurePath.review,
) -> bool:
    return TicketStatus(target) in allowed_transitions(current, role, closure_path)

