"""Ticket model - a reactive maintenance complaint raised against a room or asset."""

from enum import Enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship

from campusfix.database import Base, utcnow


class TicketStatus(str, Enum):
    """Lifecycle states. Terminal: closed, rejected."""

    reported = "reported"
    assigned = "assigned"
    in_progress = "in_progress"
    work_submitted = "work_submitted"
    rework_required = "rework_required"
    work_approved = "work_approved"
    feedback_pending = "feedback_pending"
    resolved = "resolved"
    closed = "closed"
    rejected = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TicketStatus.closed, TicketStatus.rejected})

# Statuses that count towards a worker's open load
ACTIVE_STATUSES = frozenset({
    TicketStatus.assigned,
    TicketStatus.in_progress,
    TicketStatus.work_submitted,
    TicketStatus.rework_required,
    TicketStatus.resolved,
})


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class ClosurePath(str, Enum):
    """How a ticket is closed, fixed when the ticket is created."""

    review = "review"  # work_submitted -> review -> feedback -> closed
    otp = "otp"  # legacy: resolved -> OTP -> closed


class Ticket(Base):
    """Maintenance ticket. Mutated only through TicketLifecycle."""

    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True, index=True)

    # What and where
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, index=True)
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False, index=True)
    area = Column(String(100), nullable=True)  # coverage area copied from the location
    reporter_id = Column(String(36), nullable=False, index=True)
    assignee_id = Column(String(36), ForeignKey("workers.id"), nullable=True, index=True)

    status = Column(String(30), nullable=False, default=TicketStatus.reported.value, index=True)
    severity = Column(String(20), nullable=False, default=Severity.medium.value)
    closure_path = Column(String(10), nullable=False, default=ClosurePath.review.value)
    version = Column(Integer, nullable=False, default=1)

    # Reporter evidence (ordered list of URIs)
    images = Column(JSON, nullable=False, default=list)
    video = Column(String(500), nullable=True)
    geolocation = Column(JSON, nullable=True)  # {"lat": .., "lng": ..}

    # Legacy direct-close path
    otp = Column(String(4), nullable=True)
    otp_verified = Column(Boolean, nullable=False, default=False)

    # Work and review
    work_proof = Column(JSON, nullable=False, default=list)
    work_note = Column(Text, nullable=True)
    admin_comment = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Feedback
    rating = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)

    # Waiting for a skilled worker after a failed assignment attempt
    awaiting_worker = Column(Boolean, nullable=False, default=False, index=True)
    escalated_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    assigned_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    history = relationship(
        "TicketStatusHistory",
        order_by="TicketStatusHistory.sequence",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def ticket_status(self) -> TicketStatus:
        return TicketStatus(self.status)

    @property
    def ticket_closure_path(self) -> ClosurePath:
        return ClosurePath(self.closure_path)

    def __repr__(self):
        return f"<Ticket {self.id} - {self.category} ({self.status})>"


class TicketStatusHistory(Base):
    """Append-only status history. The last row always matches Ticket.status."""

    __tablename__ = "ticket_status_history"
    __table_args__ = (
        UniqueConstraint("ticket_id", "sequence", name="uq_ticket_history_sequence"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(String(30), nullable=False)
    actor_id = Column(String(36), nullable=True)
    actor_role = Column(String(20), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<TicketStatusHistory {self.ticket_id}#{self.sequence} {self.status}>"
