"""Recurring task model - one scheduled cleaning visit to a location on a date."""

from enum import Enum

from sqlalchemy import Column, String, Date, DateTime, Text, ForeignKey, JSON, UniqueConstraint

from campusfix.database import Base, utcnow


class RecurringTaskStatus(str, Enum):
    assigned = "assigned"
    in_progress = "in_progress"
    completed = "completed"
    skipped = "skipped"


OPEN_TASK_STATUSES = frozenset({RecurringTaskStatus.assigned, RecurringTaskStatus.in_progress})


class RecurringTask(Base):
    __tablename__ = "recurring_tasks"
    __table_args__ = (
        UniqueConstraint("location_id", "scheduled_date", name="uq_recurring_task_location_date"),
    )

    id = Column(String(36), primary_key=True, index=True)
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False, index=True)
    worker_id = Column(String(36), ForeignKey("workers.id"), nullable=True, index=True)
    scheduled_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=RecurringTaskStatus.assigned.value, index=True)

    assigned_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    proof = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    def __repr__(self):
        return f"<RecurringTask {self.location_id} on {self.scheduled_date} ({self.status})>"
