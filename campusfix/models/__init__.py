from campusfix.models.worker import Worker
from campusfix.models.location import Location
from campusfix.models.ticket import (
    Ticket,
    TicketStatusHistory,
    TicketStatus,
    Severity,
    ClosurePath,
)
from campusfix.models.recurring_task import RecurringTask, RecurringTaskStatus
from campusfix.models.notification import Notification

__all__ = [
    "Worker",
    "Location",
    "Ticket",
    "TicketStatusHistory",
    "TicketStatus",
    "Severity",
    "ClosurePath",
    "RecurringTask",
    "RecurringTaskStatus",
    "Notification",
]
