from campusfix.schemas.ticket import (
    TicketCreate,
    TransitionRequest,
    SeverityUpdate,
    TicketResponse,
    AllowedTransitionsResponse,
)
from campusfix.schemas.recurring_task import (
    DistributionRequest,
    DistributionSummary,
    RecurringTaskResponse,
    RecurringTaskListResponse,
    TaskReassign,
    TaskStatusUpdate,
    TaskStatistics,
)
from campusfix.schemas.worker import WorkerAvailabilityUpdate, WorkerAvailabilityResponse

__all__ = [
    "TicketCreate",
    "TransitionRequest",
    "SeverityUpdate",
    "TicketResponse",
    "AllowedTransitionsResponse",
    "DistributionRequest",
    "DistributionSummary",
    "RecurringTaskResponse",
    "RecurringTaskListResponse",
    "TaskReassign",
    "TaskStatusUpdate",
    "TaskStatistics",
    "WorkerAvailabilityUpdate",
    "WorkerAvailabilityResponse",
]
