from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional

from campusfix.models.recurring_task import RecurringTaskStatus


class DistributionRequest(BaseModel):
    """Defaults to today's date when omitted."""
    target_date: Optional[date] = None


class DistributionSummary(BaseModel):
    """Outcome of one daily distribution run."""
    target_date: date
    tasks_created: int = 0
    locations_skipped: int = 0
    locations_uncovered: int = 0
    workers_involved: int = 0
    blocks_without_dedicated_worker: list[str] = []
    errors: list[str] = []
    message: str = ""


class RecurringTaskResponse(BaseModel):
    id: str
    location_id: str
    worker_id: Optional[str] = None
    scheduled_date: date
    status: RecurringTaskStatus
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    proof: list[str] = []
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RecurringTaskListResponse(BaseModel):
    items: list[RecurringTaskResponse]
    total: int


class TaskReassign(BaseModel):
    worker_id: str


class TaskStatusUpdate(BaseModel):
    status: RecurringTaskStatus
    notes: Optional[str] = None
    proof: list[str] = Field(default_factory=list)


class TaskStatistics(BaseModel):
    target_date: date
    total: int
    by_status: dict[str, int]
    completion_rate: float
