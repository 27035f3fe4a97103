from fastapi import APIRouter, HTTPException, Query, status
from datetime import date
from typing import Optional
import logging

from campusfix.api.deps import DbSession, CurrentActor, Sink
from campusfix.models.recurring_task import RecurringTaskStatus
from campusfix.schemas.recurring_task import (
    DistributionRequest,
    DistributionSummary,
    RecurringTaskResponse,
    RecurringTaskListResponse,
    TaskReassign,
    TaskStatusUpdate,
    TaskStatistics,
)
from campusfix.services.recurring_tasks import RecurringTaskService
from campusfix.services.task_distributor import TaskDistributor
from campusfix.services.transitions import Actor, ActorRole

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_supervisor(actor: Actor) -> None:
    if actor.role != ActorRole.APPROVER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only supervisors can manage recurring tasks",
        )


@router.post("/distribute", response_model=DistributionSummary)
async def distribute_tasks(
    request: DistributionRequest,
    db: DbSession,
    actor: CurrentActor,
    sink: Sink,
    deadline: Optional[float] = Query(None, gt=0, description="Timeout in seconds"),
):
    """Create cleaning tasks for a date. Re-running for the same date only fills gaps."""
    _require_supervisor(actor)
    target_date = request.target_date or date.today()
    logger.info(f"Distribution for {target_date} requested by {actor.id}")
    return await TaskDistributor(db, sink).run(target_date, deadline=deadline)


@router.get("", response_model=RecurringTaskListResponse)
async def list_tasks(
    db: DbSession,
    actor: CurrentActor,
    scheduled_date: Optional[date] = None,
    task_status: Optional[RecurringTaskStatus] = Query(None, alias="status"),
    worker_id: Optional[str] = None,
):
    """List recurring tasks. Workers only see their own."""
    if actor.role == ActorRole.WORKER:
        worker_id = actor.id
    else:
        _require_supervisor(actor)
    tasks = await RecurringTaskService(db).list_tasks(scheduled_date, task_status, worker_id)
    return RecurringTaskListResponse(items=tasks, total=len(tasks))


@router.get("/statistics", response_model=TaskStatistics)
async def task_statistics(
    db: DbSession,
    actor: CurrentActor,
    scheduled_date: Optional[date] = None,
):
    """Per-status counts for a date (defaults to today)."""
    _require_supervisor(actor)
    return await RecurringTaskService(db).task_statistics(scheduled_date)


@router.post("/{task_id}/reassign", response_model=RecurringTaskResponse)
async def reassign_task(
    task_id: str,
    request: TaskReassign,
    db: DbSession,
    actor: CurrentActor,
    sink: Sink,
):
    """Move an open task to another available worker."""
    _require_supervisor(actor)
    return await RecurringTaskService(db, sink).reassign_task(task_id, request.worker_id, actor)


@router.patch("/{task_id}/status", response_model=RecurringTaskResponse)
async def update_task_status(
    task_id: str,
    request: TaskStatusUpdate,
    db: DbSession,
    actor: CurrentActor,
    sink: Sink,
):
    """Start, complete or skip a task."""
    return await RecurringTaskService(db, sink).update_task_status(
        task_id, actor, request.status, notes=request.notes, proof=request.proof
    )
