"""Recurring task operations after distribution: reassignment, progress and statistics."""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from campusfix.database import utcnow
from campusfix.exceptions import (
    ConcurrentModification,
    InvalidTransition,
    NoWorkerAvailable,
    NotFoundError,
)
from campusfix.models.recurring_task import RecurringTask, RecurringTaskStatus, OPEN_TASK_STATUSES
from campusfix.repositories.ticket_store import TaskStore
from campusfix.repositories.worker_directory import WorkerDirectory
from campusfix.schemas.recurring_task import TaskStatistics
from campusfix.services.approval_workflow import clean_evidence
from campusfix.services.notification_sink import APPROVERS, NotificationEvent, NotificationSink, notify
from campusfix.services.transitions import Actor, ActorRole

logger = logging.getLogger(__name__)

T = RecurringTaskStatus

# Supervisors act with the approver role
TASK_TRANSITIONS: dict[tuple[RecurringTaskStatus, ActorRole], frozenset[RecurringTaskStatus]] = {
    (T.assigned, ActorRole.WORKER): frozenset({T.in_progress}),
    (T.in_progress, ActorRole.WORKER): frozenset({T.completed}),
    (T.assigned, ActorRole.APPROVER): frozenset({T.skipped}),
    (T.in_progress, ActorRole.APPROVER): frozenset({T.skipped}),
}


class RecurringTaskService:
    def __init__(self, db: AsyncSession, sink: Optional[NotificationSink] = None):
        self.db = db
        self.sink = sink
        self.tasks = TaskStore(db)
        self.directory = WorkerDirectory(db)

    async def get_task(self, task_id: str) -> RecurringTask:
        task = await self.tasks.get(task_id)
        if task is None:
            raise NotFoundError("RecurringTask", task_id)
        return task

    async def list_tasks(
        self,
        scheduled_date: Optional[date] = None,
        status: Optional[RecurringTaskStatus] = None,
        worker_id: Optional[str] = None,
    ) -> list[RecurringTask]:
        return await self.tasks.list_tasks(
            scheduled_date=scheduled_date,
            status=RecurringTaskStatus(status).value if status else None,
            worker_id=worker_id,
        )

    async def reassign_task(
        self,
        task_id: str,
        worker_id: str,
        actor: Optional[Actor] = None,
    ) -> RecurringTask:
        """Move an open task to another available worker."""
        task = await self.get_task(task_id)
        status = RecurringTaskStatus(task.status)
        role = actor.role.value if actor else ActorRole.APPROVER.value

        if actor is not None and actor.role != ActorRole.APPROVER:
            raise InvalidTransition(status.value, status.value, role, "only supervisors may reassign tasks")
        if status not in OPEN_TASK_STATUSES:
            raise InvalidTransition(status.value, status.value, role, "only open tasks can be reassigned")

        worker = await self.directory.get_model(worker_id)
        if worker is None:
            raise NotFoundError("Worker", worker_id)
        if not worker.is_available or not worker.is_active:
            raise NoWorkerAvailable(f"Worker {worker.name} is not available")

        previous_worker_id = task.worker_id
        updated = await self.tasks.update_if_status(
            task.id, status.value, {"worker_id": worker.id, "assigned_at": utcnow()}
        )
        if not updated:
            await self.db.rollback()
            raise ConcurrentModification("RecurringTask", task_id)
        await self.db.commit()

        task = await self.get_task(task_id)
        logger.info(f"Task {task_id} reassigned from {previous_worker_id} to {worker.id}")

        events = [NotificationEvent(
            type="task_reassigned",
            recipient=worker.id,
            message=f"A cleaning task for {task.scheduled_date} was reassigned to you",
            task_id=task.id,
        )]
        if previous_worker_id and previous_worker_id != worker.id:
            events.append(NotificationEvent(
                type="task_unassigned",
                recipient=previous_worker_id,
                message=f"A cleaning task for {task.scheduled_date} was moved to {worker.name}",
                task_id=task.id,
            ))
        await notify(self.sink, *events)
        return task

    async def update_task_status(
        self,
        task_id: str,
        actor: Actor,
        status: RecurringTaskStatus,
        notes: Optional[str] = None,
        proof: Optional[list[str]] = None,
    ) -> RecurringTask:
        task = await self.get_task(task_id)
        current = RecurringTaskStatus(task.status)
        target = RecurringTaskStatus(status)

        if target not in TASK_TRANSITIONS.get((current, actor.role), frozenset()):
            raise InvalidTransition(current.value, target.value, actor.role.value)
        if actor.role == ActorRole.WORKER and actor.id != task.worker_id:
            raise InvalidTransition(
                current.value, target.value, actor.role.value, "task is assigned to another worker"
            )

        patch = {"status": target.value}
        if notes is not None:
            patch["notes"] = notes
        if proof:
            patch["proof"] = clean_evidence(proof)
        if target == RecurringTaskStatus.completed:
            patch["completed_at"] = utcnow()

        updated = await self.tasks.update_if_status(task.id, current.value, patch)
        if not updated:
            await self.db.rollback()
            raise ConcurrentModification("RecurringTask", task_id)
        await self.db.commit()

        task = await self.get_task(task_id)
        logger.info(f"Task {task_id}: {current.value} -> {target.value} by {actor.id}")

        if target == RecurringTaskStatus.skipped and task.worker_id:
            await notify(self.sink, NotificationEvent(
                type="task_skipped",
                recipient=task.worker_id,
                message=f"Your cleaning task for {task.scheduled_date} was skipped",
                task_id=task.id,
            ))
        elif target == RecurringTaskStatus.completed:
            await notify(self.sink, NotificationEvent(
                type="task_completed",
                recipient=APPROVERS,
                message=f"Cleaning task {task.id} completed",
                task_id=task.id,
            ))
        return task

    async def task_statistics(self, scheduled_date: Optional[date] = None) -> TaskStatistics:
        scheduled_date = scheduled_date or date.today()
        counts = await self.tasks.count_by_status(scheduled_date)
        by_status = {s.value: counts.get(s.value, 0) for s in RecurringTaskStatus}
        total = sum(by_status.values())
        completed = by_status[RecurringTaskStatus.completed.value]
        return TaskStatistics(
            target_date=scheduled_date,
            total=total,
            by_status=by_status,
            completion_rate=round(completed / total * 100, 1) if total else 0.0,
        )
