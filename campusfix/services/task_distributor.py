"""
Daily recurring-task distribution.

Uncovered locations are grouped by block and spread round robin over the
cleaners covering that block. Blocks with no dedicated cleaner are pooled
and spread over every eligible cleaner. Planning is a pure function of the
(locations, workers, existing coverage) snapshot; ``TaskDistributor.run``
persists one plan per date in a single transaction.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campusfix.config import settings
from campusfix.database import async_session_maker, utcnow
from campusfix.exceptions import DuplicateTask
from campusfix.models.recurring_task import RecurringTask, RecurringTaskStatus
from campusfix.repositories.ticket_store import TaskStore
from campusfix.repositories.worker_directory import (
    LocationSnapshot,
    LocationStore,
    WorkerDirectory,
    WorkerSnapshot,
)
from campusfix.schemas.recurring_task import DistributionSummary
from campusfix.services.deadline import with_deadline
from campusfix.services.locator import normalize_locator
from campusfix.services.notification_sink import (
    APPROVERS,
    NotificationEvent,
    NotificationSink,
    notify,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedTask:
    location_id: str
    worker_id: str
    block: str
    fallback: bool = False


@dataclass
class DistributionPlan:
    tasks: list[PlannedTask] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # already covered for the date
    uncovered: list[str] = field(default_factory=list)  # no eligible worker at all
    blocks_without_dedicated_worker: list[str] = field(default_factory=list)

    @property
    def workers_involved(self) -> int:
        return len({t.worker_id for t in self.tasks})


def round_robin(items: Sequence, workers: Sequence[WorkerSnapshot]) -> list[tuple]:
    """Cycle through ``workers`` one item at a time until ``items`` run out."""
    if not workers:
        return []
    return [(item, workers[i % len(workers)]) for i, item in enumerate(items)]


def plan_distribution(
    locations: Sequence[LocationSnapshot],
    workers: Sequence[WorkerSnapshot],
    covered_ids: set[str],
) -> DistributionPlan:
    plan = DistributionPlan()
    pool = [w for w in workers if w.is_available]

    workers_by_area: dict[str, list[WorkerSnapshot]] = defaultdict(list)
    for worker in pool:
        workers_by_area[normalize_locator(worker.coverage_area)].append(worker)

    # dicts keep insertion order, so blocks are visited in location order
    blocks: dict[str, list[LocationSnapshot]] = {}
    for location in locations:
        if location.id in covered_ids:
            plan.skipped.append(location.id)
            continue
        blocks.setdefault(normalize_locator(location.block), []).append(location)

    deferred: list[tuple[str, LocationSnapshot]] = []
    for block, block_locations in blocks.items():
        dedicated = workers_by_area.get(block)
        if not dedicated:
            plan.blocks_without_dedicated_worker.append(block)
            deferred.extend((block, loc) for loc in block_locations)
            continue
        for location, worker in round_robin(block_locations, dedicated):
            plan.tasks.append(PlannedTask(location.id, worker.id, block))

    if deferred and not pool:
        plan.uncovered.extend(loc.id for _, loc in deferred)
        return plan

    for (block, location), worker in round_robin(deferred, pool):
        plan.tasks.append(PlannedTask(location.id, worker.id, block, fallback=True))
    return plan


class _DateLock:
    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


_date_locks: dict[date, _DateLock] = {}


@asynccontextmanager
async def _date_lock(target_date: date):
    """Serialise runs for one date; the entry is dropped once nobody holds or awaits it."""
    entry = _date_locks.get(target_date)
    if entry is None:
        entry = _date_locks[target_date] = _DateLock()
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if not entry.users:
            del _date_locks[target_date]


def _is_duplicate_task(exc: IntegrityError) -> bool:
    """True when the insert lost a race on the one-task-per-location-per-date constraint."""
    message = str(exc.orig)
    return (
        "uq_recurring_task_location_date" in message
        or "recurring_tasks.location_id, recurring_tasks.scheduled_date" in message
    )


class TaskDistributor:
    """Creates the day's cleaning tasks. Safe to re-run for the same date."""

    def __init__(
        self,
        db: AsyncSession,
        sink: Optional[NotificationSink] = None,
        skill: Optional[str] = None,
        location_kind: Optional[str] = None,
    ):
        self.db = db
        self.sink = sink
        self.skill = skill or settings.DISTRIBUTION_SKILL
        self.location_kind = location_kind or settings.DISTRIBUTION_LOCATION_KIND
        self.tasks = TaskStore(db)
        self.directory = WorkerDirectory(db)
        self.locations = LocationStore(db)

    async def _plan(self, target_date: date) -> DistributionPlan:
        covered = await self.tasks.covered_location_ids(target_date)
        locations = await self.locations.list_serviceable_locations(self.location_kind)
        workers = await self.directory.list_eligible_workers(skill_tag=self.skill)
        return plan_distribution(locations, workers, covered)

    async def _persist(self, target_date: date) -> DistributionPlan:
        plan = await self._plan(target_date)
        now = utcnow()
        self.tasks.add_all(
            RecurringTask(
                id=str(uuid.uuid4()),
                location_id=task.location_id,
                worker_id=task.worker_id,
                scheduled_date=target_date,
                status=RecurringTaskStatus.assigned.value,
                assigned_at=now,
            )
            for task in plan.tasks
        )
        await self.db.flush()
        return plan

    async def _persist_with_replan(self, target_date: date) -> DistributionPlan:
        try:
            return await self._persist(target_date)
        except IntegrityError as exc:
            await self.db.rollback()
            if not _is_duplicate_task(exc):
                raise
            # Another run inserted some of the same (location, date) rows first
            logger.warning(f"Distribution for {target_date} raced another run; re-planning")
            return await self._persist(target_date)

    async def run(self, target_date: date, deadline: Optional[float] = None) -> DistributionSummary:
        errors: list[str] = []
        async with _date_lock(target_date):
            try:
                plan = await with_deadline(
                    self._persist_with_replan(target_date),
                    deadline,
                    f"Distribution for {target_date}",
                    self.db,
                )
                await self.db.commit()
            except IntegrityError as exc:
                await self.db.rollback()
                if _is_duplicate_task(exc):
                    reason = DuplicateTask(target_date.isoformat()).detail
                else:
                    first_line = str(exc.orig).split("\n")[0]
                    reason = f"Integrity error, nothing committed: {first_line}"
                logger.error(f"Distribution for {target_date} abandoned: {reason}")
                errors.append(reason)
                plan = DistributionPlan()

        summary = self._summarize(target_date, plan, errors)
        logger.info(
            f"Distribution {target_date}: {summary.tasks_created} created, "
            f"{summary.locations_skipped} already covered, "
            f"{summary.locations_uncovered} uncovered, {summary.workers_involved} workers"
        )
        await notify(self.sink, *self._events_for(target_date, plan))
        return summary

    def _summarize(self, target_date: date, plan: DistributionPlan, errors: list[str]) -> DistributionSummary:
        if plan.uncovered:
            errors.append(
                f"No available {self.skill} worker; {len(plan.uncovered)} location(s) left uncovered"
            )

        if plan.tasks:
            message = f"Created {len(plan.tasks)} task(s) across {plan.workers_involved} worker(s)"
        elif errors:
            message = "No tasks created"
        elif plan.skipped:
            message = "All locations already covered for this date"
        else:
            message = "No serviceable locations found"

        return DistributionSummary(
            target_date=target_date,
            tasks_created=len(plan.tasks),
            locations_skipped=len(plan.skipped),
            locations_uncovered=len(plan.uncovered),
            workers_involved=plan.workers_involved,
            blocks_without_dedicated_worker=plan.blocks_without_dedicated_worker,
            errors=errors,
            message=message,
        )

    def _events_for(self, target_date: date, plan: DistributionPlan) -> list[NotificationEvent]:
        per_worker: dict[str, int] = defaultdict(int)
        for task in plan.tasks:
            per_worker[task.worker_id] += 1

        events = [
            NotificationEvent(
                type="tasks_assigned",
                recipient=worker_id,
                message=f"You have {count} cleaning task(s) for {target_date}",
                metadata={"date": target_date.isoformat(), "count": count},
            )
            for worker_id, count in per_worker.items()
        ]
        events.append(NotificationEvent(
            type="tasks_generated",
            recipient=APPROVERS,
            message=f"{len(plan.tasks)} cleaning task(s) generated for {target_date}",
            metadata={
                "date": target_date.isoformat(),
                "skipped": len(plan.skipped),
                "uncovered": len(plan.uncovered),
            },
        ))
        return events


async def distribute_daily_tasks(
    target_date: Optional[date] = None,
    deadline: Optional[float] = None,
    sink: Optional[NotificationSink] = None,
) -> DistributionSummary:
    """Entry point for the scheduler: one session, one run."""
    target_date = target_date or date.today()
    async with async_session_maker() as db:
        return await TaskDistributor(db, sink).run(target_date, deadline=deadline)
