"""
Worker directory and location store.

Read-only views the assignment algorithms consume. Open-task counts are
derived at read time from active tickets and open recurring tasks, so two
reads may disagree while assignments are in flight; callers tolerate that.
"""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from campusfix.models.location import Location
from campusfix.models.recurring_task import RecurringTask, OPEN_TASK_STATUSES
from campusfix.models.ticket import Ticket, ACTIVE_STATUSES
from campusfix.models.worker import Worker
from campusfix.services.locator import normalize_locator


@dataclass(frozen=True)
class WorkerSnapshot:
    """A worker as seen by the allocators at one point in time."""

    id: str
    name: str
    skill: str
    coverage_area: Optional[str]
    is_available: bool
    open_task_count: int = 0


@dataclass(frozen=True)
class LocationSnapshot:
    id: str
    name: str
    block: Optional[str]
    floor: Optional[int] = None


class WorkerDirectory:
    """Worker lookups scoped to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _load_query(self):
        ticket_load = (
            select(func.count(Ticket.id))
            .where(
                Ticket.assignee_id == Worker.id,
                Ticket.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .correlate(Worker)
            .scalar_subquery()
        )
        task_load = (
            select(func.count(RecurringTask.id))
            .where(
                RecurringTask.worker_id == Worker.id,
                RecurringTask.status.in_([s.value for s in OPEN_TASK_STATUSES]),
            )
            .correlate(Worker)
            .scalar_subquery()
        )
        return select(Worker, ticket_load.label("ticket_load"), task_load.label("task_load"))

    @staticmethod
    def _snapshot(worker: Worker, ticket_load: int, task_load: int) -> WorkerSnapshot:
        return WorkerSnapshot(
            id=worker.id,
            name=worker.name,
            skill=worker.skill,
            coverage_area=worker.coverage_area,
            is_available=bool(worker.is_available),
            open_task_count=int(ticket_load or 0) + int(task_load or 0),
        )

    async def list_eligible_workers(
        self,
        skill_tag: Optional[str] = None,
        area_filter: Optional[str] = None,
    ) -> List[WorkerSnapshot]:
        """Available, active workers ordered by id, optionally narrowed by skill and area."""
        query = self._load_query().where(
            Worker.is_available.is_(True),
            Worker.is_active.is_(True),
        )
        if skill_tag:
            query = query.where(func.lower(Worker.skill) == skill_tag.strip().lower())
        query = query.order_by(Worker.id)

        result = await self.db.execute(query)
        snapshots = [self._snapshot(w, t, k) for w, t, k in result.all()]

        if area_filter is not None:
            wanted = normalize_locator(area_filter)
            snapshots = [s for s in snapshots if normalize_locator(s.coverage_area) == wanted]
        return snapshots

    async def get_worker(self, worker_id: str) -> Optional[WorkerSnapshot]:
        result = await self.db.execute(self._load_query().where(Worker.id == worker_id))
        row = result.first()
        if row is None:
            return None
        return self._snapshot(*row)

    async def get_model(self, worker_id: str) -> Optional[Worker]:
        result = await self.db.execute(select(Worker).where(Worker.id == worker_id))
        return result.scalar_one_or_none()


class LocationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_serviceable_locations(self, kind: str) -> List[LocationSnapshot]:
        """Operational locations of ``kind`` in block, floor, name order."""
        result = await self.db.execute(
            select(Location)
            .where(Location.kind == kind, Location.status == "operational")
            .order_by(Location.block, Location.floor, Location.name, Location.id)
        )
        return [
            LocationSnapshot(id=loc.id, name=loc.name, block=loc.block, floor=loc.floor)
            for loc in result.scalars().all()
        ]

    async def get(self, location_id: str) -> Optional[Location]:
        result = await self.db.execute(select(Location).where(Location.id == location_id))
        return result.scalar_one_or_none()
