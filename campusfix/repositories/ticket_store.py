"""
Ticket and recurring-task stores.

``update_if_status`` is the concurrency guard: an UPDATE that only matches
while the row still holds the status (and, for tickets, the version) the
caller read. Zero matched rows means another writer won.
"""

from datetime import date, datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from campusfix.models.recurring_task import RecurringTask
from campusfix.models.ticket import Ticket, TicketStatusHistory, TicketStatus, TERMINAL_STATUSES


class TicketStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        result = await self.db.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def add(self, ticket: Ticket) -> None:
        self.db.add(ticket)

    async def update_if_status(
        self,
        ticket_id: str,
        expected_status: TicketStatus,
        expected_version: int,
        patch: dict,
    ) -> bool:
        result = await self.db.execute(
            update(Ticket)
            .where(
                Ticket.id == ticket_id,
                Ticket.status == TicketStatus(expected_status).value,
                Ticket.version == expected_version,
            )
            .values(version=Ticket.version + 1, **patch)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_if_open(self, ticket_id: str, patch: dict) -> bool:
        """Side-channel edit that never touches status or version."""
        result = await self.db.execute(
            update(Ticket)
            .where(
                Ticket.id == ticket_id,
                Ticket.status.not_in([s.value for s in TERMINAL_STATUSES]),
            )
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def append_history(
        self,
        ticket_id: str,
        status: TicketStatus,
        actor_id: Optional[str],
        actor_role: Optional[str],
        note: Optional[str] = None,
    ) -> TicketStatusHistory:
        result = await self.db.execute(
            select(func.max(TicketStatusHistory.sequence)).where(TicketStatusHistory.ticket_id == ticket_id)
        )
        last = result.scalar() or 0
        entry = TicketStatusHistory(
            ticket_id=ticket_id,
            sequence=last + 1,
            status=TicketStatus(status).value,
            actor_id=actor_id,
            actor_role=actor_role,
            note=note,
        )
        self.db.add(entry)
        return entry

    async def find_open_for_location(self, location_id: str, category: str) -> Optional[Ticket]:
        result = await self.db.execute(
            select(Ticket)
            .where(
                Ticket.location_id == location_id,
                func.lower(Ticket.category) == category.strip().lower(),
                Ticket.status.not_in([s.value for s in TERMINAL_STATUSES]),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_waiting(self, categories: Iterable[str]) -> List[Ticket]:
        """Reported tickets whose last assignment attempt found nobody, oldest first."""
        result = await self.db.execute(
            select(Ticket)
            .where(
                Ticket.status == TicketStatus.reported.value,
                Ticket.awaiting_worker.is_(True),
                func.lower(Ticket.category).in_([c.lower() for c in categories]),
            )
            .order_by(Ticket.created_at, Ticket.id)
        )
        return list(result.scalars().all())

    async def list_unescalated_open(self, created_before: datetime) -> List[Ticket]:
        result = await self.db.execute(
            select(Ticket)
            .where(
                Ticket.status.not_in([s.value for s in TERMINAL_STATUSES]),
                Ticket.escalated_at.is_(None),
                Ticket.created_at < created_before,
            )
            .order_by(Ticket.created_at)
        )
        return list(result.scalars().all())


class TaskStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, task_id: str) -> Optional[RecurringTask]:
        result = await self.db.execute(
            select(RecurringTask)
            .where(RecurringTask.id == task_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def covered_location_ids(self, scheduled_date: date) -> set[str]:
        result = await self.db.execute(
            select(RecurringTask.location_id).where(RecurringTask.scheduled_date == scheduled_date)
        )
        return set(result.scalars().all())

    def add_all(self, tasks: Iterable[RecurringTask]) -> None:
        self.db.add_all(list(tasks))

    async def update_if_status(self, task_id: str, expected_status: str, patch: dict) -> bool:
        result = await self.db.execute(
            update(RecurringTask)
            .where(RecurringTask.id == task_id, RecurringTask.status == expected_status)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_tasks(
        self,
        scheduled_date: Optional[date] = None,
        status: Optional[str] = None,
        worker_id: Optional[str] = None,
    ) -> List[RecurringTask]:
        query = select(RecurringTask)
        if scheduled_date:
            query = query.where(RecurringTask.scheduled_date == scheduled_date)
        if status:
            query = query.where(RecurringTask.status == status)
        if worker_id:
            query = query.where(RecurringTask.worker_id == worker_id)
        query = query.order_by(RecurringTask.scheduled_date.desc(), RecurringTask.location_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_by_status(self, scheduled_date: date) -> dict[str, int]:
        result = await self.db.execute(
            select(RecurringTask.status, func.count(RecurringTask.id))
            .where(RecurringTask.scheduled_date == scheduled_date)
            .group_by(RecurringTask.status)
        )
        return {status: count for status, count in result.all()}
