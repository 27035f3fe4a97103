import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from campusfix.database import utcnow
from campusfix.exceptions import NotFoundError
from campusfix.repositories.worker_directory import WorkerDirectory
from campusfix.services.notification_sink import NotificationSink
from campusfix.services.ticket_lifecycle import TicketLifecycle

logger = logging.getLogger(__name__)


async def set_worker_availability(
    db: AsyncSession,
    worker_id: str,
    is_available: bool,
    sink: Optional[NotificationSink] = None,
) -> int:
    """Toggle a worker's availability.

    When the worker becomes available, tickets left waiting for staff are
    assigned again. Returns the number of waiting tickets that were assigned.
    """
    worker = await WorkerDirectory(db).get_model(worker_id)
    if worker is None:
        raise NotFoundError("Worker", worker_id)

    was_available = bool(worker.is_available)
    worker.is_available = is_available
    worker.availability_updated_at = utcnow()
    await db.commit()
    logger.info(f"Worker {worker.name} availability set to {is_available}")

    if is_available and not was_available:
        return await TicketLifecycle(db, sink).retry_waiting_assignments(worker_id)
    return 0
