import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from campusfix.exceptions import DeadlineExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_deadline(
    awaitable: Awaitable[T],
    seconds: Optional[float],
    operation: str,
    db: Optional[AsyncSession] = None,
) -> T:
    """Await ``awaitable`` within ``seconds``; on expiry roll back ``db`` and raise.

    Callers keep their commit outside the deadline, so an expired call never
    leaves a partial write behind.
    """
    if seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        if db is not None:
            await db.rollback()
        logger.warning(f"{operation} aborted after {seconds}s deadline; changes rolled back")
        raise DeadlineExceeded(operation, seconds)
