"""
Lifecycle notifications.

Emission is fire-and-forget: ``notify`` runs after the transition has been
committed and logs, rather than raises, any sink failure.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from sqlalchemy.ext.asyncio import async_sessionmaker

from campusfix.models.notification import Notification

logger = logging.getLogger(__name__)

REVIEWERS = "role:reviewer"
APPROVERS = "role:approver"


@dataclass
class NotificationEvent:
    type: str
    recipient: str
    message: str
    ticket_id: Optional[str] = None
    task_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    async def emit(self, event: NotificationEvent) -> None:
        ...


class LoggingNotificationSink:
    """Writes events to the log only."""

    async def emit(self, event: NotificationEvent) -> None:
        logger.info(
            f"Notification {event.type} -> {event.recipient}: {event.message}",
            extra={"ticket_id": event.ticket_id, "task_id": event.task_id},
        )


class DatabaseNotificationSink:
    """Stores events as in-app notifications, each in its own session."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def emit(self, event: NotificationEvent) -> None:
        async with self.session_maker() as db:
            db.add(Notification(
                recipient=event.recipient,
                type=event.type,
                message=event.message,
                ticket_id=event.ticket_id,
                task_id=event.task_id,
                extra=event.metadata or None,
            ))
            await db.commit()


async def notify(sink: Optional[NotificationSink], *events: NotificationEvent) -> int:
    """Emit each event; returns how many the sink accepted."""
    if sink is None:
        return 0
    delivered = 0
    for event in events:
        try:
            await sink.emit(event)
            delivered += 1
        except Exception as e:
            logger.error(
                f"Failed to emit {event.type} notification to {event.recipient}: {e}",
                extra={"ticket_id": event.ticket_id, "task_id": event.task_id},
            )
    return delivered
