"""Escalation of open tickets that have outlived their severity's SLA window."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from campusfix.config import settings
from campusfix.database import async_session_maker, utcnow
from campusfix.repositories.ticket_store import TicketStore
from campusfix.services.notification_sink import APPROVERS, NotificationEvent, NotificationSink, notify
from campusfix.services.priority_service import is_sla_breached, sla_window

logger = logging.getLogger(__name__)


async def escalate_breaches(
    db: AsyncSession,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> int:
    """Mark every breached, not-yet-escalated open ticket. Returns how many were escalated."""
    now = now or utcnow()
    store = TicketStore(db)

    shortest = min(settings.sla_hours.values())
    candidates = await store.list_unescalated_open(created_before=now - timedelta(hours=shortest))

    escalated = []
    for ticket in candidates:
        if not is_sla_breached(ticket.created_at, ticket.severity, now):
            continue
        if await store.update_if_open(ticket.id, {"escalated_at": now}):
            escalated.append((ticket.id, ticket.severity, ticket.title, ticket.created_at))
    await db.commit()

    for ticket_id, severity, title, created_at in escalated:
        overdue = now - created_at - sla_window(severity)
        logger.warning(f"SLA breached for ticket {ticket_id} ({severity}), overdue by {overdue}")
        await notify(sink, NotificationEvent(
            type="sla_breached",
            recipient=APPROVERS,
            message=f"SLA breached for {severity} ticket '{title}'",
            ticket_id=ticket_id,
            metadata={"severity": severity, "overdue_minutes": int(overdue.total_seconds() // 60)},
        ))
    return len(escalated)


async def check_sla_breaches(sink: Optional[NotificationSink] = None) -> int:
    """Scheduled entry point."""
    async with async_session_maker() as db:
        count = await escalate_breaches(db, sink)
    if count:
        logger.info(f"SLA check escalated {count} ticket(s)")
    return count
