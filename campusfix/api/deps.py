"""
FastAPI Dependencies

Provides dependency injection for database sessions, the acting user and
the notification sink.

Authentication happens upstream: the gateway forwards the caller's id and
role in the X-Actor-Id / X-Actor-Role headers.
"""

from typing import Annotated
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from campusfix.database import get_db, async_session_maker
from campusfix.services.notification_sink import DatabaseNotificationSink, NotificationSink
from campusfix.services.transitions import Actor, ActorRole

logger = logging.getLogger(__name__)


async def get_current_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Build the acting user from the forwarded identity headers."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id or X-Actor-Role header",
        )
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown actor role: {x_actor_role}",
        )
    return Actor(id=x_actor_id.strip(), role=role)


def get_notification_sink() -> NotificationSink:
    return DatabaseNotificationSink(async_session_maker)


# Type aliases for cleaner route signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Sink = Annotated[NotificationSink, Depends(get_notification_sink)]
