"""Notification model for in-app notifications."""

from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON

from campusfix.database import Base, utcnow


class Notification(Base):
    """In-app notification produced by a lifecycle or distribution event."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Target user id, or a role group such as "role:reviewer"
    recipient = Column(String(64), nullable=False, index=True)

    type = Column(String(50), nullable=False, index=True)  # ticket_assigned, rework_required, tasks_generated, ...
    message = Column(Text, nullable=False)

    ticket_id = Column(String(36), nullable=True, index=True)
    task_id = Column(String(36), nullable=True, index=True)
    extra = Column(JSON, nullable=True)

    read = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<Notification {self.type} -> {self.recipient}>"
