from sqlalchemy import Column, String, Boolean, DateTime

from campusfix.database import Base, utcnow


class Worker(Base):
    """Field technician or cleaner.

    ``is_available`` is the only eligibility gate used by the assignment
    algorithms; ``is_active`` mirrors the account state.
    """

    __tablename__ = "workers"

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), index=True)
    phone = Column(String(20))
    kind = Column(String(20), nullable=False, default="technician")  # technician, cleaner
    skill = Column(String(50), nullable=False, index=True)
    coverage_area = Column(String(100), nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    availability_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    def __repr__(self):
        return f"<Worker {self.name} ({self.skill})>"
