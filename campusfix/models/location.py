from sqlalchemy import Column, Integer, String, DateTime

from campusfix.database import Base, utcnow


class Location(Base):
    """A room, classroom or asset position that tickets and cleaning visits target."""

    __tablename__ = "locations"

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    kind = Column(String(20), nullable=False, default="room", index=True)  # room, classroom, asset
    block = Column(String(50), nullable=True)  # building / hostel block
    floor = Column(Integer, nullable=True)
    asset_type = Column(String(50), nullable=True)
    status = Column(String(30), nullable=False, default="operational", index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Location {self.name} ({self.block})>"
