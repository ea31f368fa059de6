"""Availability model definitions."""

from sqlalchemy import Column, Date, ForeignKey, Integer, Time, UniqueConstraint
from counseling.database import Base


class AvailabilitySlot(Base):
    """One bookable hour declared by a counselor for a calendar date."""
    __tablename__ = "counselor_availability"

    id = Column(Integer, primary_key=True)
    counselor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    available_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)

    __table_args__ = (
        UniqueConstraint("counselor_id", "available_date", "start_time", name="uq_counselor_availability_slot"),
    )
