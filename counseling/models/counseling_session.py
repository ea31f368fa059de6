"""Counseling session model definitions."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from counseling.database import Base


class SessionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"


class ChatStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class CancellationStatus(str, Enum):
    PENDING_STUDENT = "pending_student"
    APPROVED = "approved"


class CounselingSession(Base):
    """A requested or scheduled appointment between a student and a counselor.

    ``date_time`` is not a foreign key into the availability table; a booked
    session stays valid when the counselor later edits their slots.
    """
    __tablename__ = "counseling_sessions"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    counselor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date_time = Column(DateTime, nullable=False)
    topic = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SessionStatus.PENDING.value)
    chat_status = Column(String, nullable=False, default=ChatStatus.CLOSED.value)
    cancellation_status = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        Index("idx_sessions_counselor_status", "counselor_id", "status"),
        Index("idx_sessions_student_time", "student_id", "date_time"),
    )
