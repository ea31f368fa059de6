"""User model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, String
from counseling.database import Base


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False)  # student/counselor/admin

    phone = Column(String)
    address = Column(String)
    birth_date = Column(Date)
    gender = Column(String)

    # student
    class_name = Column(String)
    school = Column(String)

    # counselor
    employee_number = Column(String)
    specialization = Column(String)
    teaching_place = Column(String)
    teaching_subject = Column(String)
    counseling_status = Column(String)  # active/inactive

    created_at = Column(DateTime, default=datetime.now)
