"""Per-counselor settings, stored as JSON values keyed by name."""

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, UniqueConstraint
from counseling.database import Base

DEFAULT_SLOTS_KEY = "defaultSlots"


class CounselorSetting(Base):
    __tablename__ = "counselor_settings"

    id = Column(Integer, primary_key=True)
    counselor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    setting_key = Column(String, nullable=False)
    setting_value = Column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("counselor_id", "setting_key", name="uq_counselor_setting_key"),
    )
