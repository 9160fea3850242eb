"""
SQLAlchemy model for sleep entries.
"""
import uuid

from sqlalchemy import Column, String, Float, DateTime, Text, Index
from sqlalchemy.sql import func
from nightsleep.models.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class SleepEntryRecord(Base):
    """
    One continuous sleep interval. Times are stored in UTC.
    end_time is NULL while the sleep is still running.
    """
    __tablename__ = "sleep_entries"

    id = Column(String(36), primary_key=True, default=_new_id)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_sleep_entry_start", "start_time"),
        Index("idx_sleep_entry_end", "end_time"),
    )

    def __repr__(self):
        return (
            f"<SleepEntryRecord(id={self.id}, start={self.start_time}, "
            f"end={self.end_time}, duration={self.duration_minutes}min)>"
        )
