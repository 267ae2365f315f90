"""
SQLAlchemy models for prayer schedules: one row per (date, rounded coordinates).
"""
from sqlalchemy import Column, Date, DateTime, Float, Integer, JSON, UniqueConstraint

from prayer_reminder.core.db import Base


class PrayerScheduleRecord(Base):
    """One fetched daily schedule. data is JSON: {prayer_name: "HH:MM"}."""
    __tablename__ = "prayer_schedule_records"
    __table_args__ = (UniqueConstraint("prayer_date", "lat", "lon", name="uq_schedule_date_coords"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    prayer_date = Column(Date, nullable=False, index=True)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    fetched_at = Column(DateTime(timezone=False), nullable=False, index=True)
    data = Column(JSON, nullable=False)
