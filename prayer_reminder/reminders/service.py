"""
Service layer: save and load prayer schedules from DB.
"""
import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, delete

from prayer_reminder.core.db import session_scope
from prayer_reminder.reminders.models import PrayerScheduleRecord
from prayer_reminder.reminders.types import (
    Coordinates,
    DailySchedule,
    build_schedule,
    schedule_times,
)

logger = logging.getLogger(__name__)

COORDINATE_PRECISION = 2


def round_coordinates(coordinates: Coordinates) -> Coordinates:
    """Round to ~1 km so GPS jitter does not invalidate cached schedules."""
    return Coordinates(
        round(float(coordinates.lat), COORDINATE_PRECISION),
        round(float(coordinates.lon), COORDINATE_PRECISION),
    )


def save_schedule(schedule: DailySchedule) -> None:
    """Replace the stored schedule for this date and rounded coordinates."""
    coords = round_coordinates(schedule.coordinates)
    fetched_at = datetime.now(timezone.utc).replace(tzinfo=None)
    with session_scope() as session:
        session.execute(
            delete(PrayerScheduleRecord).where(
                PrayerScheduleRecord.prayer_date == schedule.date,
                PrayerScheduleRecord.lat == coords.lat,
                PrayerScheduleRecord.lon == coords.lon,
            )
        )
        session.add(
            PrayerScheduleRecord(
                prayer_date=schedule.date,
                lat=coords.lat,
                lon=coords.lon,
                fetched_at=fetched_at,
                data=schedule_times(schedule),
            )
        )


def _record_to_schedule(record: PrayerScheduleRecord) -> Optional[DailySchedule]:
    try:
        return build_schedule(record.prayer_date, Coordinates(record.lat, record.lon), record.data or {})
    except (ValueError, TypeError) as e:
        logger.warning(f"Ignoring malformed schedule record {record.id}: {e}")
        return None


def get_stored_schedule(prayer_date: date, coordinates: Coordinates) -> Optional[DailySchedule]:
    """Return the stored schedule for this date and rounded coordinates, if any."""
    coords = round_coordinates(coordinates)
    with session_scope() as session:
        record = (
            session.execute(
                select(PrayerScheduleRecord).where(
                    PrayerScheduleRecord.prayer_date == prayer_date,
                    PrayerScheduleRecord.lat == coords.lat,
                    PrayerScheduleRecord.lon == coords.lon,
                )
            )
            .scalars().first()
        )
    return _record_to_schedule(record) if record else None


def get_latest_schedule() -> Optional[DailySchedule]:
    """Return the most recently fetched schedule (last-known-good after a restart)."""
    with session_scope() as session:
        record = (
            session.execute(
                select(PrayerScheduleRecord)
                .order_by(PrayerScheduleRecord.fetched_at.desc())
                .limit(1)
            )
            .scalars().first()
        )
    return _record_to_schedule(record) if record else None


def delete_schedules_before(prayer_date: date) -> int:
    """Drop stored schedules for dates before prayer_date. Returns rows deleted."""
    with session_scope() as session:
        result = session.execute(
            delete(PrayerScheduleRecord).where(PrayerScheduleRecord.prayer_date < prayer_date)
        )
        return result.rowcount or 0
