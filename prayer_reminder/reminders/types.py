"""
Domain types for the reminder engine: prayer events, daily schedules and
the next-event computation.
"""
import math
from collections import namedtuple
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

MINUTES_PER_DAY = 24 * 60


class PrayerName:
    """The five daily prayers, in schedule order."""
    FAJR = "Fajr"
    DHUHR = "Dhuhr"
    ASR = "Asr"
    MAGHRIB = "Maghrib"
    ISHA = "Isha"

    ORDER = (FAJR, DHUHR, ASR, MAGHRIB, ISHA)

    ARABIC = {
        FAJR: "الفجر",
        DHUHR: "الظهر",
        ASR: "العصر",
        MAGHRIB: "المغرب",
        ISHA: "العشاء",
    }

    @classmethod
    def normalize(cls, name: str) -> str:
        """Map any casing ("fajr", "FAJR") to the canonical name; ValueError if unknown."""
        for prayer in cls.ORDER:
            if str(name).strip().lower() == prayer.lower():
                return prayer
        raise ValueError(f"Unknown prayer: {name!r}")


class PermissionState:
    """Notification permission tri-state."""
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


Coordinates = namedtuple("Coordinates", ["lat", "lon"])

# One scheduled prayer. hour/minute are local clock time; label is for display.
PrayerEvent = namedtuple("PrayerEvent", ["name", "hour", "minute", "label", "arabic"])

# Exactly five PrayerEvents in ORDER, tagged with the date and coordinates used.
DailySchedule = namedtuple("DailySchedule", ["date", "coordinates", "events"])

# Result of the next-event search. occurrence_date is tomorrow on rollover.
NextEvent = namedtuple("NextEvent", ["event", "minutes_until", "occurrence_date"])


def event_minutes(event: PrayerEvent) -> int:
    return event.hour * 60 + event.minute


def event_time_text(event: PrayerEvent) -> str:
    return f"{event.hour:02d}:{event.minute:02d}"


def parse_clock_time(value: str) -> Tuple[int, int]:
    """Parse "HH:MM", ignoring a trailing timezone tag like "05:12 (EAT)"."""
    text = str(value).strip().split(" ")[0]
    parts = text.split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid clock time: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Clock time out of range: {value!r}")
    return hour, minute


def validate_coordinates(lat: float, lon: float) -> Coordinates:
    """Return Coordinates or raise ValueError if out of range."""
    lat = float(lat)
    lon = float(lon)
    if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        raise ValueError("Latitude must be between -90 and 90, longitude between -180 and 180")
    return Coordinates(lat, lon)


def build_schedule(schedule_date: date, coordinates: Coordinates, times: Dict[str, str]) -> DailySchedule:
    """
    Build a DailySchedule from {prayer_name: "HH:MM"}.
    Raises ValueError if a prayer is missing or the times are out of order.
    """
    normalized = {}
    for name, value in times.items():
        try:
            normalized[PrayerName.normalize(name)] = value
        except ValueError:
            continue  # e.g. Sunrise, Midnight

    events: List[PrayerEvent] = []
    for prayer in PrayerName.ORDER:
        if prayer not in normalized:
            raise ValueError(f"Missing time for {prayer}")
        hour, minute = parse_clock_time(normalized[prayer])
        events.append(PrayerEvent(prayer, hour, minute, prayer, PrayerName.ARABIC[prayer]))

    for earlier, later in zip(events, events[1:]):
        if event_minutes(later) < event_minutes(earlier):
            raise ValueError(f"{later.name} ({event_time_text(later)}) is before {earlier.name} ({event_time_text(earlier)})")

    return DailySchedule(schedule_date, coordinates, tuple(events))


def schedule_times(schedule: DailySchedule) -> Dict[str, str]:
    """{prayer_name: "HH:MM"} for persistence and the API."""
    return {event.name: event_time_text(event) for event in schedule.events}


def minutes_until(event: PrayerEvent, now_minutes: int) -> int:
    """Minutes from now until the event's next occurrence; 0 if it is now."""
    delta = event_minutes(event) - now_minutes
    if delta < 0:
        delta += MINUTES_PER_DAY
    return delta


def find_next_event(schedule: DailySchedule, now_minutes: int, today: Optional[date] = None) -> NextEvent:
    """
    The first event strictly after now_minutes, or tomorrow's Fajr when every
    event today has passed.
    """
    today = today or schedule.date
    for event in schedule.events:
        if event_minutes(event) > now_minutes:
            return NextEvent(event, event_minutes(event) - now_minutes, today)

    fajr = schedule.events[0]
    return NextEvent(fajr, (MINUTES_PER_DAY - now_minutes) + event_minutes(fajr), today + timedelta(days=1))


def format_countdown(minutes: int) -> str:
    hours, mins = divmod(max(0, int(minutes)), 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


KAABA = Coordinates(21.4225, 39.8262)


def qibla_direction(coordinates: Coordinates) -> int:
    """Initial great-circle bearing to the Kaaba in whole degrees from north."""
    lat1 = math.radians(coordinates.lat)
    lat2 = math.radians(KAABA.lat)
    delta_lon = math.radians(KAABA.lon - coordinates.lon)

    y = math.sin(delta_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(delta_lon)

    bearing = (math.degrees(math.atan2(y, x)) + 360) % 360
    return round(bearing) % 360
