import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Any, Dict, Optional

import requests

from prayer_reminder.reminders.errors import ScheduleUnavailable
from prayer_reminder.reminders.service import (
    delete_schedules_before,
    get_stored_schedule,
    save_schedule,
)
from prayer_reminder.reminders.types import (
    Coordinates,
    DailySchedule,
    PrayerName,
    build_schedule,
)

DEFAULT_FALLBACK_TIMES = {
    PrayerName.FAJR: "05:30",
    PrayerName.DHUHR: "12:15",
    PrayerName.ASR: "15:30",
    PrayerName.MAGHRIB: "18:00",
    PrayerName.ISHA: "19:30",
}


class ScheduleProvider(ABC):
    """Base class for prayer schedule sources"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def fetch_schedule(self, schedule_date: date, coordinates: Coordinates) -> DailySchedule:
        """Get the five prayer times for a date and location
        Args:
            schedule_date: local calendar date
            coordinates: latitude/longitude the times are computed for
        Returns:
            DailySchedule
        Raises:
            ScheduleUnavailable when no schedule can be produced
        """
        pass


class FixedScheduleProvider(ScheduleProvider):
    """Same configured times every day. Used as the hard-coded fallback."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config or {})
        self.times = dict(DEFAULT_FALLBACK_TIMES)
        self.times.update(self.config.get("fallback") or {})

    def fetch_schedule(self, schedule_date: date, coordinates: Coordinates) -> DailySchedule:
        try:
            return build_schedule(schedule_date, coordinates, self.times)
        except ValueError as e:
            self.logger.error(f"Invalid fallback schedule {self.times}: {e}")
            return build_schedule(schedule_date, coordinates, DEFAULT_FALLBACK_TIMES)


class AladhanProvider(ScheduleProvider):
    """Prayer times from api.aladhan.com, stored in the DB per date and location"""

    DEFAULT_BASE_URL = "https://api.aladhan.com/v1"

    def fetch_schedule(self, schedule_date: date, coordinates: Coordinates) -> DailySchedule:
        stored = self._get_stored(schedule_date, coordinates)
        if stored is not None:
            self.logger.debug(f"Using stored schedule for {schedule_date}")
            return stored

        schedule = self._get_api_schedule(schedule_date, coordinates)

        if self.config.get("store_schedules", True):
            try:
                save_schedule(schedule)
                delete_schedules_before(schedule_date - timedelta(days=self.config.get("keep_days", 7)))
            except Exception as e:
                self.logger.warning(f"Could not store schedule for {schedule_date}: {e}")

        return schedule

    def _get_stored(self, schedule_date: date, coordinates: Coordinates) -> Optional[DailySchedule]:
        if not self.config.get("store_schedules", True):
            return None
        try:
            return get_stored_schedule(schedule_date, coordinates)
        except Exception as e:
            self.logger.debug(f"Stored schedule lookup failed: {e}")
            return None

    def _get_api_schedule(self, schedule_date: date, coordinates: Coordinates) -> DailySchedule:
        base_url = (self.config.get("base_url") or self.DEFAULT_BASE_URL).rstrip("/")
        url = f"{base_url}/timings/{schedule_date.strftime('%d-%m-%Y')}"
        params = {
            'latitude': coordinates.lat,
            'longitude': coordinates.lon,
            'method': self.config.get('calculation_method', 2),
            'school': self.config.get('school', 0),
        }

        self.logger.info(f"Making API request to {url} with params {params}")
        try:
            response = requests.get(url, params=params, timeout=self.config.get("timeout", 10))
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ScheduleUnavailable(f"Prayer times API request failed: {e}") from e

        if not isinstance(data, dict) or data.get('code') != 200:
            status = data.get('status') if isinstance(data, dict) else data
            raise ScheduleUnavailable(f"Prayer times API error: {status}")

        try:
            timings = data['data']['timings']
            schedule = build_schedule(schedule_date, coordinates, timings)
        except (KeyError, TypeError, ValueError) as e:
            raise ScheduleUnavailable(f"Unexpected prayer times payload: {e}") from e

        self.logger.info(f"Fetched prayer times for {schedule_date}: {timings}")
        return schedule


PROVIDER_TYPES = {
    'aladhan': AladhanProvider,
    'fixed': FixedScheduleProvider,
}


def create_provider(config: Dict[str, Any]) -> ScheduleProvider:
    """Create a schedule provider from the schedule config section"""
    backend_type = (config.get('backend') or 'aladhan').lower()
    provider_class = PROVIDER_TYPES.get(backend_type)
    if provider_class is None:
        raise ValueError(f"Unknown prayer schedule backend: {backend_type}")
    return provider_class(config)
