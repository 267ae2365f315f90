"""
Today's schedule, keyed by (date, rounded coordinates).

get_schedule() is the blocking call. The scheduler uses best_available(),
which never waits on the provider: refreshes run on the executor and are
adopted on a later call from the owning thread. Only the owning thread
mutates cache state; the executor only runs the provider.
"""
import concurrent.futures
import logging
import time
from datetime import date
from typing import Callable, Dict, Optional, Tuple

from prayer_reminder.reminders.errors import ScheduleUnavailable
from prayer_reminder.reminders.providers import ScheduleProvider
from prayer_reminder.reminders.service import round_coordinates
from prayer_reminder.reminders.types import Coordinates, DailySchedule

CacheKey = Tuple[date, float, float]

logger = logging.getLogger(__name__)


class InlineExecutor:
    """Runs submitted work immediately on the caller's thread."""

    def submit(self, fn, *args) -> concurrent.futures.Future:
        future: concurrent.futures.Future = concurrent.futures.Future()
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)
        return future


class ScheduleCache:
    def __init__(
        self,
        provider: ScheduleProvider,
        fallback_provider: Optional[ScheduleProvider] = None,
        executor=None,
        retry_seconds: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.fallback_provider = fallback_provider
        self.executor = executor or InlineExecutor()
        self.retry_seconds = retry_seconds
        self._clock = clock

        self._entries: Dict[CacheKey, DailySchedule] = {}
        self._last_good: Optional[DailySchedule] = None
        self._pending: Optional[Tuple[CacheKey, concurrent.futures.Future]] = None
        self._failed_at: Dict[CacheKey, float] = {}
        self._closed = False

        self.degraded = False
        self.last_error: Optional[str] = None

    @staticmethod
    def cache_key(schedule_date: date, coordinates: Coordinates) -> CacheKey:
        rounded = round_coordinates(coordinates)
        return (schedule_date, rounded.lat, rounded.lon)

    @property
    def last_good(self) -> Optional[DailySchedule]:
        return self._last_good

    def seed(self, schedule: Optional[DailySchedule]) -> None:
        """Use a previously stored schedule as last-known-good until a fetch succeeds."""
        if schedule is not None and self._last_good is None:
            logger.info(f"Seeded last-known-good schedule for {schedule.date}")
            self._last_good = schedule

    def get_schedule(self, schedule_date: date, coordinates: Coordinates) -> DailySchedule:
        """Cached schedule for the key, fetching synchronously on a miss. Raises ScheduleUnavailable."""
        self._evict_before(schedule_date)
        key = self.cache_key(schedule_date, coordinates)
        if key in self._entries:
            return self._entries[key]

        try:
            schedule = self._fetch(schedule_date, coordinates)
        except ScheduleUnavailable as e:
            self._record_failure(key, e)
            raise
        self._store(key, schedule)
        return schedule

    def request_refresh(self, schedule_date: date, coordinates: Coordinates) -> None:
        """Start a background fetch for the key unless one is already in flight."""
        if self._closed:
            return
        key = self.cache_key(schedule_date, coordinates)
        if self._pending is not None:
            pending_key, future = self._pending
            if pending_key == key and not future.done():
                return
            if not future.done():
                logger.debug(f"Discarding in-flight refresh for {pending_key}")
                future.cancel()
        logger.info(f"Requesting schedule refresh for {schedule_date} at {coordinates}")
        self._pending = (key, self.executor.submit(self._fetch, schedule_date, coordinates))

    def best_available(self, schedule_date: date, coordinates: Coordinates) -> Optional[DailySchedule]:
        """
        Non-blocking: the fresh schedule for the key if cached, else the
        last-known-good schedule, else the fallback schedule once a fetch has
        failed. None only while the very first fetch is still in flight.
        """
        self._adopt_pending()
        self._evict_before(schedule_date)
        key = self.cache_key(schedule_date, coordinates)

        if key not in self._entries and self._may_retry(key):
            self.request_refresh(schedule_date, coordinates)
            self._adopt_pending()

        if key in self._entries:
            self.degraded = False
            return self._entries[key]

        self.degraded = key in self._failed_at
        if self._last_good is not None:
            return self._last_good

        if self.degraded and self.fallback_provider is not None:
            logger.info("Using fallback schedule")
            return self.fallback_provider.fetch_schedule(schedule_date, coordinates)

        return None

    def open(self) -> None:
        """Accept refreshes again after close(). Cached entries and last-known-good are kept."""
        self._closed = False

    def close(self) -> None:
        """Stop adopting refreshes. A finished fetch is kept; one still in flight is dropped."""
        self._adopt_pending()
        self._closed = True
        if self._pending is not None:
            self._pending[1].cancel()
            self._pending = None

    def _fetch(self, schedule_date: date, coordinates: Coordinates) -> DailySchedule:
        try:
            return self.provider.fetch_schedule(schedule_date, coordinates)
        except ScheduleUnavailable:
            raise
        except Exception as e:
            raise ScheduleUnavailable(f"Schedule provider failed: {e}") from e

    def _adopt_pending(self) -> None:
        if self._pending is None or self._closed:
            return
        key, future = self._pending
        if not future.done():
            return
        self._pending = None
        if future.cancelled():
            return
        try:
            schedule = future.result()
        except Exception as e:
            self._record_failure(key, e)
            return
        self._store(key, schedule)

    def _store(self, key: CacheKey, schedule: DailySchedule) -> None:
        self._entries[key] = schedule
        self._last_good = schedule
        self._failed_at.pop(key, None)
        self.last_error = None
        logger.info(f"Schedule cached for {schedule.date}")

    def _record_failure(self, key: CacheKey, error: Exception) -> None:
        logger.warning(f"Schedule unavailable for {key[0]}: {error}")
        self._failed_at[key] = self._clock()
        self.last_error = str(error)

    def _may_retry(self, key: CacheKey) -> bool:
        failed_at = self._failed_at.get(key)
        return failed_at is None or self._clock() - failed_at >= self.retry_seconds

    def _evict_before(self, schedule_date: date) -> None:
        stale = [key for key in self._entries if key[0] < schedule_date]
        for key in stale:
            del self._entries[key]
        for key in [key for key in self._failed_at if key[0] < schedule_date]:
            del self._failed_at[key]
