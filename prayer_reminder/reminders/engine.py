"""
ReminderEngine: owns the schedule cache, policy store, ledger, dispatcher
and scheduler, drives the tick timer, and is the surface the UI/API use.
All state changes go through one lock so timer ticks and user actions
never interleave.
"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from prayer_reminder.reminders.dispatcher import AUTO_DISMISS_SECONDS, NotificationDispatcher
from prayer_reminder.reminders.ledger import FiredEventLedger
from prayer_reminder.reminders.policy_store import (
    DEFAULT_SETTINGS_KEY,
    KeyValueStore,
    PolicyStore,
    ReminderPolicy,
    SqlSettingsStore,
)
from prayer_reminder.reminders.providers import (
    FixedScheduleProvider,
    ScheduleProvider,
    create_provider,
)
from prayer_reminder.reminders.schedule_cache import ScheduleCache
from prayer_reminder.reminders.scheduler import ReminderScheduler
from prayer_reminder.reminders.service import get_latest_schedule
from prayer_reminder.reminders.sinks import NotificationSink, create_sink
from prayer_reminder.reminders.types import (
    Coordinates,
    DailySchedule,
    NextEvent,
    PermissionState,
    find_next_event,
    qibla_direction,
    validate_coordinates,
)

logger = logging.getLogger(__name__)


class ReminderEngine:
    TICK_TASK = "prayer_reminder_tick"

    def __init__(
        self,
        provider: ScheduleProvider,
        sink: NotificationSink,
        store: KeyValueStore,
        coordinates: Coordinates,
        task_manager=None,
        fallback_provider: Optional[ScheduleProvider] = None,
        settings_key: str = DEFAULT_SETTINGS_KEY,
        tick_seconds: float = 60,
        retry_seconds: float = 900,
        exact_alert_requires_event_enabled: bool = False,
        auto_dismiss_seconds: float = AUTO_DISMISS_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.RLock()
        self._clock = clock
        self.task_manager = task_manager
        self.tick_seconds = tick_seconds
        self.coordinates = coordinates
        self.sink = sink
        self.running = False
        self.background_registered = False

        self.cache = ScheduleCache(
            provider,
            fallback_provider=fallback_provider or FixedScheduleProvider(),
            executor=task_manager,
            retry_seconds=retry_seconds,
        )
        self.policy_store = PolicyStore(store, settings_key)
        self.policy_store.load()
        self.ledger = FiredEventLedger()
        self.dispatcher = NotificationDispatcher(sink, auto_dismiss_seconds=auto_dismiss_seconds)
        self.scheduler = ReminderScheduler(
            self.cache,
            self.policy_store,
            self.ledger,
            self.dispatcher,
            coordinates,
            clock=clock,
            exact_alert_requires_event_enabled=exact_alert_requires_event_enabled,
        )

    @classmethod
    def from_config(cls, config_data: Dict[str, Any], task_manager=None) -> "ReminderEngine":
        """Build an engine from the app config (database must already be initialized)."""
        location = config_data.get("location") or {}
        schedule_config = config_data.get("schedule") or {}
        reminder_config = config_data.get("reminders") or {}
        notification_config = config_data.get("notifications") or {}

        engine = cls(
            provider=create_provider(schedule_config),
            sink=create_sink(notification_config),
            store=SqlSettingsStore(),
            coordinates=validate_coordinates(location.get("lat"), location.get("lon")),
            task_manager=task_manager,
            fallback_provider=FixedScheduleProvider(schedule_config),
            settings_key=reminder_config.get("settings_key", DEFAULT_SETTINGS_KEY),
            tick_seconds=reminder_config.get("tick_seconds", 60),
            retry_seconds=schedule_config.get("retry_seconds", 900),
            exact_alert_requires_event_enabled=reminder_config.get("exact_alert_requires_event_enabled", False),
            auto_dismiss_seconds=notification_config.get("auto_dismiss_seconds", AUTO_DISMISS_SECONDS),
        )
        try:
            engine.cache.seed(get_latest_schedule())
        except Exception as e:
            logger.warning(f"Could not load stored schedule: {e}")
        return engine

    def start(self) -> None:
        """Query permission, request today's schedule, run a first tick and start the timer."""
        with self._lock:
            if self.running:
                return
            self.running = True
            permission = self.dispatcher.refresh_permission()
            self.logger.info(f"Starting reminder engine at {self.coordinates}, permission {permission}")
            self.cache.open()
            self.cache.request_refresh(self._clock().date(), self.coordinates)
            self._register_background()

        self.tick()
        if self.task_manager is not None:
            self.task_manager.schedule_task(self.TICK_TASK, self.tick, self.tick_seconds, one_time=False)

    def _register_background(self) -> None:
        if not self.dispatcher.capabilities.background:
            self.logger.debug("Background evaluation not supported by notification sink")
            return
        try:
            self.background_registered = bool(self.sink.register_background(self.tick))
        except Exception as e:
            self.logger.debug(f"Background registration failed: {e}")
            self.background_registered = False

    def stop(self) -> None:
        """Cancel the timer. A finished schedule fetch is kept; one still in flight is dropped."""
        with self._lock:
            if self.task_manager is not None:
                self.task_manager.cancel_task(self.TICK_TASK)
            self.cache.close()
            self.running = False
            self.logger.info("Reminder engine stopped")

    def tick(self, now: Optional[datetime] = None) -> list:
        with self._lock:
            try:
                return self.scheduler.tick(now)
            except Exception as e:
                self.logger.exception(f"Reminder tick failed: {e}")
                return []

    def get_next_event(self) -> Optional[NextEvent]:
        with self._lock:
            return self.scheduler.next_event

    def get_countdown_text(self) -> str:
        with self._lock:
            return self.scheduler.countdown_text

    def get_policy(self) -> ReminderPolicy:
        return self.policy_store.policy

    def update_policy(self, partial: Mapping[str, Any]) -> ReminderPolicy:
        """Merge and persist; the next tick picks the change up. ValueError on invalid input."""
        with self._lock:
            policy = self.policy_store.update(partial)
            self.logger.info(f"Reminder policy updated: {dict(partial)}")
            return policy

    def request_permission(self) -> str:
        with self._lock:
            return self.dispatcher.request_permission()

    def get_schedule(self, now: Optional[datetime] = None) -> Optional[DailySchedule]:
        """Best available schedule for today (may be stale or the fallback)."""
        with self._lock:
            now = now or self._clock()
            return self.cache.best_available(now.date(), self.coordinates)

    def trigger_test_notification(self, now: Optional[datetime] = None) -> bool:
        """Send a labelled test alert for the next prayer. Does not touch the ledger."""
        with self._lock:
            if self.dispatcher.permission != PermissionState.GRANTED:
                self.logger.info("Test reminder not sent: notification permission required")
                return False

            now = now or self._clock()
            upcoming = self.scheduler.next_event
            if upcoming is None:
                schedule = self.cache.best_available(now.date(), self.coordinates)
                if schedule is None:
                    self.logger.info("Test reminder not sent: no schedule available")
                    return False
                upcoming = find_next_event(schedule, now.hour * 60 + now.minute, now.date())

            policy = self.policy_store.policy
            lead = policy.lead_minutes_for(upcoming.event.name)
            if lead is None:
                lead = policy.default_lead_minutes
            return self.dispatcher.dispatch(upcoming.event, lead, policy, title_prefix="Test: ")

    def set_coordinates(self, lat: float, lon: float) -> Coordinates:
        """Switch location; the cache key changes so a fresh schedule is fetched."""
        coordinates = validate_coordinates(lat, lon)
        with self._lock:
            if coordinates == self.coordinates:
                return coordinates
            self.logger.info(f"Coordinates changed: {self.coordinates} -> {coordinates}")
            self.coordinates = coordinates
            self.scheduler.coordinates = coordinates
            if self.running:
                self.cache.request_refresh(self._clock().date(), coordinates)
            return coordinates

    def status(self) -> Dict[str, Any]:
        with self._lock:
            last_good = self.cache.last_good
            return {
                "state": self.scheduler.state,
                "running": self.running,
                "degraded": self.scheduler.degraded,
                "schedule_error": self.cache.last_error,
                "schedule_date": last_good.date.isoformat() if last_good else None,
                "permission": self.dispatcher.permission,
                "capabilities": self.dispatcher.capabilities._asdict(),
                "background_registered": self.background_registered,
                "settings_persisted": not self.policy_store.persist_pending,
                "coordinates": self.coordinates._asdict(),
                "qibla": qibla_direction(self.coordinates),
            }
