"""
Reminder scheduler: the per-tick state machine.

Each tick finds the next prayer, fires lead-time reminders and exact-time
alerts that are due at this minute, and refreshes the display values. The
ledger makes every (date, prayer, lead) fire at most once however often
tick() runs. A minute that is never ticked (process suspended) is not
replayed.
"""
import logging
from collections import namedtuple
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from prayer_reminder.reminders.dispatcher import NotificationDispatcher
from prayer_reminder.reminders.ledger import FiredEventLedger
from prayer_reminder.reminders.policy_store import PolicyStore, ReminderPolicy
from prayer_reminder.reminders.schedule_cache import ScheduleCache
from prayer_reminder.reminders.types import (
    Coordinates,
    DailySchedule,
    NextEvent,
    PrayerEvent,
    event_minutes,
    find_next_event,
    format_countdown,
    minutes_until,
)

FiredReminder = namedtuple("FiredReminder", ["occurrence_date", "prayer", "lead_minutes", "delivered"])


class SchedulerState:
    IDLE = "idle"
    ARMED = "armed"
    EVALUATING = "evaluating"


class ReminderScheduler:
    def __init__(
        self,
        cache: ScheduleCache,
        policy_store: PolicyStore,
        ledger: FiredEventLedger,
        dispatcher: NotificationDispatcher,
        coordinates: Coordinates,
        clock: Callable[[], datetime] = datetime.now,
        exact_alert_requires_event_enabled: bool = False,
    ):
        self.cache = cache
        self.policy_store = policy_store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.coordinates = coordinates
        self.exact_alert_requires_event_enabled = exact_alert_requires_event_enabled
        self._clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

        self.state = SchedulerState.IDLE
        self.degraded = False
        self.next_event: Optional[NextEvent] = None
        self.countdown_text = ""

    def tick(self, now: Optional[datetime] = None) -> List[FiredReminder]:
        """One evaluation cycle. Returns the reminders fired on this tick."""
        now = now or self._clock()
        policy = self.policy_store.policy

        if not policy.enabled:
            self._go_idle("reminders disabled")
            return []

        today = now.date()
        schedule = self.cache.best_available(today, self.coordinates)
        self.degraded = self.cache.degraded
        if schedule is None:
            self._go_idle("no schedule available yet")
            return []
        if schedule.date != today:
            self.logger.debug(f"Using schedule for {schedule.date} on {today} until refresh completes")

        self.state = SchedulerState.EVALUATING
        try:
            return self._evaluate(schedule, now, policy)
        finally:
            self.state = SchedulerState.ARMED

    def _go_idle(self, reason: str) -> None:
        if self.state != SchedulerState.IDLE:
            self.logger.info(f"Scheduler idle: {reason}")
        self.state = SchedulerState.IDLE
        self.next_event = None
        self.countdown_text = ""

    def _evaluate(self, schedule: DailySchedule, now: datetime, policy: ReminderPolicy) -> List[FiredReminder]:
        today = now.date()
        now_minutes = now.hour * 60 + now.minute
        fired: List[FiredReminder] = []

        for event in schedule.events:
            until = minutes_until(event, now_minutes)
            occurrence = today if event_minutes(event) >= now_minutes else today + timedelta(days=1)

            lead = policy.lead_minutes_for(event.name)
            if lead is not None and until == lead:
                fired.extend(self._fire(occurrence, event, lead, policy))

            if until == 0 and self._exact_alert_allowed(policy, event.name):
                fired.extend(self._fire(occurrence, event, 0, policy))

        self.next_event = find_next_event(schedule, now_minutes, today)
        self.countdown_text = format_countdown(self.next_event.minutes_until)
        return fired

    def _exact_alert_allowed(self, policy: ReminderPolicy, prayer: str) -> bool:
        # The prayer time itself is not a reminder; only the global switch applies by default
        if self.exact_alert_requires_event_enabled:
            return policy.event_enabled(prayer)
        return True

    def _fire(self, occurrence: date, event: PrayerEvent, lead: int, policy: ReminderPolicy) -> List[FiredReminder]:
        # Record before dispatching: a failed or slow dispatch must not fire again next tick
        if not self.ledger.try_mark(occurrence, event.name, lead):
            return []
        self.logger.info(f"{event.name} on {occurrence}: firing {'alert' if lead == 0 else f'{lead} minute reminder'}")
        delivered = self.dispatcher.dispatch(event, lead, policy)
        return [FiredReminder(occurrence, event.name, lead, delivered)]
