import concurrent.futures
from datetime import date, datetime

import pytest

from prayer_reminder.core.db import dispose_db, init_db
from prayer_reminder.reminders.dispatcher import NotificationDispatcher
from prayer_reminder.reminders.errors import PersistenceFailure, ScheduleUnavailable
from prayer_reminder.reminders.ledger import FiredEventLedger
from prayer_reminder.reminders.policy_store import KeyValueStore, PolicyStore
from prayer_reminder.reminders.providers import ScheduleProvider
from prayer_reminder.reminders.schedule_cache import ScheduleCache
from prayer_reminder.reminders.scheduler import ReminderScheduler
from prayer_reminder.reminders.sinks import NotificationSink, SinkCapabilities
from prayer_reminder.reminders.types import Coordinates, PermissionState, build_schedule

TODAY = date(2026, 10, 19)
HARAMAYA = Coordinates(9.4118, 42.0346)
DEFAULT_TIMES = {"Fajr": "05:30", "Dhuhr": "12:15", "Asr": "15:30", "Maghrib": "18:00", "Isha": "19:30"}


def at(hour, minute, day=TODAY):
    return datetime(day.year, day.month, day.day, hour, minute, 12)


class FakeSink(NotificationSink):
    def __init__(self, permission=PermissionState.GRANTED, prompt_result=PermissionState.GRANTED,
                 notifications=True, vibration=True, permission_query=True, fail_show=False, fail_vibrate=False):
        self.permission = permission
        self.prompt_result = prompt_result
        self.caps = SinkCapabilities(
            notifications=notifications,
            vibration=vibration,
            sound=False,
            permission_query=permission_query,
            background=False,
        )
        self.fail_show = fail_show
        self.fail_vibrate = fail_vibrate
        self.shown = []
        self.vibrations = []
        self.prompts = 0

    def capabilities(self):
        return self.caps

    def query_permission(self):
        return self.permission

    def request_permission(self):
        self.prompts += 1
        self.permission = self.prompt_result
        return self.prompt_result

    def show(self, title, body, silent=False, require_interaction=False, tag=None, timeout=None):
        if self.fail_show:
            raise RuntimeError("notification daemon gone")
        self.shown.append({
            "title": title,
            "body": body,
            "silent": silent,
            "require_interaction": require_interaction,
            "tag": tag,
            "timeout": timeout,
        })
        return tag

    def vibrate(self, pattern):
        if self.fail_vibrate:
            raise RuntimeError("no vibrator")
        self.vibrations.append(list(pattern))
        return True


class FakeProvider(ScheduleProvider):
    def __init__(self, times=None, fail=False):
        super().__init__({})
        self.times = dict(times or DEFAULT_TIMES)
        self.fail = fail
        self.calls = []

    def fetch_schedule(self, schedule_date, coordinates):
        self.calls.append((schedule_date, coordinates))
        if self.fail:
            raise ScheduleUnavailable("network down")
        return build_schedule(schedule_date, coordinates, self.times)


class MemoryStore(KeyValueStore):
    def __init__(self, data=None, fail_reads=False, fail_writes=False):
        self.data = dict(data or {})
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.writes = 0

    def get(self, key):
        if self.fail_reads:
            raise PersistenceFailure("disk unreadable")
        return self.data.get(key)

    def set(self, key, value):
        if self.fail_writes:
            raise PersistenceFailure("disk full")
        self.writes += 1
        self.data[key] = value


class ManualExecutor:
    """Holds submitted work until run_all() so tests control when fetches resolve."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args):
        future = concurrent.futures.Future()
        self.jobs.append((future, fn, args))
        return future

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for future, fn, args in jobs:
            if future.cancelled():
                continue
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)


class FakeTaskManager:
    def __init__(self):
        self.scheduled = {}
        self.cancelled = []
        self.executor = ManualExecutor()

    def schedule_task(self, name, callback, delay, one_time=True):
        self.scheduled[name] = (callback, delay, one_time)

    def cancel_task(self, name):
        self.cancelled.append(name)
        self.scheduled.pop(name, None)

    def submit(self, fn, *args):
        return self.executor.submit(fn, *args)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def schedule():
    return build_schedule(TODAY, HARAMAYA, DEFAULT_TIMES)


@pytest.fixture
def make_scheduler(provider, store, sink):
    """Build a scheduler wired to the fakes; policy fields can be passed as kwargs."""
    def factory(exact_alert_requires_event_enabled=False, **policy):
        policy_store = PolicyStore(store)
        policy_store.load()
        if policy:
            policy_store.update(policy)
        dispatcher = NotificationDispatcher(sink)
        dispatcher.refresh_permission()
        cache = ScheduleCache(provider, fallback_provider=FakeProvider())
        return ReminderScheduler(
            cache,
            policy_store,
            FiredEventLedger(),
            dispatcher,
            HARAMAYA,
            exact_alert_requires_event_enabled=exact_alert_requires_event_enabled,
        )
    return factory


@pytest.fixture
def db(tmp_path):
    init_db(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    yield
    dispose_db()
