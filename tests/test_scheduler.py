from datetime import timedelta

from prayer_reminder.reminders.schedule_cache import ScheduleCache
from prayer_reminder.reminders.scheduler import FiredReminder, SchedulerState
from prayer_reminder.reminders.types import PermissionState

from .conftest import TODAY, ManualExecutor, at

TOMORROW = TODAY + timedelta(days=1)


def test_lead_reminder_fires_once_per_minute(make_scheduler, provider, sink):
    provider.times["Asr"] = "15:45"
    scheduler = make_scheduler(enabled=True, default_lead_minutes=15)

    fired = scheduler.tick(at(15, 30))
    assert fired == [FiredReminder(TODAY, "Asr", 15, True)]
    assert [n["title"] for n in sink.shown] == ["15 minutes to Asr"]

    assert scheduler.tick(at(15, 30)) == []
    assert len(sink.shown) == 1


def test_exact_time_alert_after_lead_reminder(make_scheduler, provider, sink):
    provider.times["Asr"] = "15:45"
    scheduler = make_scheduler(enabled=True, default_lead_minutes=15)
    scheduler.tick(at(15, 30))

    fired = scheduler.tick(at(15, 45))

    assert fired == [FiredReminder(TODAY, "Asr", 0, True)]
    assert sink.shown[-1]["title"] == "Asr Prayer Time"
    assert scheduler.ledger.has_fired(TODAY, "Asr", 0)
    assert scheduler.ledger.has_fired(TODAY, "Asr", 15)


def test_repeated_ticks_never_trigger_the_sink_twice(make_scheduler, sink):
    scheduler = make_scheduler(enabled=True, default_lead_minutes=15)
    for _ in range(5):
        scheduler.tick(at(15, 15))
    for _ in range(5):
        scheduler.tick(at(15, 30))
    assert [n["tag"] for n in sink.shown] == ["prayer-asr-15", "prayer-asr-0"]


def test_exact_alert_fires_for_individually_disabled_prayer(make_scheduler, sink):
    scheduler = make_scheduler(
        enabled=True,
        default_lead_minutes=15,
        prayer_overrides={"Asr": {"enabled": False}},
    )
    assert scheduler.tick(at(15, 15)) == []
    fired = scheduler.tick(at(15, 30))
    assert fired == [FiredReminder(TODAY, "Asr", 0, True)]
    assert scheduler.tick(at(15, 30)) == []
    assert len(sink.shown) == 1


def test_exact_alert_can_require_the_prayer_to_be_enabled(make_scheduler, sink):
    scheduler = make_scheduler(
        exact_alert_requires_event_enabled=True,
        enabled=True,
        prayer_overrides={"Asr": {"enabled": False}},
    )
    assert scheduler.tick(at(15, 30)) == []
    assert scheduler.tick(at(18, 0)) == [FiredReminder(TODAY, "Maghrib", 0, True)]


def test_disabled_policy_is_idle_and_never_fetches(make_scheduler, provider, sink):
    scheduler = make_scheduler()
    assert scheduler.tick(at(15, 15)) == []
    assert scheduler.state == SchedulerState.IDLE
    assert scheduler.next_event is None
    assert scheduler.countdown_text == ""
    assert provider.calls == []
    assert sink.shown == []


def test_disabling_clears_display_values(make_scheduler):
    scheduler = make_scheduler(enabled=True)
    scheduler.tick(at(12, 0))
    assert scheduler.countdown_text == "15m"

    scheduler.policy_store.update({"enabled": False})
    scheduler.tick(at(12, 1))
    assert scheduler.next_event is None
    assert scheduler.countdown_text == ""


def test_next_event_and_countdown_update_without_firing(make_scheduler, sink):
    scheduler = make_scheduler(enabled=True, default_lead_minutes=15)
    assert scheduler.tick(at(13, 0)) == []
    assert scheduler.state == SchedulerState.ARMED
    assert scheduler.next_event.event.name == "Asr"
    assert scheduler.next_event.minutes_until == 150
    assert scheduler.countdown_text == "2h 30m"
    assert sink.shown == []


def test_custom_lead_overrides_default(make_scheduler):
    scheduler = make_scheduler(
        enabled=True,
        default_lead_minutes=15,
        prayer_overrides={"Maghrib": {"custom_lead_minutes": 30}},
    )
    assert scheduler.tick(at(17, 30)) == [FiredReminder(TODAY, "Maghrib", 30, True)]
    assert scheduler.tick(at(17, 45)) == []


def test_lead_longer_than_gap_between_prayers(make_scheduler):
    scheduler = make_scheduler(enabled=True, default_lead_minutes=200)
    # Dhuhr is next at 12:10 but Asr is exactly 200 minutes away
    fired = scheduler.tick(at(12, 10))
    assert fired == [FiredReminder(TODAY, "Asr", 200, True)]
    assert scheduler.next_event.event.name == "Dhuhr"


def test_skipped_minute_is_not_replayed(make_scheduler, sink):
    scheduler = make_scheduler(enabled=True, default_lead_minutes=15)
    scheduler.tick(at(15, 10))
    scheduler.tick(at(15, 20))
    assert sink.shown == []


def test_reminder_before_midnight_is_keyed_to_tomorrow(make_scheduler, provider):
    provider.times["Fajr"] = "00:20"
    scheduler = make_scheduler(enabled=True, default_lead_minutes=30)

    assert scheduler.tick(at(23, 50)) == [FiredReminder(TOMORROW, "Fajr", 30, True)]

    assert scheduler.tick(at(0, 20, day=TOMORROW)) == [FiredReminder(TOMORROW, "Fajr", 0, True)]
    assert scheduler.ledger.has_fired(TOMORROW, "Fajr", 30)


def test_same_prayer_fires_again_the_next_day(make_scheduler, sink):
    scheduler = make_scheduler(enabled=True, default_lead_minutes=15)
    scheduler.tick(at(15, 15))
    scheduler.tick(at(15, 15, day=TOMORROW))
    assert [n["tag"] for n in sink.shown] == ["prayer-asr-15", "prayer-asr-15"]


def test_failed_dispatch_is_still_recorded(make_scheduler, sink):
    sink.fail_show = True
    scheduler = make_scheduler(enabled=True, default_lead_minutes=15)

    assert scheduler.tick(at(15, 15)) == [FiredReminder(TODAY, "Asr", 15, False)]
    assert scheduler.ledger.has_fired(TODAY, "Asr", 15)
    assert scheduler.tick(at(15, 15)) == []


def test_denied_permission_does_not_storm(make_scheduler, sink):
    sink.permission = PermissionState.DENIED
    scheduler = make_scheduler(enabled=True, default_lead_minutes=15)

    assert scheduler.tick(at(15, 15)) == [FiredReminder(TODAY, "Asr", 15, False)]
    assert scheduler.tick(at(15, 15)) == []
    assert sink.shown == []
    assert sink.prompts == 0


def test_fetch_failure_for_tomorrow_keeps_todays_schedule(make_scheduler, provider):
    scheduler = make_scheduler(enabled=True)
    scheduler.tick(at(23, 0))
    assert scheduler.degraded is False

    provider.fail = True
    scheduler.tick(at(0, 5, day=TOMORROW))

    assert scheduler.degraded is True
    assert scheduler.state == SchedulerState.ARMED
    assert scheduler.next_event.event.name == "Fajr"
    assert scheduler.next_event.occurrence_date == TOMORROW


def test_idle_until_first_schedule_arrives(make_scheduler, provider):
    scheduler = make_scheduler(enabled=True)
    executor = ManualExecutor()
    scheduler.cache = ScheduleCache(provider, executor=executor)

    scheduler.tick(at(12, 0))
    assert scheduler.state == SchedulerState.IDLE

    executor.run_all()
    scheduler.tick(at(12, 1))
    assert scheduler.state == SchedulerState.ARMED
    assert scheduler.next_event.minutes_until == 14
