from datetime import timedelta

from prayer_reminder.reminders.ledger import FiredEventLedger

from .conftest import TODAY

TOMORROW = TODAY + timedelta(days=1)


def test_mark_then_has_fired():
    ledger = FiredEventLedger()
    assert not ledger.has_fired(TODAY, "Asr", 15)
    ledger.mark_fired(TODAY, "Asr", 15)
    assert ledger.has_fired(TODAY, "Asr", 15)
    assert not ledger.has_fired(TODAY, "Asr", 0)
    assert not ledger.has_fired(TODAY, "Maghrib", 15)


def test_try_mark_succeeds_once_per_tuple():
    ledger = FiredEventLedger()
    results = [ledger.try_mark(TODAY, "Asr", 15) for _ in range(5)]
    assert results == [True, False, False, False, False]
    assert len(ledger) == 1


def test_entries_for_tomorrow_do_not_evict_today():
    ledger = FiredEventLedger()
    ledger.mark_fired(TODAY, "Isha", 0)
    ledger.mark_fired(TOMORROW, "Fajr", 15)
    assert ledger.has_fired(TODAY, "Isha", 0)
    assert ledger.has_fired(TOMORROW, "Fajr", 15)


def test_old_dates_are_dropped_when_a_later_date_is_seen():
    ledger = FiredEventLedger()
    ledger.mark_fired(TODAY, "Asr", 15)
    ledger.mark_fired(TODAY, "Asr", 0)

    day_after = TODAY + timedelta(days=2)
    assert not ledger.has_fired(day_after, "Asr", 15)
    assert ledger.entries() == set()


def test_same_tuple_fires_again_on_a_new_day():
    ledger = FiredEventLedger()
    assert ledger.try_mark(TODAY, "Asr", 15)
    assert ledger.try_mark(TOMORROW, "Asr", 15)
    assert ledger.entries() == {(TODAY, "Asr", 15), (TOMORROW, "Asr", 15)}
