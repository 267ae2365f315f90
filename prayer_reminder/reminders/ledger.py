"""
Fired-event ledger: which (date, prayer, lead minutes) reminders have
already been dispatched, so repeated or irregular ticks fire each at most once.
"""
import logging
from datetime import date, timedelta
from typing import Optional, Set, Tuple

LedgerEntry = Tuple[date, str, int]

logger = logging.getLogger(__name__)


class FiredEventLedger:
    """
    In-memory set scoped to the current date. The first operation that sees
    a later date drops entries more than a day older than it. Occurrence
    dates are today or tomorrow (a reminder before midnight for tomorrow's
    Fajr), so an entry that can still matter is never dropped.
    Not thread-safe; the owning engine serializes access.
    """

    def __init__(self):
        self._entries: Set[LedgerEntry] = set()
        self._current_date: Optional[date] = None

    def _observe(self, on_date: date) -> None:
        if self._current_date is not None and on_date <= self._current_date:
            return
        self._current_date = on_date
        cutoff = on_date - timedelta(days=1)
        stale = {entry for entry in self._entries if entry[0] < cutoff}
        if stale:
            logger.debug(f"Ledger rolled over to {on_date}, dropped {len(stale)} entries")
            self._entries -= stale

    def has_fired(self, on_date: date, prayer: str, lead_minutes: int) -> bool:
        self._observe(on_date)
        return (on_date, prayer, int(lead_minutes)) in self._entries

    def mark_fired(self, on_date: date, prayer: str, lead_minutes: int) -> None:
        self._observe(on_date)
        self._entries.add((on_date, prayer, int(lead_minutes)))

    def try_mark(self, on_date: date, prayer: str, lead_minutes: int) -> bool:
        """Record the entry and return True, or False if it was already there."""
        if self.has_fired(on_date, prayer, lead_minutes):
            return False
        self.mark_fired(on_date, prayer, lead_minutes)
        return True

    def entries(self) -> Set[LedgerEntry]:
        return set(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
