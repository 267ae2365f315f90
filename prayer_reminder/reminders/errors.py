"""
Failure taxonomy for the reminder engine. All of these are recoverable;
callers log them and degrade to a no-op.
"""


class ReminderError(Exception):
    """Base class for reminder engine failures."""


class ScheduleUnavailable(ReminderError):
    """The schedule provider could not produce a schedule (network, geolocation, bad data)."""


class PermissionDenied(ReminderError):
    """Notifications are not permitted; re-request only on user action."""


class DispatchFailure(ReminderError):
    """The notification sink raised or is unsupported."""


class PersistenceFailure(ReminderError):
    """The persisted key-value store could not be read or written."""
