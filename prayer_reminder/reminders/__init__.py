from .engine import ReminderEngine
from .errors import (
    DispatchFailure,
    PermissionDenied,
    PersistenceFailure,
    ReminderError,
    ScheduleUnavailable,
)

__all__ = [
    "ReminderEngine",
    "ReminderError",
    "ScheduleUnavailable",
    "PermissionDenied",
    "DispatchFailure",
    "PersistenceFailure",
]
