"""
Notification dispatcher: permission handling, message rendering and the
sound/vibration policy on top of a NotificationSink. Never raises.
"""
import logging
from typing import Optional, Tuple

from prayer_reminder.reminders.errors import DispatchFailure, PermissionDenied
from prayer_reminder.reminders.policy_store import ReminderPolicy
from prayer_reminder.reminders.sinks import NotificationSink
from prayer_reminder.reminders.types import PermissionState, PrayerEvent, event_time_text

AUTO_DISMISS_SECONDS = 10
VIBRATION_PATTERN = [200, 100, 200]

_SETTLED = (PermissionState.GRANTED, PermissionState.DENIED)


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink, auto_dismiss_seconds: float = AUTO_DISMISS_SECONDS):
        self.sink = sink
        self.auto_dismiss_seconds = auto_dismiss_seconds
        self.capabilities = sink.capabilities()
        self.permission = PermissionState.UNKNOWN
        self.logger = logging.getLogger(self.__class__.__name__)

    def refresh_permission(self) -> str:
        """Read the current permission without prompting."""
        if not self.capabilities.notifications:
            self.permission = PermissionState.DENIED
        elif self.capabilities.permission_query:
            try:
                state = self.sink.query_permission()
            except Exception as e:
                self.logger.warning(f"Error querying notification permission: {e}")
                state = PermissionState.UNKNOWN
            if state in _SETTLED:
                self.permission = state
        return self.permission

    def request_permission(self) -> str:
        """
        Prompt only when the state is not already known. Granted is cached;
        otherwise the platform is asked first and prompted only if it cannot say.
        """
        if self.permission == PermissionState.GRANTED:
            return self.permission

        if self.refresh_permission() in _SETTLED:
            self.logger.info(f"Notification permission: {self.permission}")
            return self.permission

        try:
            state = self.sink.request_permission()
        except Exception as e:
            self.logger.warning(f"Notification permission request failed: {e}")
            return self.permission

        self.permission = state if state in _SETTLED else PermissionState.UNKNOWN
        self.logger.info(f"Notification permission after prompt: {self.permission}")
        return self.permission

    def build_message(self, event: PrayerEvent, lead_minutes: int) -> Tuple[str, str, str]:
        """(title, body, tag) for a reminder; lead 0 is the prayer time itself."""
        at = event_time_text(event)
        tag = f"prayer-{event.name.lower()}-{lead_minutes}"
        if lead_minutes == 0:
            return (
                f"{event.label} Prayer Time",
                f"It is time for {event.label} now ({event.arabic}) - {at}",
                tag,
            )
        unit = "minute" if lead_minutes == 1 else "minutes"
        return (
            f"{lead_minutes} {unit} to {event.label}",
            f"{event.label} prayer ({event.arabic}) at {at}",
            tag,
        )

    def dispatch(
        self,
        event: PrayerEvent,
        lead_minutes: int,
        policy: ReminderPolicy,
        title_prefix: Optional[str] = None,
    ) -> bool:
        """Show a reminder. Returns False (logged, not raised) if nothing was shown."""
        if not self.capabilities.notifications:
            self.logger.debug(f"{DispatchFailure('notifications unsupported')}; skipping {event.name}")
            return False
        if self.permission != PermissionState.GRANTED:
            self.logger.info(f"{PermissionDenied(self.permission)}; skipping {event.name} reminder")
            return False

        title, body, tag = self.build_message(event, lead_minutes)
        if title_prefix:
            title = f"{title_prefix}{title}"

        try:
            self.sink.show(
                title,
                body,
                silent=not policy.sound_enabled,
                require_interaction=lead_minutes == 0,
                tag=tag,
                timeout=None if lead_minutes == 0 else self.auto_dismiss_seconds,
            )
        except Exception as e:
            failure = DispatchFailure(f"{type(e).__name__}: {e}")
            self.logger.warning(f"Notification for {event.name} failed: {failure}")
            return False

        self.logger.info(f"Notification sent: {title}")

        if policy.vibration_enabled and self.capabilities.vibration:
            try:
                self.sink.vibrate(VIBRATION_PATTERN)
            except Exception as e:
                self.logger.debug(f"Vibration failed: {e}")

        return True
