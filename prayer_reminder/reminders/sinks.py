"""
Notification sinks: the platform side of dispatching an alert.

Each sink reports its capabilities up front so callers never probe the
platform at the call site.
"""
import logging
import os
from abc import ABC, abstractmethod
from collections import namedtuple
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

import pygame
from plyer import notification, vibrator
from plyer.utils import platform as plyer_platform

from prayer_reminder.reminders.types import PermissionState

SinkCapabilities = namedtuple(
    "SinkCapabilities",
    [
        "notifications",     # can display an alert at all
        "vibration",
        "sound",             # can play a sound of its own
        "permission_query",  # can report permission without prompting
        "background",        # can keep evaluating outside the session
    ],
    defaults=(False,) * 5,
)

NOTIFICATION_PLATFORMS = {"linux", "win", "macosx", "android"}
VIBRATION_PLATFORMS = {"android", "ios"}


class NotificationSink(ABC):
    """Platform notification capability."""

    @abstractmethod
    def capabilities(self) -> SinkCapabilities:
        pass

    def query_permission(self) -> str:
        """Current permission without prompting; UNKNOWN if it cannot be told."""
        return PermissionState.UNKNOWN

    @abstractmethod
    def request_permission(self) -> str:
        """Prompt the user if the platform requires it; returns a PermissionState."""
        pass

    @abstractmethod
    def show(
        self,
        title: str,
        body: str,
        silent: bool = False,
        require_interaction: bool = False,
        tag: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Display an alert. timeout None means it stays until dismissed."""
        pass

    def vibrate(self, pattern: List[int]) -> bool:
        return False

    def register_background(self, callback: Callable[[], Any]) -> bool:
        """Best-effort registration for evaluation outside the session."""
        return False


class NullNotificationSink(NotificationSink):
    """No notification capability; everything is a no-op."""

    def capabilities(self) -> SinkCapabilities:
        return SinkCapabilities()

    def request_permission(self) -> str:
        return PermissionState.DENIED

    def show(self, title, body, silent=False, require_interaction=False, tag=None, timeout=None) -> Any:
        return None


class DesktopNotificationSink(NotificationSink):
    """Desktop alerts through plyer, optional chime through pygame."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.app_name = config.get("app_name", "Prayer Reminders")
        self.sound_file = config.get("sound_file")
        self._sound_ready = self._init_sound()

    def _init_sound(self) -> bool:
        if not self.sound_file:
            return False
        sound_path = Path(os.path.expanduser(self.sound_file))
        if not sound_path.exists():
            self.logger.warning(f"Sound file not found: {sound_path}")
            return False
        try:
            pygame.mixer.init()
            pygame.mixer.music.load(str(sound_path))
            return True
        except pygame.error as e:
            self.logger.warning(f"Sound disabled, audio device unavailable: {e}")
            return False

    def capabilities(self) -> SinkCapabilities:
        return SinkCapabilities(
            notifications=str(plyer_platform) in NOTIFICATION_PLATFORMS,
            vibration=str(plyer_platform) in VIBRATION_PLATFORMS,
            sound=self._sound_ready,
            permission_query=True,
            background=False,
        )

    def query_permission(self) -> str:
        # Desktop platforms have no notification permission prompt
        if self.capabilities().notifications:
            return PermissionState.GRANTED
        return PermissionState.DENIED

    def request_permission(self) -> str:
        return self.query_permission()

    def show(self, title, body, silent=False, require_interaction=False, tag=None, timeout=None) -> Any:
        notification.notify(
            title=title,
            message=body,
            app_name=self.app_name,
            timeout=0 if timeout is None else int(timeout),
        )
        if not silent and self._sound_ready:
            try:
                pygame.mixer.music.play()
            except pygame.error as e:
                self.logger.warning(f"Error playing notification sound: {e}")
        return tag

    def vibrate(self, pattern: List[int]) -> bool:
        try:
            vibrator.pattern(pattern=[ms / 1000.0 for ms in pattern])
            return True
        except NotImplementedError:
            return False


SINK_TYPES = {
    'desktop': DesktopNotificationSink,
    'none': None,
}


def create_sink(config: Dict[str, Any]) -> NotificationSink:
    """Create a notification sink from the notifications config section"""
    backend_type = (config.get('backend') or 'desktop').lower()
    if backend_type not in SINK_TYPES:
        raise ValueError(f"Unknown notification backend: {backend_type}")
    sink_class = SINK_TYPES[backend_type]
    if sink_class is None:
        return NullNotificationSink()
    return sink_class(config)
