"""
Reminder policy: pydantic value object plus a store that loads it from the
persisted settings blob (merged over defaults) and re-persists the whole
object on every update.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from prayer_reminder.core.models import get_setting_value, put_setting_value
from prayer_reminder.reminders.errors import PersistenceFailure
from prayer_reminder.reminders.types import PrayerName

MAX_LEAD_MINUTES = 1440

DEFAULT_SETTINGS_KEY = "prayer_reminder_settings"

logger = logging.getLogger(__name__)


class PrayerOverride(BaseModel):
    """Per-prayer reminder settings."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    enabled: bool = True
    custom_lead_minutes: Optional[int] = Field(default=None, ge=0, le=MAX_LEAD_MINUTES)


class ReminderPolicy(BaseModel):
    """Immutable reminder configuration. Replace it through PolicyStore.update()."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    enabled: bool = False
    default_lead_minutes: int = Field(default=15, ge=0, le=MAX_LEAD_MINUTES)
    sound_enabled: bool = True
    vibration_enabled: bool = True
    prayer_overrides: Dict[str, PrayerOverride] = Field(default_factory=dict)

    @field_validator("prayer_overrides", mode="before")
    @classmethod
    def _normalize_prayer_names(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("prayer_overrides must be a mapping")
        return {PrayerName.normalize(name): override for name, override in value.items()}

    def event_enabled(self, prayer: str) -> bool:
        override = self.prayer_overrides.get(prayer)
        return override.enabled if override is not None else True

    def lead_minutes_for(self, prayer: str) -> Optional[int]:
        """Effective lead time, or None if reminders for this prayer are off."""
        if not self.enabled or not self.event_enabled(prayer):
            return None
        override = self.prayer_overrides.get(prayer)
        if override is not None and override.custom_lead_minutes is not None:
            return override.custom_lead_minutes
        return self.default_lead_minutes


class KeyValueStore(ABC):
    """Durable string storage. Implementations raise PersistenceFailure."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass


class SqlSettingsStore(KeyValueStore):
    """Key-value store over the settings table."""

    def get(self, key: str) -> Optional[str]:
        try:
            return get_setting_value(key)
        except Exception as e:
            raise PersistenceFailure(f"Could not read setting {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            put_setting_value(key, value)
        except Exception as e:
            raise PersistenceFailure(f"Could not write setting {key}: {e}") from e


class PolicyStore:
    def __init__(self, store: KeyValueStore, key: str = DEFAULT_SETTINGS_KEY):
        self.store = store
        self.key = key
        self.logger = logging.getLogger(self.__class__.__name__)
        self.persist_pending = False
        self._policy = ReminderPolicy()

    @property
    def policy(self) -> ReminderPolicy:
        return self._policy

    def load(self) -> ReminderPolicy:
        """Read the persisted blob merged over defaults. Never raises."""
        try:
            raw = self.store.get(self.key)
        except PersistenceFailure as e:
            self.logger.warning(f"{e}; using default reminder settings")
            raw = None

        self._policy = self._parse(raw)
        self.logger.info(f"Reminder policy loaded: {self._policy.model_dump()}")
        return self._policy

    def _parse(self, raw: Optional[str]) -> ReminderPolicy:
        if not raw:
            return ReminderPolicy()
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Error loading reminder settings: {e}")
            return ReminderPolicy()
        if not isinstance(data, dict):
            self.logger.error("Error loading reminder settings: blob is not an object")
            return ReminderPolicy()

        # Accept field by field so one bad value does not discard the rest
        merged: Dict[str, Any] = ReminderPolicy().model_dump()
        for field in ReminderPolicy.model_fields:
            if field not in data:
                continue
            candidate = dict(merged, **{field: data[field]})
            try:
                merged = ReminderPolicy.model_validate(candidate).model_dump()
            except (ValidationError, ValueError) as e:
                self.logger.warning(f"Ignoring invalid reminder setting {field}={data[field]!r}: {e}")
        return ReminderPolicy.model_validate(merged)

    def update(self, partial: Mapping[str, Any]) -> ReminderPolicy:
        """
        Shallow-merge partial into the current policy and persist the full
        result. Raises ValueError for unknown fields or invalid values; a
        failed write keeps the new policy in memory and is retried by the
        next update.
        """
        unknown = set(partial) - set(ReminderPolicy.model_fields)
        if unknown:
            raise ValueError(f"Unknown reminder settings: {sorted(unknown)}")

        current = self._policy.model_dump()
        current.update(partial)
        new_policy = ReminderPolicy.model_validate(current)
        self._policy = new_policy

        try:
            self.store.set(self.key, new_policy.model_dump_json())
            if self.persist_pending:
                self.logger.info("Reminder settings persisted after earlier failure")
            self.persist_pending = False
        except PersistenceFailure as e:
            self.persist_pending = True
            self.logger.warning(f"{e}; keeping reminder settings in memory")

        return new_policy
