"""
Core DB models: generic key-value settings (JSON text under a well-known key).
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, String, DateTime, Text, select

from prayer_reminder.core.db import Base, session_scope


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Setting(Base):
    """One persisted settings blob. value is JSON text; readers parse it."""
    __tablename__ = "settings"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)


def get_setting_value(key: str) -> Optional[str]:
    """Return the stored value for key, or None if there is no row."""
    with session_scope() as session:
        row = session.execute(select(Setting).where(Setting.key == key)).scalars().first()
        return row.value if row else None


def put_setting_value(key: str, value: str) -> None:
    """Create or replace the value for key in a single transaction."""
    with session_scope() as session:
        row = session.execute(select(Setting).where(Setting.key == key)).scalars().first()
        now = _utc_now()
        if row:
            row.value = value
            row.updated_at = now
        else:
            session.add(Setting(key=key, value=value, updated_at=now))
