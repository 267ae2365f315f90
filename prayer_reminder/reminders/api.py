"""
HTTP API for the reminder engine. Mounted at /api/reminders/.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, ValidationError

from .policy_store import PrayerOverride, ReminderPolicy
from .types import event_time_text


class PrayerEventResponse(BaseModel):
    name: str
    label: str
    arabic: str
    time: str


class NextEventResponse(BaseModel):
    prayer: PrayerEventResponse
    minutes_until: int
    occurrence_date: date
    countdown: str


class ScheduleResponse(BaseModel):
    date: date
    degraded: bool
    events: List[PrayerEventResponse]


class PolicyUpdateRequest(BaseModel):
    """Partial policy; only fields that are set are merged."""

    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    default_lead_minutes: Optional[int] = None
    sound_enabled: Optional[bool] = None
    vibration_enabled: Optional[bool] = None
    prayer_overrides: Optional[Dict[str, PrayerOverride]] = None


class PermissionResponse(BaseModel):
    permission: str


class TestNotificationResponse(BaseModel):
    sent: bool


def _event_response(event) -> PrayerEventResponse:
    return PrayerEventResponse(name=event.name, label=event.label, arabic=event.arabic, time=event_time_text(event))


def get_router(engine) -> Optional[APIRouter]:
    """Return router for the engine; mounted with prefix /api/reminders."""
    router = APIRouter(tags=["Prayer Reminders"])

    @router.get("/next", response_model=NextEventResponse)
    def get_next() -> NextEventResponse:
        """Next prayer and countdown, as of the last tick."""
        upcoming = engine.get_next_event()
        if upcoming is None:
            raise HTTPException(status_code=404, detail="No upcoming prayer (reminders disabled or no schedule)")
        return NextEventResponse(
            prayer=_event_response(upcoming.event),
            minutes_until=upcoming.minutes_until,
            occurrence_date=upcoming.occurrence_date,
            countdown=engine.get_countdown_text(),
        )

    @router.get("/schedule", response_model=ScheduleResponse)
    def get_schedule() -> ScheduleResponse:
        schedule = engine.get_schedule()
        if schedule is None:
            raise HTTPException(status_code=404, detail="No prayer schedule available")
        return ScheduleResponse(
            date=schedule.date,
            degraded=engine.cache.degraded,
            events=[_event_response(event) for event in schedule.events],
        )

    @router.get("/policy", response_model=ReminderPolicy)
    def get_policy() -> ReminderPolicy:
        return engine.get_policy()

    @router.put("/policy", response_model=ReminderPolicy)
    def update_policy(request: PolicyUpdateRequest) -> ReminderPolicy:
        """Merge the given fields into the reminder policy and persist it."""
        partial = request.model_dump(exclude_unset=True)
        try:
            return engine.update_policy(partial)
        except (ValidationError, ValueError) as e:
            raise HTTPException(status_code=422, detail=str(e))

    @router.post("/permission", response_model=PermissionResponse)
    def request_permission() -> PermissionResponse:
        return PermissionResponse(permission=engine.request_permission())

    @router.post("/test", response_model=TestNotificationResponse)
    def send_test() -> TestNotificationResponse:
        return TestNotificationResponse(sent=engine.trigger_test_notification())

    @router.get("/status")
    def get_status() -> Dict[str, Any]:
        return engine.status()

    return router
