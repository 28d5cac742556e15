import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel

import db
from app.services.scheduling_engine import get_scheduling_engine
from app.types.message_contract import DeliveredRecord, Preferences, TimeSlot

logging.basicConfig(level=logging.INFO)
_LOGGER = logging.getLogger(__name__)

app = FastAPI()

_archive = db.SqlMessageArchive()
_prefs = db.SqlPreferenceStore()
_device = db.SqlNotificationScheduler()

# Create tables on startup and close the DB pool on shutdown

@app.on_event("startup")
async def startup_event():
    # Local installs have no migration step; Alembic is used on Postgres.
    await db.create_all()

@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


class NotificationEvent(BaseModel):
    message_id: Optional[str] = None


class TodayResponse(BaseModel):
    status: str
    message: Optional[DeliveredRecord] = None


def _today_response(record: Optional[DeliveredRecord]) -> TodayResponse:
    # The UI shows a waiting state instead of any scheduling error.
    if record is None:
        return TodayResponse(status="pending")
    return TodayResponse(status="delivered", message=record)


async def _ensure_if_enabled() -> None:
    prefs = await _prefs.get()
    if not prefs.notifications_enabled:
        return
    await get_scheduling_engine().ensure_schedule(prefs.preferred_slots)

# --------------------------------------------
# Lifecycle events
# --------------------------------------------
@app.post("/v1/app/foreground", response_model=TodayResponse)
async def app_foreground():
    await _ensure_if_enabled()
    return _today_response(await get_scheduling_engine().today_record())


async def _notification_event(event: NotificationEvent) -> TodayResponse:
    engine = get_scheduling_engine()
    await engine.on_notification_event(event.message_id)
    await _ensure_if_enabled()
    return _today_response(await engine.today_record())


@app.post("/v1/notifications/received", response_model=TodayResponse)
async def notification_received(event: NotificationEvent):
    return await _notification_event(event)


@app.post("/v1/notifications/tapped", response_model=TodayResponse)
async def notification_tapped(event: NotificationEvent):
    return await _notification_event(event)

# --------------------------------------------
# Archive
# --------------------------------------------
@app.get("/v1/messages/today", response_model=TodayResponse)
async def today_message():
    return _today_response(await get_scheduling_engine().today_record())


@app.get("/v1/messages", response_model=List[DeliveredRecord])
async def list_messages():
    return await _archive.list_all()


@app.delete("/v1/messages", status_code=status.HTTP_204_NO_CONTENT)
async def reset_messages():
    await get_scheduling_engine().reset_history()


@app.post("/v1/messages/{message_id}/favorite", response_model=List[DeliveredRecord])
async def toggle_favorite(message_id: str):
    updated = await _archive.toggle_favorite(message_id)
    if not updated:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "message not in archive")
    return updated


@app.post("/v1/messages/{message_id}/read", response_model=List[DeliveredRecord])
async def mark_read(message_id: str):
    updated = await _archive.mark_read(message_id)
    if not updated:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "message not in archive")
    return updated

# --------------------------------------------
# Preferences
# --------------------------------------------
@app.get("/v1/preferences", response_model=Preferences)
async def get_preferences():
    return await _prefs.get()


@app.put("/v1/preferences", response_model=Preferences)
async def update_preferences(prefs: Preferences):
    saved = await _prefs.save(prefs)
    if saved.notifications_enabled:
        await get_scheduling_engine().reschedule_from_tomorrow(saved.preferred_slots)
    else:
        _LOGGER.info("Notifications disabled; cancelling every pending trigger")
        await _device.cancel_all()
    return saved


@app.get("/v1/time-slots")
async def time_slots():
    return [{"id": s.value, "start_hour": s.hours[0], "end_hour": s.hours[1]} for s in TimeSlot]
