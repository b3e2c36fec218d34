"""
Events router: list grouped events, create an event, resync from Google.

Delegates business logic to services.event_service. Every Google call goes
through get_valid_access_token first (refreshes an expired token, no retry).
Validates inputs before any Google call.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth import get_current_user, get_valid_access_token
from config import DEFAULT_DAYS, MAX_DAYS, MIN_DAYS
from database import get_db
from models import User
from schemas import DateRange, DayGroup, EventOut, EventsResponse, WeekGroup
from services import event_service

router = APIRouter(prefix="/api")


# --- Request models ---


class CreateEventBody(BaseModel):
    """Request body for creating an event; times are ISO 8601."""
    title: str = Field(..., min_length=1, max_length=1024)
    start_time: datetime
    end_time: datetime


# --- Endpoints ---


@router.get("/events", response_model=EventsResponse)
def list_events(
    days: int = Query(DEFAULT_DAYS, ge=MIN_DAYS, le=MAX_DAYS),
    start_date: str | None = Query(None, alias="startDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Events starting within `days` calendar days from startDate (default today),
    grouped by day for up to 7 days and by Sunday-started week beyond that.
    startDate may be a date (2024-06-10) or a date-time.
    Reads the local store only; use POST /api/events/refresh to pull from Google.
    """
    start = None
    if start_date:
        try:
            start = datetime.fromisoformat(start_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="startDate must be an ISO 8601 date")
    try:
        window = event_service.compute_window(days, start)
        events = event_service.list_events_in_window(db, user.id, window)
    except OverflowError:
        raise HTTPException(status_code=400, detail="startDate out of range")
    groups = event_service.group_events(events, days)
    return EventsResponse(
        events=[_group_out(group) for group in groups],
        dateRange=DateRange(startDate=window.start, endDate=window.end, days=window.days),
    )


@router.post("/events", response_model=EventOut, status_code=201)
def create_event(
    body: CreateEventBody,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create an event on Google Calendar, then store the local copy.
    end_time must be after start_time; checked before Google is called.
    """
    start_time = event_service.to_utc(body.start_time)
    end_time = event_service.to_utc(body.end_time)
    if not body.title.strip():
        raise HTTPException(status_code=400, detail="Title is required")
    if end_time <= start_time:
        raise HTTPException(status_code=400, detail="End time must be after start time")

    access_token = get_valid_access_token(user, db)
    try:
        event = event_service.create_event(
            db, user, access_token, body.title, start_time, end_time
        )
    except event_service.EventValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return event


@router.post("/events/refresh")
def refresh_events(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Pull the last and next 90 days from Google Calendar into the local store."""
    access_token = get_valid_access_token(user, db)
    result = event_service.sync_events(db, user, access_token)
    return {"message": "Events refreshed successfully", "count": result.fetched}


def _group_out(group: dict) -> DayGroup | WeekGroup:
    events = [EventOut.model_validate(e) for e in group["events"]]
    if "weekStart" in group:
        return WeekGroup(weekStart=group["weekStart"], events=events)
    return DayGroup(date=group["date"], events=events)
