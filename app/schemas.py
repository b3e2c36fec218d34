"""
Response shapes consumed by the browser client.

Event and user records keep the column names (snake_case); the list wrapper
uses the camelCase keys the client reads (dateRange, startDate, weekStart).
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    google_id: str
    email: str
    name: str
    created_at: datetime
    updated_at: datetime


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    google_event_id: str | None = None
    title: str
    start_time: datetime
    end_time: datetime
    created_at: datetime
    updated_at: datetime


class DayGroup(BaseModel):
    """Events starting on one calendar date."""
    date: str
    events: list[EventOut]


class WeekGroup(BaseModel):
    """Events starting in the week that begins on weekStart (a Sunday)."""
    weekStart: str
    events: list[EventOut]


class DateRange(BaseModel):
    startDate: datetime
    endDate: datetime
    days: int


class EventsResponse(BaseModel):
    events: list[DayGroup] | list[WeekGroup]
    dateRange: DateRange
