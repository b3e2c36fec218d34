"""
Event service: date window, day/week grouping, Google sync and event creation.

Business logic separated from the HTTP layer. Window and grouping functions
are pure and take `now` and the timezone explicitly; sync and creation talk
to Google through services.google_calendar with an access token already
checked by auth.get_valid_access_token.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo, UTC
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import GROUP_BY_DAY_MAX_DAYS, SYNC_WINDOW_DAYS, TIMEZONE
from models import Event, User
from services import google_calendar

logger = logging.getLogger(__name__)

LOCAL_TZ = ZoneInfo(TIMEZONE)

END_OF_DAY = time(23, 59, 59, 999000)


# --- Time helpers ---


def to_utc(value: datetime, tz: tzinfo = LOCAL_TZ) -> datetime:
    """Aware UTC datetime; naive values are read as wall time in tz."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(UTC)


def parse_google_time(value: dict, tz: tzinfo = LOCAL_TZ) -> datetime | None:
    """
    Resolve a Calendar v3 start/end object to an aware UTC datetime.
    dateTime wins over date; an all-day date is midnight of that date in tz.
    Returns None when neither field parses.
    """
    raw = value.get("dateTime")
    if raw:
        try:
            return to_utc(datetime.fromisoformat(raw), tz)
        except ValueError:
            return None
    raw = value.get("date")
    if raw:
        try:
            day = date.fromisoformat(raw)
        except ValueError:
            return None
        return datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)
    return None


# --- Window and grouping ---


@dataclass(frozen=True)
class DateWindow:
    start: datetime
    end: datetime
    days: int


def compute_window(
    days: int,
    start_date: datetime | None = None,
    *,
    now: datetime | None = None,
    tz: tzinfo = LOCAL_TZ,
) -> DateWindow:
    """
    [start, end] for an events listing: start is 00:00:00.000 of the start
    date's calendar day in tz, end is 23:59:59.999 of the day (days - 1)
    later, so days=1 covers exactly one day. Both bounds are inclusive.
    """
    anchor = start_date if start_date is not None else (now or datetime.now(UTC))
    if anchor.tzinfo is None:
        anchor = anchor.replace(tzinfo=tz)
    first_day = anchor.astimezone(tz).date()
    last_day = first_day + timedelta(days=days - 1)
    return DateWindow(
        start=datetime.combine(first_day, time.min, tzinfo=tz),
        end=datetime.combine(last_day, END_OF_DAY, tzinfo=tz),
        days=days,
    )


def local_date(value: datetime, tz: tzinfo = LOCAL_TZ) -> date:
    return to_utc(value, tz).astimezone(tz).date()


def week_start(day: date) -> date:
    """Sunday on or before day."""
    # date.weekday(): Monday=0 .. Sunday=6; shift so Sunday=0
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _group(events: list[Event], key_name: str, key_func) -> list[dict]:
    # dict keeps insertion order, so groups come out in first-seen order
    groups: dict[str, list[Event]] = {}
    for ev in sorted(events, key=lambda e: e.start_time):
        groups.setdefault(key_func(ev), []).append(ev)
    return [
        {key_name: key, "events": sorted(bucket, key=lambda e: e.start_time)}
        for key, bucket in groups.items()
    ]


def group_events_by_day(events: list[Event], tz: tzinfo = LOCAL_TZ) -> list[dict]:
    """[{"date": "YYYY-MM-DD", "events": [...]}, ...] in chronological order."""
    return _group(events, "date", lambda e: local_date(e.start_time, tz).isoformat())


def group_events_by_week(events: list[Event], tz: tzinfo = LOCAL_TZ) -> list[dict]:
    """[{"weekStart": "YYYY-MM-DD", "events": [...]}, ...] keyed by the Sunday starting each week."""
    return _group(
        events,
        "weekStart",
        lambda e: week_start(local_date(e.start_time, tz)).isoformat(),
    )


def group_events(events: list[Event], days: int, tz: tzinfo = LOCAL_TZ) -> list[dict]:
    if days <= GROUP_BY_DAY_MAX_DAYS:
        return group_events_by_day(events, tz)
    return group_events_by_week(events, tz)


def list_events_in_window(db: Session, user_id: int, window: DateWindow) -> list[Event]:
    """User's events whose start lies in the window (inclusive), ascending by start."""
    stmt = (
        select(Event)
        .where(
            Event.user_id == user_id,
            Event.start_time >= window.start.astimezone(UTC),
            Event.start_time <= window.end.astimezone(UTC),
        )
        .order_by(Event.start_time.asc(), Event.id.asc())
    )
    return list(db.scalars(stmt))


# --- Sync ---


@dataclass
class SyncResult:
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0


def default_sync_window(now: datetime | None = None) -> tuple[datetime, datetime]:
    """SYNC_WINDOW_DAYS back and forward from now."""
    now = now or datetime.now(UTC)
    span = timedelta(days=SYNC_WINDOW_DAYS)
    return now - span, now + span


def _upsert_event(
    db: Session,
    user_id: int,
    google_event_id: str,
    title: str,
    start_time: datetime,
    end_time: datetime,
) -> str:
    """Insert or update one row; returns "inserted", "updated" or "unchanged"."""
    existing = db.scalars(
        select(Event).where(
            Event.user_id == user_id,
            Event.google_event_id == google_event_id,
        )
    ).first()
    if existing is None:
        db.add(Event(
            user_id=user_id,
            google_event_id=google_event_id,
            title=title,
            start_time=start_time,
            end_time=end_time,
        ))
        db.commit()
        return "inserted"

    if (
        existing.title == title
        and existing.start_time == start_time
        and existing.end_time == end_time
    ):
        return "unchanged"

    existing.title = title
    existing.start_time = start_time
    existing.end_time = end_time
    db.commit()
    return "updated"


def store_google_events(
    db: Session,
    user: User,
    items: list[dict],
    tz: tzinfo = LOCAL_TZ,
) -> SyncResult:
    """
    Upsert Calendar v3 items for user. Items without id, summary, start or
    end are skipped; a failing row is rolled back and logged and the rest of
    the batch continues.
    """
    result = SyncResult(fetched=len(items))
    for item in items:
        google_event_id = item.get("id")
        title = item.get("summary")
        start_raw = item.get("start")
        end_raw = item.get("end")
        if not google_event_id or not title or not start_raw or not end_raw:
            result.skipped += 1
            continue

        start_time = parse_google_time(start_raw, tz)
        end_time = parse_google_time(end_raw, tz)
        if start_time is None or end_time is None:
            result.skipped += 1
            continue

        try:
            outcome = _upsert_event(db, user.id, google_event_id, title, start_time, end_time)
        except SQLAlchemyError:
            db.rollback()
            result.failed += 1
            logger.exception(
                "Failed to store Google event %s for user %s", google_event_id, user.id
            )
            continue
        setattr(result, outcome, getattr(result, outcome) + 1)

    logger.info(
        "Stored Google events for user %s: fetched=%d inserted=%d updated=%d "
        "unchanged=%d skipped=%d failed=%d",
        user.id,
        result.fetched,
        result.inserted,
        result.updated,
        result.unchanged,
        result.skipped,
        result.failed,
    )
    return result


def sync_events(
    db: Session,
    user: User,
    access_token: str,
    time_min: datetime | None = None,
    time_max: datetime | None = None,
    *,
    now: datetime | None = None,
) -> SyncResult:
    """Pull the user's Google events for the window (default +/- SYNC_WINDOW_DAYS) and store them."""
    default_min, default_max = default_sync_window(now)
    items = google_calendar.list_events(
        access_token,
        time_min or default_min,
        time_max or default_max,
    )
    return store_google_events(db, user, items)


# --- Creation ---


class EventValidationError(ValueError):
    """Raised when a new event's fields are rejected before any Google call."""


def create_event(
    db: Session,
    user: User,
    access_token: str,
    title: str,
    start_time: datetime,
    end_time: datetime,
) -> Event:
    """
    Create the event on Google first, then store the local copy with the
    returned Google id. If the local write fails the Google event stays
    behind without a local row; it is logged and the error propagates.
    """
    title = title.strip()
    if not title:
        raise EventValidationError("Title is required")
    start_utc = to_utc(start_time)
    end_utc = to_utc(end_time)
    if end_utc <= start_utc:
        raise EventValidationError("End time must be after start time")

    created = google_calendar.insert_event(
        access_token,
        google_calendar.build_event_body(title, start_utc, end_utc),
    )
    google_event_id = created.get("id")

    event = Event(
        user_id=user.id,
        google_event_id=google_event_id,
        title=title,
        start_time=start_utc,
        end_time=end_utc,
    )
    db.add(event)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(
            "Google event %s created for user %s but local copy was not saved",
            google_event_id,
            user.id,
        )
        raise
    db.refresh(event)
    return event
