"""
Stateless event-transform helpers: Calendar API event dict → storage record.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timezone
from typing import Any

from calvault.models import Attendee
from calvault.models import EventRecord

_logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


def parse_rfc3339(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp. Returns None when empty or malformed.

    A UTC offset (or ``Z``) is required, as in RFC 3339.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    try:
        # Storage is UTC; instants at the edge of the datetime range have no UTC form.
        parsed.astimezone(timezone.utc)
    except OverflowError:
        return None
    return parsed


def parse_date(value: str | None) -> datetime | None:
    """Parse a ``YYYY-MM-DD`` date as naive midnight. None when malformed."""
    if not value:
        return None
    try:
        day = date.fromisoformat(value.strip())
    except ValueError:
        return None
    return datetime(day.year, day.month, day.day)


def parse_event_time(when: dict[str, Any] | None) -> tuple[datetime | None, bool]:
    """Return ``(instant, is_date_only)`` for an event ``start``/``end`` object.

    ``dateTime`` wins over ``date``. A malformed value yields ``None`` but
    still reports which representation was present.
    """
    if not when:
        return None, False
    if when.get("dateTime"):
        return parse_rfc3339(when["dateTime"]), False
    if when.get("date"):
        return parse_date(when["date"]), True
    return None, False


def is_event_cancelled(item: dict[str, Any]) -> bool:
    return (item.get("status") or "").lower() == CANCELLED


def event_to_record(item: dict[str, Any]) -> EventRecord:
    """Map a Calendar API event to an EventRecord.

    Never raises on bad field values: an unparseable timestamp leaves that
    one field as None and the rest of the record intact.
    """
    record = EventRecord(
        provider_event_id=item.get("id", ""),
        summary=item.get("summary", "") or "",
        description=item.get("description", "") or "",
        location=item.get("location", "") or "",
        status=item.get("status") or "confirmed",
        visibility=item.get("visibility", "") or "",
        recurring_event_id=item.get("recurringEventId", "") or "",
    )

    start = item.get("start")
    if start:
        record.start_time, date_only = parse_event_time(start)
        if date_only and record.start_time is not None:
            record.all_day = True
        record.original_timezone = start.get("timeZone", "") or ""

    record.end_time, _ = parse_event_time(item.get("end"))

    organizer = item.get("organizer")
    if organizer:
        record.organizer_email = organizer.get("email", "") or ""
        record.organizer_name = organizer.get("displayName", "") or ""

    creator = item.get("creator")
    if creator:
        record.creator_email = creator.get("email", "") or ""

    recurrence = item.get("recurrence")
    if recurrence:
        record.recurrence_rule = "\n".join(recurrence)

    record.created_at = parse_rfc3339(item.get("created"))
    record.updated_at = parse_rfc3339(item.get("updated"))

    return record


def attendees_from_event(item: dict[str, Any]) -> list[Attendee]:
    """Return the full attendee list of an event, one entry per email."""
    by_email: dict[str, Attendee] = {}
    for a in item.get("attendees") or []:
        email = (a.get("email") or "").strip()
        if not email:
            _logger.debug("Skipping attendee without email on event %s", item.get("id"))
            continue
        by_email[email] = Attendee(
            email=email,
            display_name=a.get("displayName", "") or "",
            response_status=a.get("responseStatus", "") or "",
            is_organizer=bool(a.get("organizer", False)),
            is_self=bool(a.get("self", False)),
        )
    return list(by_email.values())
