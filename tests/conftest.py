"""
Shared pytest fixtures and Calendar API event helpers.
"""

import pytest

from calvault.db import Store

ACCOUNT_EMAIL = "a@x.com"
PRIMARY_CAL_ID = "primary"


def make_event(
    event_id: str,
    summary: str = "Test Event",
    start: str = "2024-03-01T10:00:00Z",
    end: str = "2024-03-01T11:00:00Z",
    attendees: list[str] | None = None,
    **extra,
) -> dict:
    """Return a minimal Calendar API event resource with timed start/end."""
    item = {
        "id": event_id,
        "status": "confirmed",
        "summary": summary,
        "start": {"dateTime": start, "timeZone": "UTC"},
        "end": {"dateTime": end, "timeZone": "UTC"},
        "updated": "2024-02-24T00:00:00Z",
    }
    if attendees is not None:
        item["attendees"] = [{"email": email} for email in attendees]
    item.update(extra)
    return item


def make_all_day_event(event_id: str, day: str = "2024-03-01", summary: str = "All Day") -> dict:
    """Return an event resource with date-only start/end."""
    return {
        "id": event_id,
        "status": "confirmed",
        "summary": summary,
        "start": {"date": day},
        "end": {"date": day},
    }


def make_cancelled_event(event_id: str) -> dict:
    """Return the tombstone the API sends for a deleted event during incremental sync."""
    return {"id": event_id, "status": "cancelled"}


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "calvault.db"


@pytest.fixture
def store(db_path):
    with Store(db_path) as s:
        yield s


@pytest.fixture
def account(store):
    return store.get_or_create_account(ACCOUNT_EMAIL)

