"""
Pure data models and exceptions. No Google API or sqlite imports.
"""

import enum
import os
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from pathlib import Path
from typing import Any


def default_home() -> Path:
    """Return the calvault home directory, honouring $CALVAULT_HOME."""
    env_home = os.environ.get("CALVAULT_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".calvault"


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class ConfigError(CalendarSyncError):
    """Missing or invalid configuration; fatal before any sync starts."""


class FeedError(CalendarSyncError):
    """A remote feed call failed."""


class SyncTokenExpiredError(FeedError):
    """The provider no longer honours the stored sync token (HTTP 410 Gone)."""

    def __init__(self, message: str = "sync token expired (410 Gone)"):
        super().__init__(message)


class SyncCancelledError(CalendarSyncError):
    """The sync was cancelled by the caller. Not a failure."""

    def __init__(self, message: str = "sync cancelled"):
        super().__init__(message)


class QueryError(CalendarSyncError):
    """A read-only query was rejected or failed."""


class SyncMode(str, enum.Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class TokenState(enum.Enum):
    """Per-calendar continuation token state used for strategy selection."""

    NO_TOKEN = "no-token"
    HAS_TOKEN = "has-token"
    TOKEN_EXPIRED = "token-expired"


@dataclass
class Account:
    id: int
    identifier: str
    source_type: str = "google"
    created_at: str | None = None


@dataclass
class Calendar:
    """A calendar row as stored locally, including its sync token."""

    id: int
    account_id: int
    provider_calendar_id: str
    summary: str = ""
    description: str = ""
    timezone: str = ""
    is_primary: bool = False
    sync_token: str | None = None
    last_synced_at: str | None = None

    @property
    def token_state(self) -> TokenState:
        return TokenState.HAS_TOKEN if self.sync_token else TokenState.NO_TOKEN


@dataclass
class CalendarEntry:
    """A calendar as listed by the remote feed."""

    id: str
    summary: str = ""
    description: str = ""
    timezone: str = ""
    is_primary: bool = False


@dataclass
class ListEventsOptions:
    page_token: str | None = None
    sync_token: str | None = None
    show_deleted: bool = False
    single_events: bool = False
    max_results: int = 0
    time_min: datetime | None = None
    time_max: datetime | None = None


@dataclass
class EventsPage:
    """One page of the remote event listing. Events are raw API dicts."""

    events: list[dict[str, Any]] = field(default_factory=list)
    next_page_token: str | None = None
    next_sync_token: str | None = None


@dataclass
class EventRecord:
    """Storage form of a remote event, produced by the record transform."""

    provider_event_id: str
    summary: str = ""
    description: str = ""
    location: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    all_day: bool = False
    original_timezone: str = ""
    recurring_event_id: str = ""
    recurrence_rule: str = ""
    status: str = "confirmed"
    visibility: str = ""
    organizer_email: str = ""
    organizer_name: str = ""
    creator_email: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Attendee:
    email: str
    display_name: str = ""
    response_status: str = ""
    is_organizer: bool = False
    is_self: bool = False


@dataclass
class SyncStats:
    """Statistics for one calendar sync."""

    added: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0

    def reset(self):
        self.added = self.updated = self.deleted = self.errors = 0


@dataclass
class CalendarFailure:
    calendar_id: str
    calendar_name: str
    error: str

    def __str__(self) -> str:
        return f"{self.calendar_name} ({self.calendar_id}): {self.error}"


@dataclass
class Summary:
    """Aggregate result of one account sync."""

    account: str = ""
    calendars_synced: int = 0
    events_added: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    errors: int = 0
    duration: float = 0.0
    cancelled: bool = False
    failures: list[CalendarFailure] = field(default_factory=list)

    def add(self, stats: SyncStats) -> None:
        self.events_added += stats.added
        self.events_updated += stats.updated
        self.events_deleted += stats.deleted
        self.errors += stats.errors

    @property
    def error(self) -> "PartialSyncError | None":
        """Aggregate error naming every failed calendar, or None."""
        if not self.failures:
            return None
        return PartialSyncError(self)


class PartialSyncError(CalendarSyncError):
    """One or more calendars failed; partial results are on ``summary``."""

    def __init__(self, summary: Summary):
        self.summary = summary
        failed = "; ".join(str(f) for f in summary.failures)
        super().__init__(
            f"{len(summary.failures)} calendar(s) failed for {summary.account}: {failed}"
        )


@dataclass
class SyncRun:
    id: int
    account_id: int
    calendar_id: int | None
    started_at: str
    completed_at: str | None
    status: str
    events_added: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    error_message: str | None = None


@dataclass
class ArchiveStats:
    account_count: int = 0
    calendar_count: int = 0
    event_count: int = 0
    earliest_event: str | None = None
    latest_event: str | None = None
    unique_locations: int = 0
    recurring_count: int = 0
