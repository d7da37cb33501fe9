"""
Google Calendar API feed client with rate limiting.
"""

import logging
import threading
from datetime import timezone

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .models import CalendarEntry
from .models import EventsPage
from .models import FeedError
from .models import ListEventsOptions
from .models import SyncTokenExpiredError
from .ratelimit import NoopRateLimiter

logger = logging.getLogger(__name__)

CALENDAR_LIST_PAGE_SIZE = 250
EVENTS_PAGE_SIZE = 2500

_GONE = 410


def build_service(credentials):
    """Build a Calendar v3 service object for the given credentials."""
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


def _rfc3339(value) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class GoogleCalendarClient:
    """Thin wrapper around the Calendar v3 service.

    Every outbound request first takes a token from the shared rate
    limiter. HTTP 410 on an events listing is surfaced as
    ``SyncTokenExpiredError``; everything else that goes wrong on the wire
    becomes ``FeedError``.
    """

    def __init__(self, service, rate_limiter=None, cancel_event: threading.Event | None = None):
        self.service = service
        self.rate_limiter = rate_limiter or NoopRateLimiter()
        self.cancel_event = cancel_event

    @classmethod
    def from_credentials(cls, credentials, rate_limiter=None, cancel_event=None):
        return cls(build_service(credentials), rate_limiter=rate_limiter, cancel_event=cancel_event)

    def _execute(self, request, what: str) -> dict:
        self.rate_limiter.wait(self.cancel_event)
        try:
            return request.execute()
        except HttpError as e:
            status_code = e.resp.status
            if status_code == _GONE:
                raise SyncTokenExpiredError() from e
            raise FeedError(f"{what}: HTTP {status_code}: {e.reason}") from e
        except (OSError, httplib2.HttpLib2Error, GoogleAuthError) as e:
            raise FeedError(f"{what}: {e}") from e

    def list_calendars(self) -> list[CalendarEntry]:
        """Return every calendar on the authenticated user's calendar list."""
        calendars: list[CalendarEntry] = []
        page_token = None

        while True:
            params = {"maxResults": CALENDAR_LIST_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            result = self._execute(
                self.service.calendarList().list(**params), "list calendars"
            )

            for entry in result.get("items", []):
                calendars.append(
                    CalendarEntry(
                        id=entry.get("id", ""),
                        summary=entry.get("summary", ""),
                        description=entry.get("description", ""),
                        timezone=entry.get("timeZone", ""),
                        is_primary=bool(entry.get("primary", False)),
                    )
                )

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Listed %d calendars", len(calendars))
        return calendars

    def list_events(self, calendar_id: str, options: ListEventsOptions) -> EventsPage:
        """Fetch one page of events for ``calendar_id``."""
        params = {
            "calendarId": calendar_id,
            "showDeleted": options.show_deleted,
            "singleEvents": options.single_events,
            "maxResults": options.max_results or EVENTS_PAGE_SIZE,
        }
        if options.page_token:
            params["pageToken"] = options.page_token
        if options.sync_token:
            params["syncToken"] = options.sync_token
        if options.time_min is not None:
            params["timeMin"] = _rfc3339(options.time_min)
        if options.time_max is not None:
            params["timeMax"] = _rfc3339(options.time_max)

        result = self._execute(self.service.events().list(**params), "list events")
        return EventsPage(
            events=result.get("items", []),
            next_page_token=result.get("nextPageToken"),
            next_sync_token=result.get("nextSyncToken"),
        )

    def list_events_incremental(self, calendar_id: str, sync_token: str) -> EventsPage:
        """Fetch the first page of changes since ``sync_token``."""
        return self.list_events(
            calendar_id, ListEventsOptions(sync_token=sync_token, show_deleted=True)
        )
