"""
Unit tests for GoogleCalendarClient against a stub Calendar v3 service.

The stub mimics the ``service.events().list(**params).execute()`` call chain
so request parameters and error mapping can be checked without HTTP.
"""

import threading
from datetime import datetime
from datetime import timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from calvault.google_client import GoogleCalendarClient
from calvault.models import FeedError
from calvault.models import ListEventsOptions
from calvault.models import SyncCancelledError
from calvault.models import SyncTokenExpiredError


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"")


class _Request:
    def __init__(self, collection):
        self.collection = collection

    def execute(self):
        response = self.collection.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class _Collection:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def list(self, **params):
        self.calls.append(params)
        return _Request(self)


class StubService:
    def __init__(self, calendar_pages=(), event_pages=()):
        self.calendar_list = _Collection(calendar_pages)
        self.event_list = _Collection(event_pages)

    def calendarList(self):
        return self.calendar_list

    def events(self):
        return self.event_list


class CountingLimiter:
    def __init__(self):
        self.calls = 0

    def wait(self, cancel_event=None):
        self.calls += 1


class TestErrorMapping:
    def test_gone_is_token_expired(self):
        client = GoogleCalendarClient(StubService(event_pages=[_http_error(410)]))
        with pytest.raises(SyncTokenExpiredError):
            client.list_events("primary", ListEventsOptions(sync_token="T1"))

    def test_other_http_errors_are_feed_errors(self):
        client = GoogleCalendarClient(StubService(event_pages=[_http_error(500)]))
        with pytest.raises(FeedError) as excinfo:
            client.list_events("primary", ListEventsOptions())
        assert not isinstance(excinfo.value, SyncTokenExpiredError)
        assert "500" in str(excinfo.value)

    def test_transport_errors_are_feed_errors(self):
        client = GoogleCalendarClient(StubService(calendar_pages=[ConnectionResetError("reset")]))
        with pytest.raises(FeedError, match="list calendars"):
            client.list_calendars()

    def test_unreachable_server_is_feed_error(self):
        client = GoogleCalendarClient(
            StubService(event_pages=[httplib2.ServerNotFoundError("Unable to find the server")])
        )
        with pytest.raises(FeedError, match="list events"):
            client.list_events("primary", ListEventsOptions())

    def test_cancelled_before_request(self):
        cancel = threading.Event()
        cancel.set()
        service = StubService(event_pages=[{"items": []}])
        client = GoogleCalendarClient(service, cancel_event=cancel)

        with pytest.raises(SyncCancelledError):
            client.list_events("primary", ListEventsOptions())
        # The request was built but never executed.
        assert service.event_list.responses == [{"items": []}]


class TestListCalendars:
    def test_pages_and_maps_entries(self):
        service = StubService(
            calendar_pages=[
                {
                    "items": [
                        {"id": "primary", "summary": "Me", "timeZone": "Europe/Amsterdam",
                         "primary": True},
                    ],
                    "nextPageToken": "p2",
                },
                {"items": [{"id": "holidays", "summary": "Holidays", "description": "Public"}]},
            ]
        )
        limiter = CountingLimiter()
        client = GoogleCalendarClient(service, rate_limiter=limiter)

        calendars = client.list_calendars()

        assert [c.id for c in calendars] == ["primary", "holidays"]
        assert calendars[0].is_primary and calendars[0].timezone == "Europe/Amsterdam"
        assert calendars[1].description == "Public" and not calendars[1].is_primary
        assert service.calendar_list.calls == [
            {"maxResults": 250},
            {"maxResults": 250, "pageToken": "p2"},
        ]
        assert limiter.calls == 2


class TestListEvents:
    def test_first_incremental_page(self):
        service = StubService(
            event_pages=[{"items": [{"id": "e1"}], "nextPageToken": "p2"}]
        )
        client = GoogleCalendarClient(service)

        page = client.list_events_incremental("primary", "T1")

        assert page.events == [{"id": "e1"}]
        assert page.next_page_token == "p2"
        assert page.next_sync_token is None
        assert service.event_list.calls == [
            {
                "calendarId": "primary",
                "showDeleted": True,
                "singleEvents": False,
                "maxResults": 2500,
                "syncToken": "T1",
            }
        ]

    def test_optional_parameters(self):
        service = StubService(event_pages=[{"nextSyncToken": "T2"}])
        client = GoogleCalendarClient(service)

        page = client.list_events(
            "work@x.com",
            ListEventsOptions(
                page_token="p3",
                max_results=50,
                time_min=datetime(2024, 1, 1),
                time_max=datetime(2024, 2, 1, tzinfo=timezone.utc),
            ),
        )

        assert page.events == []
        assert page.next_sync_token == "T2"
        params = service.event_list.calls[0]
        assert params["pageToken"] == "p3"
        assert params["maxResults"] == 50
        assert params["timeMin"] == "2024-01-01T00:00:00+00:00"
        assert params["timeMax"] == "2024-02-01T00:00:00+00:00"
        assert "syncToken" not in params

    def test_every_page_waits_on_limiter(self):
        service = StubService(event_pages=[{"nextPageToken": "p2"}, {"nextSyncToken": "T"}])
        limiter = CountingLimiter()
        client = GoogleCalendarClient(service, rate_limiter=limiter)

        client.list_events("primary", ListEventsOptions())
        client.list_events("primary", ListEventsOptions(page_token="p2"))

        assert limiter.calls == 2
