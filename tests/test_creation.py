"""Unit tests for the event-creation collaborators.

Covers:
- normalize_calendar_id: e-mail ids, system calendars, primary fallback
- Payload building: all-day vs timed boundaries, duplicate marker
- Template URL: bit-exact ``dates`` encoding, optional ``src``
- GoogleApiEventCreator: bearer auth, error summaries, 429/503 retry
- TemplateUrlEventCreator and FallbackEventCreator
"""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlsplit
from zoneinfo import ZoneInfo

import httpx
import pytest

from calendar_tools.creation import (
    DUPLICATE_MARKER,
    RATE_LIMIT_MAX_RETRIES,
    FallbackEventCreator,
    GoogleApiEventCreator,
    TemplateUrlEventCreator,
    build_event_payload,
    build_template_url,
    normalize_calendar_id,
)
from calendar_tools.credentials import CredentialChain, StorageCredentialSource
from calendar_tools.errors import CreationFailed, CredentialMissing
from calendar_tools.models import EventDetails

pytestmark = pytest.mark.unit

UTC = ZoneInfo("UTC")
API_BASE = "https://calendar.test/v3"
TEMPLATE = "https://calendar.google.com/calendar/render"

TIMED = EventDetails(
    id="evt-1",
    title="Team Standup",
    start_datetime=datetime(2024, 1, 15, 14, 30, tzinfo=UTC),
    end_datetime=datetime(2024, 1, 15, 16, 30, tzinfo=UTC),
    location="Room 101",
    description="Daily sync",
    calendar_id="team@example.com",
)

ALL_DAY = EventDetails(
    id="evt-2",
    title="Offsite",
    start_datetime=datetime(2024, 1, 15, tzinfo=UTC),
    end_datetime=datetime(2024, 1, 16, tzinfo=UTC),
    is_all_day=True,
)


def _chain(token: str | None = "tok-123") -> CredentialChain:
    storage = {"access_token": token} if token else {}
    return CredentialChain([StorageCredentialSource(storage)])


def _api_creator(handler, token: str | None = "tok-123") -> GoogleApiEventCreator:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleApiEventCreator(_chain(token), base_url=API_BASE, http_client=client)


# ---------------------------------------------------------------------------
# Calendar ids
# ---------------------------------------------------------------------------


class TestNormalizeCalendarId:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, "primary"),
            ("", "primary"),
            ("team@example.com", "team@example.com"),
            ("Birthdays", "#contacts@group.v.calendar.google.com"),
            ("holidays", "#holiday@group.v.calendar.google.com"),
            ("tasks", "#tasks@group.calendar.google.com"),
            ("somethingelse", "primary"),
        ],
    )
    def test_mapping(self, raw, expected):
        assert normalize_calendar_id(raw) == expected


# ---------------------------------------------------------------------------
# Payload and URL
# ---------------------------------------------------------------------------


class TestPayload:
    def test_timed_boundaries_carry_zone(self):
        body = build_event_payload(TIMED, "Europe/Berlin").to_api_body()
        assert body["summary"] == "Team Standup"
        assert body["start"] == {
            "dateTime": "2024-01-15T14:30:00+00:00",
            "timeZone": "Europe/Berlin",
        }
        assert body["end"]["dateTime"] == "2024-01-15T16:30:00+00:00"
        assert body["location"] == "Room 101"
        assert body["description"] == f"Daily sync\n\n{DUPLICATE_MARKER}"

    def test_all_day_boundaries_use_date(self):
        body = build_event_payload(ALL_DAY).to_api_body()
        assert body["start"] == {"date": "2024-01-15"}
        assert body["end"] == {"date": "2024-01-16"}
        assert body["description"] == DUPLICATE_MARKER

    def test_missing_times_rejected(self):
        with pytest.raises(CreationFailed, match="no start or end"):
            build_event_payload(EventDetails(id="evt-3"))


class TestTemplateUrl:
    def _query(self, url: str) -> dict[str, list[str]]:
        return parse_qs(urlsplit(url).query)

    def test_timed_dates_in_utc(self):
        url = build_template_url(TIMED, TEMPLATE)
        query = self._query(url)
        assert url.startswith(f"{TEMPLATE}?action=TEMPLATE")
        assert query["dates"] == ["20240115T143000Z/20240115T163000Z"]
        assert query["text"] == ["Team Standup"]
        assert query["location"] == ["Room 101"]
        assert query["src"] == ["team@example.com"]
        assert query["details"] == [f"{DUPLICATE_MARKER}\n\nOriginal description:\nDaily sync"]

    def test_all_day_dates(self):
        query = self._query(build_template_url(ALL_DAY, TEMPLATE))
        assert query["dates"] == ["20240115/20240116"]
        assert "src" not in query
        assert "location" not in query
        assert query["details"] == [DUPLICATE_MARKER]

    def test_local_times_encoded_as_utc(self):
        berlin = ZoneInfo("Europe/Berlin")
        details = TIMED.replace(
            start_datetime=datetime(2024, 1, 15, 9, 0, tzinfo=berlin),
            end_datetime=datetime(2024, 1, 15, 10, 0, tzinfo=berlin),
        )
        query = self._query(build_template_url(details, TEMPLATE))
        assert query["dates"] == ["20240115T080000Z/20240115T090000Z"]


# ---------------------------------------------------------------------------
# API creator
# ---------------------------------------------------------------------------


class TestGoogleApiEventCreator:
    async def test_posts_event_with_bearer_token(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200, json={"id": "new-1", "htmlLink": "https://calendar.test/e/new-1"}
            )

        creator = _api_creator(handler)
        outcome = await creator.create(TIMED)

        assert outcome.method == "api"
        assert outcome.event_id == "new-1"
        assert outcome.url == "https://calendar.test/e/new-1"
        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v3/calendars/team@example.com/events"
        assert request.headers["Authorization"] == "Bearer tok-123"

    async def test_missing_credential(self):
        creator = _api_creator(lambda request: httpx.Response(200, json={}), token=None)
        with pytest.raises(CredentialMissing, match="storage"):
            await creator.create(TIMED)

    async def test_error_response_is_summarised_and_redacted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                json={"error": {"message": "Forbidden:   token=abc123\n  denied"}},
            )

        creator = _api_creator(handler)
        with pytest.raises(CreationFailed) as exc_info:
            await creator.create(TIMED)

        error = exc_info.value
        assert error.status_code == 403
        assert error.event_id == "evt-1"
        assert "abc123" not in str(error)
        assert "Forbidden: token=[REDACTED] denied" in str(error)

    async def test_plain_text_error_body(self):
        creator = _api_creator(lambda request: httpx.Response(500, text="upstream exploded"))
        with pytest.raises(CreationFailed, match="500: upstream exploded"):
            await creator.create(TIMED)

    async def test_transport_error_becomes_creation_failed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        creator = _api_creator(handler)
        with pytest.raises(CreationFailed, match="connection refused"):
            await creator.create(TIMED)

    async def test_rate_limit_honours_retry_after(self):
        responses = iter(
            [
                httpx.Response(429, headers={"Retry-After": "2"}),
                httpx.Response(200, json={"id": "new-2"}),
            ]
        )
        creator = _api_creator(lambda request: next(responses))

        with patch("calendar_tools.creation.asyncio.sleep", new_callable=AsyncMock) as sleep:
            outcome = await creator.create(TIMED)

        assert outcome.event_id == "new-2"
        sleep.assert_awaited_once_with(2.0)

    async def test_service_unavailable_backs_off_exponentially(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, text="busy")

        creator = _api_creator(handler)
        with patch("calendar_tools.creation.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(CreationFailed) as exc_info:
                await creator.create(TIMED)

        assert exc_info.value.status_code == 503
        assert calls == RATE_LIMIT_MAX_RETRIES + 1
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    async def test_aclose_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        creator = GoogleApiEventCreator(_chain(), http_client=client)
        await creator.aclose()
        assert not client.is_closed
        await client.aclose()


# ---------------------------------------------------------------------------
# URL creator and fallback
# ---------------------------------------------------------------------------


class TestTemplateUrlEventCreator:
    async def test_returns_url_without_opener(self):
        outcome = await TemplateUrlEventCreator(template_url=TEMPLATE).create(ALL_DAY)
        assert outcome.method == "url"
        assert outcome.url is not None and "dates=20240115%2F20240116" in outcome.url

    async def test_awaits_async_opener(self):
        opener = AsyncMock()
        outcome = await TemplateUrlEventCreator(opener=opener).create(TIMED)
        opener.assert_awaited_once_with(outcome.url)

    async def test_opener_failure_becomes_creation_failed(self):
        opener = MagicMock(side_effect=OSError("no browser"))
        with pytest.raises(CreationFailed, match="no browser"):
            await TemplateUrlEventCreator(opener=opener).create(TIMED)


class TestFallbackEventCreator:
    async def test_missing_credential_uses_url(self):
        api = _api_creator(lambda request: httpx.Response(200, json={}), token=None)
        creator = FallbackEventCreator(api, TemplateUrlEventCreator())

        outcome = await creator.create(TIMED)

        assert outcome.method == "url"

    async def test_api_failure_uses_url(self):
        api = _api_creator(lambda request: httpx.Response(400, json={"error": "bad"}))
        creator = FallbackEventCreator(api, TemplateUrlEventCreator())

        outcome = await creator.create(TIMED)

        assert outcome.method == "url"

    async def test_api_success_skips_url(self):
        fallback = AsyncMock()
        api = _api_creator(lambda request: httpx.Response(200, json={"id": "x"}))
        creator = FallbackEventCreator(api, fallback)

        outcome = await creator.create(TIMED)

        assert outcome.method == "api"
        fallback.create.assert_not_awaited()

    async def test_fallback_failure_propagates(self):
        api = _api_creator(lambda request: httpx.Response(200, json={}), token=None)
        url = TemplateUrlEventCreator(opener=MagicMock(side_effect=OSError("blocked")))
        creator = FallbackEventCreator(api, url)

        with pytest.raises(CreationFailed):
            await creator.create(TIMED)
