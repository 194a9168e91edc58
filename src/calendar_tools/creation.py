"""Event-creation collaborators.

Two transports create the duplicated event:

* :class:`GoogleApiEventCreator` POSTs an event resource to the Calendar API
  with a bearer token from the credential chain;
* :class:`TemplateUrlEventCreator` builds a prefilled event-template URL and
  hands it to an opener.

:class:`FallbackEventCreator` tries the API first and falls back to the URL
when no credential is available or the API call fails.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field

from calendar_tools.core.logging import redact_credentials
from calendar_tools.credentials import CredentialChain
from calendar_tools.dates import format_google_calendar_dates
from calendar_tools.errors import CreationFailed, CredentialMissing
from calendar_tools.models import EventDetails

logger = logging.getLogger(__name__)

DUPLICATE_MARKER = "[Duplicated by Calendar Tools]"
PRIMARY_CALENDAR = "primary"

SYSTEM_CALENDARS: dict[str, str] = {
    "birthdays": "#contacts@group.v.calendar.google.com",
    "holidays": "#holiday@group.v.calendar.google.com",
    "tasks": "#tasks@group.calendar.google.com",
}

# Retry on 429 Too Many Requests and 503 Service Unavailable with exponential backoff.
RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0


def normalize_calendar_id(calendar_id: str | None) -> str:
    """Map a calendar id read from the page to one the API accepts.

    E-mail style ids pass through, the system calendars map to their
    well-known ids, and anything else becomes ``primary``.
    """
    if not calendar_id:
        return PRIMARY_CALENDAR
    if "@" in calendar_id:
        return calendar_id
    return SYSTEM_CALENDARS.get(calendar_id.lower(), PRIMARY_CALENDAR)


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


class EventBoundary(BaseModel):
    """Start or end of an event resource: ``date`` for all-day, else ``dateTime``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    day: str | None = Field(default=None, alias="date")
    date_time: str | None = Field(default=None, alias="dateTime")
    time_zone: str | None = Field(default=None, alias="timeZone")


class EventCreatePayload(BaseModel):
    """Calendar API event resource for a duplicated event."""

    model_config = ConfigDict(extra="forbid")

    summary: str
    start: EventBoundary
    end: EventBoundary
    location: str = ""
    description: str = ""

    def to_api_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _boundary(value: Any, is_all_day: bool, timezone_name: str) -> EventBoundary:
    if is_all_day:
        return EventBoundary(day=value.date().isoformat())
    return EventBoundary(date_time=value.isoformat(), time_zone=timezone_name)


def marked_description(description: str) -> str:
    if description:
        return f"{description}\n\n{DUPLICATE_MARKER}"
    return DUPLICATE_MARKER


def build_event_payload(details: EventDetails, timezone_name: str = "UTC") -> EventCreatePayload:
    """Build the API event resource for *details*.

    Raises
    ------
    CreationFailed
        When *details* has no start or end.
    """
    if details.start_datetime is None or details.end_datetime is None:
        raise CreationFailed("Event has no start or end time", event_id=details.id)
    return EventCreatePayload(
        summary=details.title,
        start=_boundary(details.start_datetime, details.is_all_day, timezone_name),
        end=_boundary(details.end_datetime, details.is_all_day, timezone_name),
        location=details.location,
        description=marked_description(details.description),
    )


def build_template_url(details: EventDetails, base_url: str) -> str:
    """Prefilled event-template URL for *details*."""
    params: list[tuple[str, str]] = [("action", "TEMPLATE")]
    calendar_id = normalize_calendar_id(details.calendar_id)
    if calendar_id != PRIMARY_CALENDAR:
        params.append(("src", calendar_id))
    if details.title:
        params.append(("text", details.title))
    if details.start_datetime is not None and details.end_datetime is not None:
        params.append(
            (
                "dates",
                format_google_calendar_dates(
                    details.start_datetime, details.end_datetime, details.is_all_day
                ),
            )
        )
    if details.location:
        params.append(("location", details.location))

    description = DUPLICATE_MARKER
    if details.description:
        description += f"\n\nOriginal description:\n{details.description}"
    params.append(("details", description))
    return f"{base_url}?{urlencode(params)}"


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return redact_credentials(" ".join(message.split())[:200])
        if isinstance(error_payload, str) and error_payload.strip():
            return redact_credentials(" ".join(error_payload.split())[:200])

    raw_text = response.text.strip()
    if raw_text:
        return redact_credentials(" ".join(raw_text.split())[:200])
    return "Request failed without an error payload"


# ---------------------------------------------------------------------------
# Creators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreationOutcome:
    """What a creator did: ``method`` is ``api`` or ``url``."""

    method: str
    event_id: str | None = None
    url: str | None = None


class EventCreator(abc.ABC):
    """Creates a new event from adjusted details."""

    @abc.abstractmethod
    async def create(self, details: EventDetails) -> CreationOutcome:
        """Create the event.

        Raises
        ------
        CredentialMissing
            When the transport needs a credential and none is available.
        CreationFailed
            When the transport reports failure.
        """

    async def aclose(self) -> None:
        """Release transport resources."""


class GoogleApiEventCreator(EventCreator):
    """Create events through the Calendar API ``events.insert`` endpoint."""

    def __init__(
        self,
        credentials: CredentialChain,
        *,
        base_url: str = "https://www.googleapis.com/calendar/v3",
        timezone_name: str = "UTC",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._timezone_name = timezone_name
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def _post_once(self, url: str, body: dict[str, Any], token: str) -> httpx.Response:
        try:
            return await self._http_client.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise CreationFailed(
                redact_credentials(f"Calendar API request failed: {exc}")
            ) from exc

    async def _post(self, url: str, body: dict[str, Any], token: str) -> httpx.Response:
        response = await self._post_once(url, body, token)

        # Rate-limit retry: honour Retry-After header on 429, exponential backoff on 503.
        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES
        ):
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "Calendar API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(backoff)
            response = await self._post_once(url, body, token)
            retry += 1

        return response

    async def create(self, details: EventDetails) -> CreationOutcome:
        token = await self._credentials.require()
        payload = build_event_payload(details, self._timezone_name)
        calendar_id = normalize_calendar_id(details.calendar_id)
        url = f"{self._base_url}/calendars/{quote(calendar_id, safe='')}/events"

        response = await self._post(url, payload.to_api_body(), token)
        if response.status_code < 200 or response.status_code >= 300:
            raise CreationFailed(
                f"Calendar API returned {response.status_code}: {_safe_error_message(response)}",
                event_id=details.id,
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError:
            result = {}
        if not isinstance(result, dict):
            result = {}
        logger.info("Created event via API in calendar %s", calendar_id)
        return CreationOutcome(method="api", event_id=result.get("id"), url=result.get("htmlLink"))


UrlOpener = Callable[[str], "Awaitable[Any] | Any"]


class TemplateUrlEventCreator(EventCreator):
    """Create events by opening a prefilled event-template URL.

    *opener* receives the URL; without one the URL is only returned in the
    outcome for the caller to open.
    """

    def __init__(
        self,
        *,
        template_url: str = "https://calendar.google.com/calendar/render",
        opener: UrlOpener | None = None,
    ) -> None:
        self._template_url = template_url
        self._opener = opener

    async def create(self, details: EventDetails) -> CreationOutcome:
        url = build_template_url(details, self._template_url)
        if self._opener is not None:
            try:
                result = self._opener(url)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                raise CreationFailed(
                    f"Could not open event template URL: {exc}", event_id=details.id
                ) from exc
        logger.info("Created event via template URL")
        return CreationOutcome(method="url", url=url)


class FallbackEventCreator(EventCreator):
    """Try *primary*; on a missing credential or a failure use *fallback*."""

    def __init__(self, primary: EventCreator, fallback: EventCreator) -> None:
        self._primary = primary
        self._fallback = fallback

    async def create(self, details: EventDetails) -> CreationOutcome:
        try:
            return await self._primary.create(details)
        except CredentialMissing as exc:
            logger.info("No API credential (%s); using template URL", exc)
        except CreationFailed as exc:
            logger.warning("API creation failed (%s); using template URL", exc)
        return await self._fallback.create(details)

    async def aclose(self) -> None:
        await self._primary.aclose()
        await self._fallback.aclose()
