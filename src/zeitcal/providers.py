from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List

from .models import CalendarEvent

logger = logging.getLogger(__name__)


@dataclass
class ProviderConnection:
    provider: str                   # "google" / "outlook" / "apple"
    calendar_ids: List[str] = field(default_factory=list)
    credentials: Dict[str, str] = field(default_factory=dict)
    options: Dict[str, Any] = field(default_factory=dict)


EventFetcher = Callable[[ProviderConnection, datetime, datetime], List[CalendarEvent]]

PROVIDER_LABELS = {
    "google": "Google Calendar",
    "outlook": "Outlook",
    "apple": "iCloud",
}


@dataclass
class FetchResult:
    events: List[CalendarEvent] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)


def _fetch_google(connection: ProviderConnection, start: datetime, end: datetime) -> List[CalendarEvent]:
    from .calendar_google import fetch_google_events

    return fetch_google_events(
        connection.calendar_ids or ["primary"],
        start,
        end,
        credentials_path=connection.credentials["credentials_path"],
        token_path=connection.credentials["token_path"],
    )


def _fetch_outlook(connection: ProviderConnection, start: datetime, end: datetime) -> List[CalendarEvent]:
    from .calendar_outlook import fetch_outlook_events

    return fetch_outlook_events(
        connection.calendar_ids,
        start,
        end,
        access_token=connection.credentials["access_token"],
    )


def _fetch_apple(connection: ProviderConnection, start: datetime, end: datetime) -> List[CalendarEvent]:
    from .calendar_icloud import ICLOUD_CALDAV_URL, fetch_icloud_events

    return fetch_icloud_events(
        start,
        end,
        username=connection.credentials["username"],
        app_password=connection.credentials["app_password"],
        calendar_name_allowlist=connection.calendar_ids,
        caldav_url=connection.options.get("caldav_url", ICLOUD_CALDAV_URL),
    )


_FETCHERS: Dict[str, EventFetcher] = {
    "google": _fetch_google,
    "outlook": _fetch_outlook,
    "apple": _fetch_apple,
}


def register_fetcher(provider: str, fetcher: EventFetcher) -> None:
    _FETCHERS[provider] = fetcher


def get_fetcher(provider: str) -> EventFetcher:
    try:
        return _FETCHERS[provider]
    except KeyError:
        raise KeyError(f"No event fetcher registered for provider {provider!r}") from None


def fetch_all(connections: Iterable[ProviderConnection], start: datetime, end: datetime) -> FetchResult:
    """Fetch from every connection; a failing provider is recorded and skipped."""
    result = FetchResult()
    for connection in connections:
        try:
            events = get_fetcher(connection.provider)(connection, start, end)
        except Exception as exc:
            logger.warning("Fetching %s events failed: %s", connection.provider, exc)
            result.failures[connection.provider] = str(exc)
            continue
        logger.info("Fetched %d events from %s", len(events), connection.provider)
        result.events.extend(events)
    return result
