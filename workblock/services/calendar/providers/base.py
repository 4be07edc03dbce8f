"""Abstract calendar provider interface and shared data structures."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

import httpx

from workblock.config import get_settings
from workblock.errors import (
    PROVIDER_UNAVAILABLE_MESSAGE,
    RECONNECT_MESSAGE,
    AuthError,
    ProviderError,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderTokens:
    """Tokens returned by a code exchange or a refresh."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime
    scope: str | None = None


@dataclass
class ProviderProfile:
    account_id: str
    email: str | None
    name: str | None = None


@dataclass
class ProviderCalendar:
    id: str
    name: str
    is_primary: bool = False
    can_write: bool = False


@dataclass
class ProviderAttendee:
    email: str | None
    is_self: bool = False
    response_status: str | None = None  # accepted | declined | tentative | needsAction


@dataclass
class ProviderEvent:
    """One external event normalized across providers.

    ``start``/``end`` are aware UTC datetimes; all-day events span whole UTC
    days.
    """

    external_id: str
    title: str
    start: datetime
    end: datetime
    status: str = "confirmed"  # confirmed | tentative | cancelled
    description: str | None = None
    location: str | None = None
    is_all_day: bool = False
    attendees: list[ProviderAttendee] = field(default_factory=list)
    has_conference_link: bool = False
    self_declined: bool = False


def classify_meeting(event: ProviderEvent) -> bool:
    """Whether an event should be treated as a meeting that reserves time.

    All-day entries and invitations the owner declined never count. Otherwise
    an event is a meeting when somebody besides the owner is invited or it
    carries an online-conference link.
    """
    if event.is_all_day or event.self_declined:
        return False
    others = [a for a in event.attendees if not a.is_self]
    return bool(others) or event.has_conference_link


def parse_provider_datetime(value: str | None) -> datetime | None:
    """Parse an ISO timestamp or date from a provider payload into aware UTC."""
    if not value:
        return None
    if "T" not in value:
        return datetime.combine(date.fromisoformat(value), time.min, tzinfo=timezone.utc)
    value = value.replace("Z", "+00:00")
    # Graph returns 7 fractional digits, which fromisoformat rejects
    if "." in value:
        head, _, tail = value.partition(".")
        digits = "".join(ch for ch in tail if ch.isdigit())
        offset = tail[len(digits):]
        value = f"{head}.{digits[:6].ljust(6, '0')}{offset}"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class CalendarProvider(ABC):
    """Abstract interface for an external calendar provider (Google, Outlook).

    Every HTTP call carries ``provider_timeout_seconds``. Upstream failures
    are translated into :class:`AuthError` / :class:`ProviderError` so callers
    never see raw ``httpx`` exceptions.
    """

    name: str = ""

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = get_settings()
        self.timeout = timeout if timeout is not None else self.settings.provider_timeout_seconds
        self._transport = transport

    # ── Contract ──

    @abstractmethod
    def authorization_url(self, state: str, code_challenge: str) -> str:
        """Build the consent URL for the authorization-code + PKCE flow."""

    @abstractmethod
    async def exchange_code(self, code: str, code_verifier: str) -> ProviderTokens:
        """Exchange an authorization code for tokens."""

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> ProviderTokens:
        """Obtain a fresh access token. Keeps the old refresh token if none is returned."""

    @abstractmethod
    async def get_profile(self, access_token: str) -> ProviderProfile:
        """Return the account identity behind a token."""

    @abstractmethod
    async def list_calendars(self, access_token: str) -> list[ProviderCalendar]:
        """List calendars visible to the account."""

    @abstractmethod
    async def list_events(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        account_email: str | None = None,
    ) -> list[ProviderEvent]:
        """List every event overlapping ``[time_min, time_max)``, following pagination."""

    @abstractmethod
    async def revoke(self, token: str) -> None:
        """Revoke a token at the provider."""

    # ── HTTP plumbing ──

    async def _request(
        self,
        method: str,
        url: str,
        *,
        access_token: str | None = None,
        auth_failure_message: str = RECONNECT_MESSAGE,
        token_endpoint: bool = False,
        headers: dict | None = None,
        **kwargs,
    ) -> dict:
        """Send one request and return the decoded JSON body.

        Args:
            token_endpoint: 400 responses from OAuth token endpoints mean the
                grant is unusable and are reported as ``AuthError``.
        """
        h = dict(headers or {})
        if access_token:
            h["Authorization"] = f"Bearer {access_token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.request(method, url, headers=h, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("%s request timed out: %s %s", self.name, method, url)
            raise ProviderError(PROVIDER_UNAVAILABLE_MESSAGE) from e
        except httpx.HTTPError as e:
            logger.warning("%s transport error on %s %s: %s", self.name, method, url, e)
            raise ProviderError(PROVIDER_UNAVAILABLE_MESSAGE) from e

        status = resp.status_code
        if status == 401 or (token_endpoint and status == 400):
            logger.warning("%s rejected credentials (%d): %s", self.name, status, resp.text[:500])
            raise AuthError(auth_failure_message)
        if status == 429:
            logger.warning("%s rate limited %s %s", self.name, method, url)
            raise ProviderError(
                "Your calendar provider is rate limiting requests. Please try again later."
            )
        if status >= 400:
            logger.error("%s error %d on %s %s: %s", self.name, status, method, url, resp.text[:500])
            raise ProviderError(PROVIDER_UNAVAILABLE_MESSAGE, details={"status": status})

        if status == 204 or not resp.content:
            return {}
        return resp.json()

    @staticmethod
    def _tokens_from_payload(data: dict, fallback_refresh: str | None = None) -> ProviderTokens:
        if not data.get("access_token"):
            raise AuthError(RECONNECT_MESSAGE)
        expires_in = int(data.get("expires_in") or 3600)
        return ProviderTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            scope=data.get("scope"),
        )
