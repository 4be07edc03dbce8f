"""Google Calendar v3 provider."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from urllib.parse import quote, urlencode

from workblock.services.calendar.providers.base import (
    CalendarProvider,
    ProviderAttendee,
    ProviderCalendar,
    ProviderEvent,
    ProviderProfile,
    ProviderTokens,
    parse_provider_datetime,
)

logger = logging.getLogger(__name__)

_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_TOKEN_URL = "https://oauth2.googleapis.com/token"
_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_API = "https://www.googleapis.com/calendar/v3"

SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]


def _isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar implementation talking to the REST API directly."""

    name = "google"

    def authorization_url(self, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",  # request a refresh token
            "prompt": "consent",  # force consent so the refresh token is re-issued
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str) -> ProviderTokens:
        data = await self._request(
            "POST",
            _TOKEN_URL,
            token_endpoint=True,
            auth_failure_message="Google rejected the authorization. Please try connecting again.",
            data={
                "code": code,
                "code_verifier": code_verifier,
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "redirect_uri": self.settings.google_redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        return self._tokens_from_payload(data)

    async def refresh_token(self, refresh_token: str) -> ProviderTokens:
        data = await self._request(
            "POST",
            _TOKEN_URL,
            token_endpoint=True,
            data={
                "refresh_token": refresh_token,
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "grant_type": "refresh_token",
            },
        )
        # Google only returns a new refresh token when it rotates it
        return self._tokens_from_payload(data, fallback_refresh=refresh_token)

    async def get_profile(self, access_token: str) -> ProviderProfile:
        # The primary calendar id is the account's email address
        data = await self._request(
            "GET", f"{_API}/users/me/calendarList/primary", access_token=access_token
        )
        return ProviderProfile(
            account_id=data.get("id", ""),
            email=data.get("id"),
            name=data.get("summary"),
        )

    async def list_calendars(self, access_token: str) -> list[ProviderCalendar]:
        calendars: list[ProviderCalendar] = []
        page_token: str | None = None
        while True:
            params: dict = {"showHidden": "false", "showDeleted": "false"}
            if page_token:
                params["pageToken"] = page_token
            data = await self._request(
                "GET", f"{_API}/users/me/calendarList", access_token=access_token, params=params
            )
            for cal in data.get("items", []):
                calendars.append(
                    ProviderCalendar(
                        id=cal["id"],
                        name=cal.get("summary") or "Unnamed Calendar",
                        is_primary=bool(cal.get("primary")),
                        can_write=cal.get("accessRole") in ("owner", "writer"),
                    )
                )
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return calendars

    async def list_events(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        account_email: str | None = None,
    ) -> list[ProviderEvent]:
        events: list[ProviderEvent] = []
        page_token: str | None = None
        url = f"{_API}/calendars/{quote(calendar_id, safe='')}/events"
        while True:
            params: dict = {
                "timeMin": _isoformat(time_min),
                "timeMax": _isoformat(time_max),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": 250,
            }
            if page_token:
                params["pageToken"] = page_token
            data = await self._request("GET", url, access_token=access_token, params=params)
            for item in data.get("items", []):
                event = self._to_event(item)
                if event is not None:
                    events.append(event)
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.info("Google list_events: %d events for calendar %s", len(events), calendar_id)
        return events

    async def revoke(self, token: str) -> None:
        await self._request(
            "POST",
            _REVOKE_URL,
            params={"token": token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    def _to_event(self, item: dict) -> ProviderEvent | None:
        start_raw = item.get("start", {})
        end_raw = item.get("end", {})
        is_all_day = "dateTime" not in start_raw
        start = parse_provider_datetime(start_raw.get("dateTime") or start_raw.get("date"))
        end = parse_provider_datetime(end_raw.get("dateTime") or end_raw.get("date"))
        if start is None or end is None:
            logger.warning("Skipping Google event %s without start/end", item.get("id"))
            return None

        attendees = [
            ProviderAttendee(
                email=att.get("email"),
                is_self=bool(att.get("self")),
                response_status=att.get("responseStatus"),
            )
            for att in item.get("attendees", [])
        ]
        self_declined = any(a.is_self and a.response_status == "declined" for a in attendees)
        has_conference = bool(item.get("hangoutLink")) or any(
            ep.get("entryPointType") == "video"
            for ep in item.get("conferenceData", {}).get("entryPoints", [])
        )

        return ProviderEvent(
            external_id=item["id"],
            title=item.get("summary") or "(No title)",
            start=start,
            end=end,
            status=item.get("status") or "confirmed",
            description=item.get("description"),
            location=item.get("location"),
            is_all_day=is_all_day,
            attendees=attendees,
            has_conference_link=has_conference,
            self_declined=self_declined,
        )
