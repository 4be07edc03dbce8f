"""Microsoft Graph (Outlook) calendar provider."""

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

_GRAPH = "https://graph.microsoft.com/v1.0"

SCOPES = ["Calendars.Read", "offline_access", "User.Read"]


def _graph_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.0000000Z")


class OutlookCalendarProvider(CalendarProvider):
    """Outlook implementation on Microsoft Graph v1.0."""

    name = "outlook"

    @property
    def _authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.settings.microsoft_tenant}/oauth2/v2.0"

    def authorization_url(self, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self.settings.microsoft_client_id,
            "redirect_uri": self.settings.microsoft_redirect_uri,
            "response_type": "code",
            "response_mode": "query",
            "scope": " ".join(SCOPES),
            "prompt": "consent",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self._authority}/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str) -> ProviderTokens:
        data = await self._request(
            "POST",
            f"{self._authority}/token",
            token_endpoint=True,
            auth_failure_message="Microsoft rejected the authorization. Please try connecting again.",
            data={
                "client_id": self.settings.microsoft_client_id,
                "client_secret": self.settings.microsoft_client_secret,
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": self.settings.microsoft_redirect_uri,
                "grant_type": "authorization_code",
                "scope": " ".join(SCOPES),
            },
        )
        return self._tokens_from_payload(data)

    async def refresh_token(self, refresh_token: str) -> ProviderTokens:
        data = await self._request(
            "POST",
            f"{self._authority}/token",
            token_endpoint=True,
            data={
                "client_id": self.settings.microsoft_client_id,
                "client_secret": self.settings.microsoft_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "scope": " ".join(SCOPES),
            },
        )
        return self._tokens_from_payload(data, fallback_refresh=refresh_token)

    async def get_profile(self, access_token: str) -> ProviderProfile:
        data = await self._request("GET", f"{_GRAPH}/me", access_token=access_token)
        return ProviderProfile(
            account_id=data.get("id", ""),
            email=data.get("mail") or data.get("userPrincipalName"),
            name=data.get("displayName"),
        )

    async def list_calendars(self, access_token: str) -> list[ProviderCalendar]:
        calendars: list[ProviderCalendar] = []
        url: str | None = f"{_GRAPH}/me/calendars"
        while url:
            data = await self._request("GET", url, access_token=access_token)
            for cal in data.get("value", []):
                calendars.append(
                    ProviderCalendar(
                        id=cal["id"],
                        name=cal.get("name") or "Unnamed Calendar",
                        is_primary=bool(cal.get("isDefaultCalendar")),
                        can_write=bool(cal.get("canEdit")),
                    )
                )
            url = data.get("@odata.nextLink")
        return calendars

    async def list_events(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        account_email: str | None = None,
    ) -> list[ProviderEvent]:
        if calendar_id == "primary":
            url: str | None = f"{_GRAPH}/me/calendarView"
        else:
            url = f"{_GRAPH}/me/calendars/{quote(calendar_id, safe='')}/calendarView"
        params: dict | None = {
            "startDateTime": _graph_datetime(time_min),
            "endDateTime": _graph_datetime(time_max),
            "$top": 250,
        }
        headers = {"Prefer": 'outlook.timezone="UTC"'}

        events: list[ProviderEvent] = []
        while url:
            data = await self._request(
                "GET", url, access_token=access_token, params=params, headers=headers
            )
            for item in data.get("value", []):
                event = self._to_event(item, account_email)
                if event is not None:
                    events.append(event)
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None

        logger.info("Outlook list_events: %d events for calendar %s", len(events), calendar_id)
        return events

    async def revoke(self, token: str) -> None:
        # Graph has no token revocation endpoint; access is withdrawn from the
        # user's Microsoft account settings.
        logger.info("Outlook tokens cannot be revoked remotely; dropping them locally")

    def _to_event(self, item: dict, account_email: str | None) -> ProviderEvent | None:
        start = parse_provider_datetime(item.get("start", {}).get("dateTime"))
        end = parse_provider_datetime(item.get("end", {}).get("dateTime"))
        if start is None or end is None:
            logger.warning("Skipping Outlook event %s without start/end", item.get("id"))
            return None

        owner = (account_email or "").lower()
        attendees = []
        for att in item.get("attendees", []):
            address = att.get("emailAddress", {}).get("address")
            attendees.append(
                ProviderAttendee(
                    email=address,
                    is_self=bool(owner) and (address or "").lower() == owner,
                    response_status=att.get("status", {}).get("response"),
                )
            )

        if item.get("isCancelled"):
            status = "cancelled"
        elif item.get("showAs") == "tentative":
            status = "tentative"
        else:
            status = "confirmed"

        has_conference = bool(item.get("isOnlineMeeting")) or bool(
            (item.get("onlineMeeting") or {}).get("joinUrl")
        )
        self_declined = (item.get("responseStatus") or {}).get("response") == "declined"

        location = (item.get("location") or {}).get("displayName") or None

        return ProviderEvent(
            external_id=item["id"],
            title=item.get("subject") or "(No title)",
            start=start,
            end=end,
            status=status,
            description=item.get("bodyPreview") or None,
            location=location,
            is_all_day=bool(item.get("isAllDay")),
            attendees=attendees,
            has_conference_link=has_conference,
            self_declined=self_declined,
        )
