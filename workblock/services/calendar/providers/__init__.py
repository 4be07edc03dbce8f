"""Calendar provider adapters (Google Calendar, Microsoft Graph)."""

from workblock.services.calendar.providers.base import (
    CalendarProvider,
    ProviderAttendee,
    ProviderCalendar,
    ProviderEvent,
    ProviderProfile,
    ProviderTokens,
    classify_meeting,
)
from workblock.services.calendar.providers.factory import get_calendar_provider
from workblock.services.calendar.providers.google import GoogleCalendarProvider
from workblock.services.calendar.providers.outlook import OutlookCalendarProvider

__all__ = [
    "CalendarProvider",
    "GoogleCalendarProvider",
    "OutlookCalendarProvider",
    "ProviderAttendee",
    "ProviderCalendar",
    "ProviderEvent",
    "ProviderProfile",
    "ProviderTokens",
    "classify_meeting",
    "get_calendar_provider",
]
