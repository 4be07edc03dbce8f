"""Factory for calendar provider instances."""

from __future__ import annotations

from workblock.errors import ValidationError
from workblock.services.calendar.providers.base import CalendarProvider
from workblock.services.calendar.providers.google import GoogleCalendarProvider
from workblock.services.calendar.providers.outlook import OutlookCalendarProvider


def get_calendar_provider(provider: str) -> CalendarProvider:
    """Create the right CalendarProvider implementation for a given provider name."""
    if provider == "google":
        return GoogleCalendarProvider()
    if provider == "outlook":
        return OutlookCalendarProvider()
    raise ValidationError(f"Unsupported calendar provider: {provider}")
