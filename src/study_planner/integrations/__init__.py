"""Integration layer for external calendar providers."""

from .caldav_calendar import (
    CalDavCalendarClient,
    CalDavConfig,
    CalendarEvent,
    CalendarIntegrationError,
    CalendarSyncError,
    CalendarSyncService,
    parse_ics,
    render_calendar,
)

__all__ = [
    "CalDavCalendarClient",
    "CalDavConfig",
    "CalendarEvent",
    "CalendarIntegrationError",
    "CalendarSyncError",
    "CalendarSyncService",
    "parse_ics",
    "render_calendar",
]
