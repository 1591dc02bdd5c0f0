from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..scheduler.models import FixedEvent, ScheduleBlock

logger = logging.getLogger(__name__)

PRODID = "-//study-planner//EN"


class CalendarIntegrationError(Exception):
    """Base error for external calendar issues."""


class CalendarSyncError(CalendarIntegrationError):
    """Raised when events cannot be exchanged with the calendar."""


@dataclass(slots=True)
class CalDavConfig:
    """Connection details of a CalDAV calendar."""

    url: str
    username: str | None = None
    password: str | None = None
    calendar_name: str | None = None


@dataclass(slots=True)
class CalendarEvent:
    """Calendar entry in a normalized structure.

    Entries exported from schedule blocks carry ``task_id`` so they are not
    imported back as fixed events.
    """

    uid: str
    summary: str
    start: datetime
    end: datetime
    description: str | None = None
    task_id: str | None = None
    locked: bool = False

    @property
    def is_study_block(self) -> bool:
        return self.task_id is not None

    @classmethod
    def from_block(cls, block: ScheduleBlock) -> "CalendarEvent":
        return cls(
            uid=block.block_id,
            summary=block.title,
            start=block.start,
            end=block.end,
            task_id=block.task_id,
            locked=block.locked,
        )

    def to_fixed_event(self, owner_id: str) -> FixedEvent:
        return FixedEvent(
            event_id=self.uid,
            owner_id=owner_id,
            title=self.summary,
            start=self.start,
            end=self.end,
            description=self.description,
        )

    def vevent_lines(self) -> list[str]:
        lines = [
            "BEGIN:VEVENT",
            f"UID:{self.uid}",
            f"SUMMARY:{_escape_text(self.summary)}",
            f"DTSTART:{_format_datetime(self.start)}",
            f"DTEND:{_format_datetime(self.end)}",
        ]
        if self.description:
            lines.append(f"DESCRIPTION:{_escape_text(self.description)}")
        if self.task_id is not None:
            lines.append(f"X-STUDY-TASK:{self.task_id}")
            lines.append(f"X-STUDY-LOCKED:{'TRUE' if self.locked else 'FALSE'}")
        lines.append("END:VEVENT")
        return lines

    def to_ics(self) -> str:
        return render_calendar([self])


def render_calendar(events: Iterable[CalendarEvent]) -> str:
    """Render ``events`` as a single VCALENDAR document."""

    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", f"PRODID:{PRODID}"]
    for event in events:
        lines.extend(event.vevent_lines())
    lines.extend(["END:VCALENDAR", ""])
    return "\r\n".join(lines)


CalDavFactory = Callable[[CalDavConfig], Any]


class CalDavCalendarClient:
    """Client responsible for talking to a CalDAV calendar."""

    def __init__(
        self,
        config: CalDavConfig,
        *,
        caldav_client_factory: CalDavFactory | None = None,
        default_timezone: tzinfo = timezone.utc,
        logger_instance: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._calendar: Any | None = None
        self._caldav_client_factory = caldav_client_factory or _default_caldav_factory
        self._default_timezone = default_timezone
        self._logger = logger_instance or logger

    def load_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        calendar = self._get_calendar()
        try:
            raw_events = calendar.date_search(start, end)
        except Exception as exc:  # pragma: no cover - caldav failure path
            self._logger.exception("Failed to load events: %s", exc)
            raise CalendarIntegrationError("Failed to load events from calendar") from exc

        events: list[CalendarEvent] = []
        for raw in raw_events:
            try:
                events.append(_extract_calendar_event(raw, self._default_timezone))
            except CalendarIntegrationError as exc:
                self._logger.warning("Unable to parse event %s: %s", getattr(raw, "data", raw), exc)
        self._logger.info("Loaded %s events from %s", len(events), self.config.url)
        return events

    def create_or_update_event(self, event: CalendarEvent) -> None:
        calendar = self._get_calendar()
        ics = event.to_ics()
        try:
            existing = None
            try:
                existing = calendar.event_by_uid(event.uid)
            except Exception:
                existing = None
            if existing is not None:
                existing.data = ics
                existing.save()
            else:
                calendar.save_event(ics)
        except Exception as exc:  # pragma: no cover - caldav failure path
            self._logger.exception("Failed to persist event %s: %s", event.uid, exc)
            raise CalendarIntegrationError("Failed to persist event") from exc

        self._logger.info(
            "Synced event %s (%s - %s)",
            event.uid,
            event.start.isoformat(),
            event.end.isoformat(),
        )

    def _get_calendar(self) -> Any:
        if self._calendar is None:
            client = self._caldav_client_factory(self.config)
            calendars = client.principal().calendars()
            if self.config.calendar_name:
                calendars = [
                    calendar
                    for calendar in calendars
                    if getattr(calendar, "name", None) == self.config.calendar_name
                ]
            if not calendars:
                raise CalendarIntegrationError("No matching calendar available for this account")
            self._calendar = calendars[0]
        return self._calendar


class CalendarSyncService:
    """Imports external commitments as walls and publishes study blocks."""

    def __init__(
        self,
        client: CalDavCalendarClient,
        *,
        logger_instance: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self._logger = logger_instance or logger

    def import_fixed_events(self, *, start: datetime, end: datetime, owner_id: str) -> list[FixedEvent]:
        try:
            external_events = self._client.load_events(start, end)
        except CalendarIntegrationError as exc:
            self._logger.error("Unable to load external events: %s", exc)
            raise CalendarSyncError("Unable to import fixed events") from exc

        fixed_events: list[FixedEvent] = []
        for event in external_events:
            if event.is_study_block:
                continue
            if event.end <= event.start:
                self._logger.warning("Skipping event %s with non-positive duration", event.uid)
                continue
            fixed_events.append(event.to_fixed_event(owner_id))
        self._logger.debug("Imported %s fixed events", len(fixed_events))
        return fixed_events

    def publish_blocks(self, blocks: Iterable[ScheduleBlock]) -> list[CalendarEvent]:
        published: list[CalendarEvent] = []
        for block in blocks:
            calendar_event = CalendarEvent.from_block(block)
            try:
                self._client.create_or_update_event(calendar_event)
            except CalendarIntegrationError as exc:
                self._logger.error("Failed to publish block %s: %s", block.block_id, exc)
                continue
            published.append(calendar_event)
        return published


def _extract_calendar_event(raw_event: Any, default_timezone: tzinfo) -> CalendarEvent:
    if isinstance(raw_event, CalendarEvent):
        return raw_event
    ics_data = getattr(raw_event, "data", None)
    if isinstance(ics_data, bytes):
        ics_data = ics_data.decode("utf-8")
    if isinstance(ics_data, str):
        return parse_ics(ics_data, default_timezone)
    raise CalendarIntegrationError("Unsupported event representation returned by CalDAV client")


def parse_ics(data: str, default_timezone: tzinfo = timezone.utc) -> CalendarEvent:
    """Parse the first VEVENT of an iCalendar document."""

    fields: dict[str, tuple[str, dict[str, str]]] = {}
    in_event = False
    for line in _unfold(data):
        if line == "BEGIN:VEVENT":
            in_event = True
            continue
        if line == "END:VEVENT":
            break
        if not in_event or ":" not in line:
            continue
        name, value = line.split(":", 1)
        key, *raw_params = name.split(";")
        params = dict(param.split("=", 1) for param in raw_params if "=" in param)
        fields.setdefault(key.upper(), (value.strip(), params))

    uid = fields.get("UID")
    dtstart = fields.get("DTSTART")
    dtend = fields.get("DTEND")
    if not uid or not dtstart or not dtend:
        raise CalendarIntegrationError("ICS data missing mandatory fields")
    summary = fields.get("SUMMARY", ("", {}))[0]
    description = fields.get("DESCRIPTION")
    task_id = fields.get("X-STUDY-TASK")
    locked = fields.get("X-STUDY-LOCKED", ("FALSE", {}))[0].upper() == "TRUE"
    return CalendarEvent(
        uid=uid[0],
        summary=_unescape_text(summary),
        start=_parse_datetime(*dtstart, default_timezone),
        end=_parse_datetime(*dtend, default_timezone),
        description=_unescape_text(description[0]) if description else None,
        task_id=task_id[0] if task_id else None,
        locked=locked,
    )


def _unfold(data: str) -> list[str]:
    lines: list[str] = []
    for line in data.splitlines():
        if line[:1] in (" ", "\t") and lines:
            lines[-1] += line[1:]
        else:
            lines.append(line)
    return lines


def _parse_datetime(value: str, params: dict[str, str], default_timezone: tzinfo) -> datetime:
    try:
        if value.endswith("Z"):
            return datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)
        if "T" in value:
            parsed = datetime.strptime(value, "%Y%m%dT%H%M%S")
        else:
            parsed = datetime.strptime(value, "%Y%m%d")
    except ValueError as exc:
        raise CalendarIntegrationError(f"Invalid ICS date-time {value!r}") from exc

    tzid = params.get("TZID")
    if tzid:
        try:
            return parsed.replace(tzinfo=ZoneInfo(tzid))
        except ZoneInfoNotFoundError as exc:
            raise CalendarIntegrationError(f"Unknown time zone {tzid!r}") from exc
    return parsed.replace(tzinfo=default_timezone)


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        return value.strftime("%Y%m%dT%H%M%S")
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _escape_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def _unescape_text(value: str) -> str:
    result: list[str] = []
    chars = iter(value)
    for char in chars:
        if char != "\\":
            result.append(char)
            continue
        escaped = next(chars, "")
        result.append("\n" if escaped in ("n", "N") else escaped)
    return "".join(result)


def _default_caldav_factory(config: CalDavConfig) -> Any:  # pragma: no cover - needs a live server
    try:
        import caldav
    except ImportError as exc:  # pragma: no cover - optional dependency path
        raise CalendarIntegrationError("caldav library is required for CalDAV integration") from exc

    return caldav.DAVClient(config.url, username=config.username, password=config.password)
