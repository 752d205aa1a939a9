"""CalDAV target adapter (Nextcloud, Radicale, iCloud and friends)."""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import uuid4

from caldav import DAVClient
from caldav.lib import error as caldav_error
import pytz
from icalendar import Calendar, Event as ICalEvent

from .base import (
    AuthenticationError,
    NotFoundError,
    PermanentProviderError,
    ProviderError,
    TargetAdapter,
    TransientProviderError,
)
from ..models import MirroredEvent, SourceEvent, TargetKind
from ..translation import EventTranslator

PRODID = "-//calmirror//calmirror//EN"
SOURCE_ID_PROPERTY = "X-CALMIRROR-SOURCE-ID"


def translate_caldav_error(e: Exception, action: str) -> ProviderError:
    """Map a caldav library error onto the provider error taxonomy."""
    message = f"Failed to {action}: {e}"
    if isinstance(e, caldav_error.NotFoundError):
        return NotFoundError(message)
    reason = str(getattr(e, 'reason', '') or e)
    if "429" in reason or "Too Many Requests" in reason:
        return TransientProviderError(message)
    return PermanentProviderError(message)


class CalDAVTargetAdapter(TargetAdapter):
    """Mirrors events into a CalDAV calendar.

    Each mirrored event gets its own UID, which doubles as the reference kept
    in the mapping store.
    """

    kind = TargetKind.CALDAV

    def __init__(
        self,
        name: str,
        calendar_id: str,
        translator: EventTranslator,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 30,
        calendar=None,
    ):
        """Initialize CalDAV target adapter.

        Args:
            name: Target name
            calendar_id: Calendar URL or display name
            translator: Shared content mapping
            url: CalDAV server URL
            username: Account name
            password: Account (app) password
            timeout: Per-request timeout in seconds
            calendar: Pre-resolved caldav calendar object
        """
        super().__init__(name, calendar_id, translator)
        self.url = url
        self.username = username
        self.password = password
        self.timeout = timeout
        self.calendar = calendar
        if calendar is not None:
            self._authenticated = True

    async def authenticate(self) -> None:
        """Connect and resolve the configured calendar."""
        if self.calendar is not None:
            self._authenticated = True
            return
        try:
            self.calendar = await asyncio.get_event_loop().run_in_executor(None, self._resolve_calendar)
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(f"CalDAV connection to {self.url} failed: {e}")
        self._authenticated = True
        self.logger.info(f"Connected to CalDAV calendar {self.calendar_id}")

    def _resolve_calendar(self):
        client = DAVClient(
            url=self.url,
            username=self.username,
            password=self.password,
            timeout=self.timeout,
        )
        calendars = client.principal().calendars()
        for cal in calendars:
            if str(cal.url) == self.calendar_id or cal.name == self.calendar_id:
                return cal
        available = [cal.name for cal in calendars]
        raise AuthenticationError(f"Calendar '{self.calendar_id}' not found. Available: {available}")

    def to_ical(self, mirrored: MirroredEvent, uid: str) -> str:
        """Render a mirrored event as an iCalendar document."""
        cal = Calendar()
        cal.add('prodid', PRODID)
        cal.add('version', '2.0')

        event = ICalEvent()
        event.add('uid', uid)
        event.add('summary', mirrored.summary)
        event.add('description', mirrored.description)
        if mirrored.location:
            event.add('location', mirrored.location)
        event.add('dtstart', mirrored.start)
        event.add('dtend', mirrored.end)
        event.add('dtstamp', datetime.now(pytz.UTC))
        event.add('transp', mirrored.transparency.value.upper())
        event.add(SOURCE_ID_PROPERTY, mirrored.source_event_id)

        cal.add_component(event)
        return cal.to_ical().decode('utf-8')

    async def _run(self, func, action: str):
        try:
            return await asyncio.get_event_loop().run_in_executor(None, func)
        except ProviderError:
            raise
        except Exception as e:
            raise translate_caldav_error(e, action)

    async def create(self, event: SourceEvent) -> str:
        self._ensure_authenticated()
        mirrored = self.translate(event)
        uid = f"{uuid4()}@calmirror"
        ical_data = self.to_ical(mirrored, uid)
        await self._run(lambda: self.calendar.save_event(ical_data), f"create event for {event.id}")
        self.logger.info(f"Created event: {mirrored.summary}")
        return uid

    async def update(self, ref: str, event: SourceEvent) -> None:
        self._ensure_authenticated()
        mirrored = self.translate(event)
        ical_data = self.to_ical(mirrored, ref)

        def _update():
            existing = self.calendar.event_by_uid(ref)
            existing.data = ical_data
            existing.save()

        await self._run(_update, f"update event {ref}")
        self.logger.info(f"Updated event: {mirrored.summary}")

    async def delete(self, ref: str) -> None:
        self._ensure_authenticated()
        await self._run(lambda: self.calendar.event_by_uid(ref).delete(), f"delete event {ref}")
        self.logger.info(f"Deleted event: {ref}")
