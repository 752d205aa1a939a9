import itertools
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pytest
import pytz
from pydantic_settings import SettingsConfigDict

from calmirror.config import Settings
from calmirror.models import SourceEvent, TargetKind
from calmirror.services.base import SourceEventFetcher, TargetAdapter
from calmirror.translation import EventTranslator


class TestSettings(Settings):
    """Test-specific settings that don't read from .env files."""
    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
        secrets_dir=None
    )


def make_settings(tmp_path, **kwargs):
    values = dict(
        source_calendar_id='work@example.com',
        data_dir=tmp_path,
        targets=[{'name': 'personal', 'kind': 'google', 'calendar_id': 'me@gmail.com'}],
    )
    values.update(kwargs)
    return TestSettings(**values)


BASE = datetime(2024, 3, 4, 9, 0, tzinfo=pytz.UTC)


def make_event(event_id, summary='Meeting', offset_hours=0, **kwargs):
    start = BASE + timedelta(hours=offset_hours)
    values = dict(id=event_id, summary=summary, start=start, end=start + timedelta(hours=1))
    values.update(kwargs)
    return SourceEvent(**values)


def make_all_day(event_id, summary='Holiday'):
    return SourceEvent(id=event_id, summary=summary, start=date(2024, 3, 4), end=date(2024, 3, 5))


def make_declined(event_id, summary='Declined meeting'):
    return make_event(
        event_id,
        summary=summary,
        attendees=[
            {'email': 'boss@example.com', 'responseStatus': 'accepted'},
            {'email': 'me@example.com', 'self': True, 'responseStatus': 'declined'},
        ],
    )


class InMemoryTarget(TargetAdapter):
    """Target adapter keeping mirrored events in a dict.

    ``failures`` maps an operation name to a list of exceptions raised by the
    next calls of that operation, in order.
    """

    kind = TargetKind.GOOGLE

    def __init__(self, name='personal', translator=None):
        super().__init__(name, f'{name}-calendar', translator or EventTranslator())
        self.events: Dict[str, object] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[str, List[Exception]] = {}
        self._ids = itertools.count(1)
        self._authenticated = True

    def fail(self, operation, *errors):
        self.failures.setdefault(operation, []).extend(errors)

    def _maybe_fail(self, operation):
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    async def create(self, event):
        self.calls.append(('create', event.id))
        self._maybe_fail('create')
        ref = f'{self.name}-ref{next(self._ids)}'
        self.events[ref] = self.translate(event)
        return ref

    async def update(self, ref, event):
        self.calls.append(('update', ref, event.id))
        self._maybe_fail('update')
        self.events[ref] = self.translate(event)

    async def delete(self, ref):
        self.calls.append(('delete', ref))
        self._maybe_fail('delete')
        self.events.pop(ref, None)

    def ops(self, operation):
        return [c for c in self.calls if c[0] == operation]


class StaticFetcher(SourceEventFetcher):
    """Source fetcher returning whatever ``events`` currently holds."""

    def __init__(self, events=None, error: Optional[Exception] = None):
        super().__init__('work@example.com')
        self.events = list(events or [])
        self.error = error
        self.windows = []
        self._authenticated = True

    async def fetch(self, time_min, time_max):
        self.windows.append((time_min, time_max))
        if self.error is not None:
            raise self.error
        return list(self.events)


async def no_sleep(seconds):
    return None


@pytest.fixture
def target():
    return InMemoryTarget()


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)
