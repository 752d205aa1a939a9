"""Calendar service interfaces and implementations."""

from .base import (
    AuthenticationError,
    CalendarServiceError,
    NotFoundError,
    PermanentProviderError,
    ProviderError,
    SourceEventFetcher,
    TargetAdapter,
    TransientProviderError,
)
from .caldav_adapter import CalDAVTargetAdapter
from .google import GoogleCalendarClient, GoogleSourceFetcher, GoogleTargetAdapter

__all__ = [
    'AuthenticationError',
    'CalendarServiceError',
    'NotFoundError',
    'PermanentProviderError',
    'ProviderError',
    'SourceEventFetcher',
    'TargetAdapter',
    'TransientProviderError',
    'CalDAVTargetAdapter',
    'GoogleCalendarClient',
    'GoogleSourceFetcher',
    'GoogleTargetAdapter',
]
