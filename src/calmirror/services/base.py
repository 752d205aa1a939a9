"""Calendar service interfaces and the provider error taxonomy."""

from abc import ABC, abstractmethod
from datetime import datetime
import logging
from typing import List

from ..models import MirroredEvent, SourceEvent, TargetKind
from ..translation import EventTranslator

logger = logging.getLogger(__name__)


class CalendarServiceError(Exception):
    """Base exception for calendar service errors."""
    pass


class AuthenticationError(CalendarServiceError):
    """Credentials are missing, invalid or could not be refreshed."""
    pass


class ProviderError(CalendarServiceError):
    """A calendar provider call failed."""
    pass


class TransientProviderError(ProviderError):
    """Rate limiting; the same call may succeed after a short wait."""
    pass


class NotFoundError(ProviderError):
    """The referenced calendar object does not exist on the provider."""
    pass


class PermanentProviderError(ProviderError):
    """Any other provider failure; retried on the next pass only."""
    pass


class SourceEventFetcher(ABC):
    """Reads events from the source calendar."""

    def __init__(self, calendar_id: str):
        self.calendar_id = calendar_id
        self.logger = logger.getChild('source')
        self._authenticated = False

    async def authenticate(self) -> None:
        """Prepare authorized clients. Default is a no-op."""
        self._authenticated = True

    @abstractmethod
    async def fetch(self, time_min: datetime, time_max: datetime) -> List[SourceEvent]:
        """Return every event in ``[time_min, time_max]`` in source order.

        Raises:
            ProviderError: If the window cannot be read
        """
        pass

    def _ensure_authenticated(self):
        if not self._authenticated:
            raise AuthenticationError("Service not authenticated")


class TargetAdapter(ABC):
    """Create, update and delete mirrored events on one target calendar.

    References returned by :meth:`create` are opaque; the only guarantee is
    that the same reference addresses the same target event afterwards.
    """

    kind: TargetKind

    def __init__(self, name: str, calendar_id: str, translator: EventTranslator):
        """Initialize target adapter.

        Args:
            name: Target name used in logs and reports
            calendar_id: Provider-specific calendar identity
            translator: Shared source-to-target content mapping
        """
        self.name = name
        self.calendar_id = calendar_id
        self.translator = translator
        self.logger = logger.getChild(name)
        self._authenticated = False

    async def authenticate(self) -> None:
        """Prepare authorized clients. Default is a no-op."""
        self._authenticated = True

    @abstractmethod
    async def create(self, event: SourceEvent) -> str:
        """Create the mirror of ``event`` and return its reference.

        Raises:
            ProviderError: If the event cannot be created
        """
        pass

    @abstractmethod
    async def update(self, ref: str, event: SourceEvent) -> None:
        """Overwrite the mirrored event ``ref`` with the content of ``event``.

        Raises:
            NotFoundError: If ``ref`` no longer exists on the target
            ProviderError: If the event cannot be updated
        """
        pass

    @abstractmethod
    async def delete(self, ref: str) -> None:
        """Delete the mirrored event ``ref``.

        Raises:
            NotFoundError: If ``ref`` is already gone
            ProviderError: If the event cannot be deleted
        """
        pass

    def translate(self, event: SourceEvent) -> MirroredEvent:
        return self.translator.translate(event)

    def _ensure_authenticated(self):
        """Ensure the adapter is authenticated.

        Raises:
            AuthenticationError: If not authenticated
        """
        if not self._authenticated:
            raise AuthenticationError("Service not authenticated")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.calendar_id}>"
