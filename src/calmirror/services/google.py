"""Google Calendar source fetcher and target adapter."""

import asyncio
import socket
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dateutil.parser import isoparse
import httplib2
from google.auth.exceptions import GoogleAuthError, RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .base import (
    AuthenticationError,
    NotFoundError,
    PermanentProviderError,
    ProviderError,
    SourceEventFetcher,
    TargetAdapter,
    TransientProviderError,
)
from ..models import MirroredEvent, SourceEvent, TargetKind, Transparency
from ..translation import EventTranslator

SOURCE_ID_PROPERTY = "calmirrorSourceEventId"

_RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")


def load_credentials(token_path: Path, scopes: Sequence[str]) -> Credentials:
    """Load authorized-user credentials, refreshing them if expired.

    Only tokens written by :func:`authorize_interactively` are accepted; this
    never opens a browser.

    Raises:
        AuthenticationError: If the token is missing or cannot be refreshed
    """
    token_path = Path(token_path).expanduser()
    if not token_path.exists():
        raise AuthenticationError(
            f"Google token not found at {token_path}. Run 'calmirror auth google' first."
        )

    try:
        creds = Credentials.from_authorized_user_file(str(token_path), list(scopes))
        if not creds.valid:
            if creds.expired and creds.refresh_token:
                creds.refresh(Request())
                _write_token(token_path, creds)
            else:
                raise AuthenticationError(f"Google token at {token_path} is invalid; re-authorize")
    except AuthenticationError:
        raise
    except (GoogleAuthError, ValueError) as e:
        raise AuthenticationError(f"Google authentication failed for {token_path}: {e}")
    return creds


def authorize_interactively(client_secrets_file: Path, token_path: Path, scopes: Sequence[str], port: int = 0) -> Credentials:
    """Run the OAuth consent flow in a browser and store the resulting token."""
    client_secrets_file = Path(client_secrets_file).expanduser()
    if not client_secrets_file.exists():
        raise AuthenticationError(f"OAuth client secrets file not found: {client_secrets_file}")

    flow = InstalledAppFlow.from_client_secrets_file(str(client_secrets_file), list(scopes))
    creds = flow.run_local_server(port=port, access_type="offline", prompt="consent")
    _write_token(Path(token_path).expanduser(), creds)
    return creds


def _write_token(token_path: Path, creds: Credentials) -> None:
    token_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    with open(token_path, 'w') as token:
        token.write(creds.to_json())
    # owner read/write only
    token_path.chmod(0o600)


def translate_http_error(e: HttpError, action: str) -> ProviderError:
    """Map a Google API error onto the provider error taxonomy."""
    status = getattr(e.resp, 'status', None)
    message = f"Failed to {action}: {e}"
    if status == 429:
        return TransientProviderError(message)
    if status == 403 and _is_rate_limit_reason(e):
        return TransientProviderError(message)
    if status in (404, 410):
        return NotFoundError(message)
    return PermanentProviderError(message)


def translate_transport_error(e: Exception, action: str) -> ProviderError:
    """Map a failure below the HTTP status level (network, token refresh)."""
    message = f"Failed to {action}: {e}"
    if isinstance(e, RefreshError):
        return PermanentProviderError(message)
    if isinstance(e, (socket.timeout, TimeoutError, ConnectionError, httplib2.HttpLib2Error)):
        return TransientProviderError(message)
    return PermanentProviderError(message)


def _is_rate_limit_reason(e: HttpError) -> bool:
    content = e.content or b""
    if isinstance(content, bytes):
        content = content.decode('utf-8', errors='replace')
    return any(reason in content for reason in _RATE_LIMIT_REASONS)


def parse_event_time(value: Dict[str, Any]):
    """Google start/end objects hold either ``date`` or ``dateTime``."""
    if value.get('date'):
        return date.fromisoformat(value['date'])
    return isoparse(value['dateTime'])


def format_event_time(value) -> Dict[str, str]:
    if isinstance(value, datetime):
        return {'dateTime': value.isoformat()}
    return {'date': value.isoformat()}


class GoogleCalendarClient:
    """Holds an authorized Google Calendar v3 service object."""

    def __init__(self, token_path: Path, scopes: Sequence[str], service=None):
        self.token_path = token_path
        self.scopes = list(scopes)
        self.service = service

    async def connect(self) -> None:
        if self.service is not None:
            return
        creds = await asyncio.get_event_loop().run_in_executor(
            None,
            lambda: load_credentials(self.token_path, self.scopes)
        )
        self.service = build('calendar', 'v3', credentials=creds, cache_discovery=False)

    async def execute(self, request_factory):
        """Build and execute a request in the default executor."""
        return await asyncio.get_event_loop().run_in_executor(
            None,
            lambda: request_factory().execute()
        )


class GoogleSourceFetcher(SourceEventFetcher):
    """Reads single event instances from a Google calendar."""

    def __init__(self, calendar_id: str, client: GoogleCalendarClient, page_size: int = 250):
        super().__init__(calendar_id)
        self.client = client
        self.page_size = page_size

    async def authenticate(self) -> None:
        await self.client.connect()
        self._authenticated = True
        self.logger.info(f"Authenticated source calendar {self.calendar_id}")

    async def fetch(self, time_min: datetime, time_max: datetime) -> List[SourceEvent]:
        self._ensure_authenticated()
        self.logger.info(f"Fetching source events from {time_min.isoformat()} to {time_max.isoformat()}")

        events: List[SourceEvent] = []
        page_token: Optional[str] = None
        while True:
            params = {
                'calendarId': self.calendar_id,
                'timeMin': time_min.isoformat(),
                'timeMax': time_max.isoformat(),
                'singleEvents': True,
                'orderBy': 'startTime',
                'maxResults': self.page_size,
            }
            if page_token:
                params['pageToken'] = page_token

            try:
                result = await self.client.execute(
                    lambda: self.client.service.events().list(**params)
                )
            except HttpError as e:
                raise translate_http_error(e, f"list events of {self.calendar_id}")
            except Exception as e:
                raise translate_transport_error(e, f"list events of {self.calendar_id}")

            for item in result.get('items', []):
                if item.get('status') == 'cancelled':
                    continue
                try:
                    events.append(self.parse_event(item))
                except (KeyError, ValueError) as e:
                    self.logger.warning(f"Skipping malformed source event {item.get('id')}: {e}")

            page_token = result.get('nextPageToken')
            if not page_token:
                break

        self.logger.info(f"Found {len(events)} source events")
        return events

    @staticmethod
    def parse_event(item: Dict[str, Any]) -> SourceEvent:
        """Convert a Google event resource into a :class:`SourceEvent`."""
        transparency = item.get('transparency')
        return SourceEvent(
            id=item['id'],
            summary=item.get('summary'),
            location=item.get('location'),
            description=item.get('description'),
            start=parse_event_time(item['start']),
            end=parse_event_time(item['end']),
            transparency=Transparency(transparency) if transparency else None,
            attendees=[
                {
                    'email': a.get('email', ''),
                    'self': a.get('self', False),
                    'responseStatus': a.get('responseStatus', 'needsAction'),
                }
                for a in item.get('attendees', [])
            ],
        )


class GoogleTargetAdapter(TargetAdapter):
    """Mirrors events into a Google calendar. References are Google event IDs."""

    kind = TargetKind.GOOGLE

    def __init__(self, name: str, calendar_id: str, translator: EventTranslator, client: GoogleCalendarClient):
        super().__init__(name, calendar_id, translator)
        self.client = client

    async def authenticate(self) -> None:
        await self.client.connect()
        self._authenticated = True
        self.logger.info(f"Authenticated Google target calendar {self.calendar_id}")

    def to_google_format(self, mirrored: MirroredEvent, include_metadata: bool = True) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'summary': mirrored.summary,
            'location': mirrored.location,
            'description': mirrored.description,
            'start': format_event_time(mirrored.start),
            'end': format_event_time(mirrored.end),
            'transparency': mirrored.transparency.value,
        }
        if include_metadata:
            body['reminders'] = {'useDefault': False}
            body['extendedProperties'] = {
                'private': {SOURCE_ID_PROPERTY: mirrored.source_event_id}
            }
        return body

    async def create(self, event: SourceEvent) -> str:
        self._ensure_authenticated()
        body = self.to_google_format(self.translate(event))
        try:
            created = await self.client.execute(
                lambda: self.client.service.events().insert(calendarId=self.calendar_id, body=body)
            )
        except HttpError as e:
            raise translate_http_error(e, f"create event for {event.id}")
        except Exception as e:
            raise translate_transport_error(e, f"create event for {event.id}")
        self.logger.info(f"Created event: {body['summary']}")
        return created['id']

    async def update(self, ref: str, event: SourceEvent) -> None:
        self._ensure_authenticated()
        body = self.to_google_format(self.translate(event), include_metadata=False)
        try:
            await self.client.execute(
                lambda: self.client.service.events().patch(
                    calendarId=self.calendar_id, eventId=ref, body=body
                )
            )
        except HttpError as e:
            raise translate_http_error(e, f"update event {ref}")
        except Exception as e:
            raise translate_transport_error(e, f"update event {ref}")
        self.logger.info(f"Updated event: {body['summary']}")

    async def delete(self, ref: str) -> None:
        self._ensure_authenticated()
        try:
            await self.client.execute(
                lambda: self.client.service.events().delete(calendarId=self.calendar_id, eventId=ref)
            )
        except HttpError as e:
            raise translate_http_error(e, f"delete event {ref}")
        except Exception as e:
            raise translate_transport_error(e, f"delete event {ref}")
        self.logger.info(f"Deleted event: {ref}")
