"""Data models for calendar mirroring."""

from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, validator
import pytz


class Transparency(str, Enum):
    """Busy/free flag of an event."""

    OPAQUE = "opaque"
    TRANSPARENT = "transparent"


class ResponseStatus(str, Enum):
    """Attendee response status as reported by the source calendar."""

    NEEDS_ACTION = "needsAction"
    DECLINED = "declined"
    TENTATIVE = "tentative"
    ACCEPTED = "accepted"


class TargetKind(str, Enum):
    """Supported target calendar systems."""

    GOOGLE = "google"
    CALDAV = "caldav"


class SyncOperation(str, Enum):
    """Sync operation types."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"


EventTime = Union[datetime, date]


class SourceEvent(BaseModel):
    """Snapshot of one source calendar event, immutable for a pass."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable event ID from the source calendar")
    summary: Optional[str] = Field(None, description="Event title")
    location: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    start: EventTime = Field(..., description="Date for all-day events, aware datetime otherwise")
    end: EventTime = Field(...)
    transparency: Optional[Transparency] = Field(None, description="Unset means the provider default")
    attendees: List[Dict[str, Any]] = Field(default_factory=list)

    @validator('start', 'end')
    def ensure_timezone_aware(cls, v):
        """Naive timestamps are taken as UTC."""
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=pytz.UTC)
        return v

    @property
    def is_all_day(self) -> bool:
        """All-day events carry a date-only start."""
        return not isinstance(self.start, datetime)

    @property
    def self_response_status(self) -> Optional[str]:
        """Response of the calendar owner, if they are listed as an attendee."""
        for attendee in self.attendees:
            if attendee.get('self'):
                return attendee.get('responseStatus')
        return None

    @property
    def display_name(self) -> str:
        return self.summary or "Untitled"


class MirroredEvent(BaseModel):
    """Provider-neutral content written to a target calendar."""

    source_event_id: str
    summary: str
    description: str
    location: Optional[str] = None
    start: EventTime
    end: EventTime
    transparency: Transparency = Transparency.OPAQUE

    @property
    def is_all_day(self) -> bool:
        return not isinstance(self.start, datetime)


class TargetConfig(BaseModel):
    """One configured target calendar."""

    name: str = Field(..., description="Short unique name used in logs and reports")
    kind: TargetKind = Field(TargetKind.GOOGLE)
    calendar_id: str = Field(..., description="Google calendar ID, or CalDAV calendar URL or display name")
    mapping_file: Optional[Path] = Field(None, description="Defaults to <data_dir>/mappings/<name>.json")
    enabled: bool = Field(True)

    # Google targets
    token_path: Optional[Path] = Field(None, description="Authorized-user token file for this account")

    # CalDAV targets
    caldav_url: Optional[str] = Field(None)
    caldav_username: Optional[str] = Field(None)
    caldav_password: Optional[str] = Field(None)

    @validator('name')
    def validate_name(cls, v):
        """Names end up in file names, so keep them simple."""
        v = v.strip()
        if not v or not all(c.isalnum() or c in '-_' for c in v):
            raise ValueError("Target name must be non-empty and use only letters, digits, '-' or '_'")
        return v

    def missing_fields(self) -> List[str]:
        """Connection settings this target cannot run without."""
        missing = []
        if self.kind == TargetKind.CALDAV:
            if not self.caldav_url:
                missing.append('caldav_url')
            if not self.caldav_username:
                missing.append('caldav_username')
            if not self.caldav_password:
                missing.append('caldav_password')
        return missing

    def __str__(self) -> str:
        return f"{self.name} ({self.kind.value}: {self.calendar_id})"


class SyncResult(BaseModel):
    """Result of a single target operation."""

    operation: SyncOperation
    source_event_id: str
    target: str
    success: bool
    target_event_ref: Optional[str] = None
    error_message: Optional[str] = None
    event_summary: Optional[str] = None


class TargetReport(BaseModel):
    """Outcome of one reconciliation pass against one target."""

    target: str
    created: int = Field(0)
    updated: int = Field(0)
    deleted: int = Field(0)
    skipped: int = Field(0)
    failed: int = Field(0)
    mappings: int = Field(0, description="Mappings held after the pass")
    results: List[SyncResult] = Field(default_factory=list)
    error: Optional[str] = Field(None, description="Pass-level failure for this target")

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def record(self, result: SyncResult) -> None:
        self.results.append(result)
        if not result.success:
            self.failed += 1
        elif result.operation == SyncOperation.CREATE:
            self.created += 1
        elif result.operation == SyncOperation.UPDATE:
            self.updated += 1
        elif result.operation == SyncOperation.DELETE:
            self.deleted += 1


class SyncReport(BaseModel):
    """Report for one full pass across every target."""

    sync_id: UUID = Field(default_factory=uuid4)
    started_at: datetime = Field(default_factory=lambda: datetime.now(pytz.UTC))
    completed_at: Optional[datetime] = Field(None)
    time_min: Optional[datetime] = Field(None)
    time_max: Optional[datetime] = Field(None)
    fetched: int = Field(0, description="Source events in the window")
    targets: List[TargetReport] = Field(default_factory=list)
    error: Optional[str] = Field(None, description="Set when the pass was aborted before any target ran")

    @property
    def aborted(self) -> bool:
        return self.error is not None

    @property
    def total_operations(self) -> int:
        return sum(len(t.results) for t in self.targets)

    @property
    def success_rate(self) -> float:
        results = [r for t in self.targets for r in t.results]
        if not results:
            return 1.0
        return sum(1 for r in results if r.success) / len(results)
