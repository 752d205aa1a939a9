"""Decides which source events are mirrored."""

from typing import NamedTuple, Optional

from .models import ResponseStatus, SourceEvent

ALL_DAY = "all_day"
DECLINED = "declined"


class Eligibility(NamedTuple):
    eligible: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.eligible


def check_eligibility(event: SourceEvent) -> Eligibility:
    """Classify a source event.

    All-day events and events the calendar owner declined are never mirrored.
    The same answer is used when creating mirrors and when looking for orphans,
    so an event that turns ineligible gets its mirror removed.
    """
    if event.is_all_day:
        return Eligibility(False, ALL_DAY)
    if event.self_response_status == ResponseStatus.DECLINED.value:
        return Eligibility(False, DECLINED)
    return Eligibility(True)


def is_eligible(event: SourceEvent) -> bool:
    return check_eligibility(event).eligible
