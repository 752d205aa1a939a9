"""Source-to-target content mapping shared by every target."""

from .models import MirroredEvent, SourceEvent, Transparency

DEFAULT_PLACEHOLDER_TITLE = "Busy"
DEFAULT_DESCRIPTION_NOTE = "Synced from work calendar"


class EventTranslator:
    """Builds the content of a mirrored event from a source event.

    Only presentation is decided here. Which target event a source event maps
    to is the business of the mapping store.
    """

    def __init__(
        self,
        prefix: str = "",
        placeholder_title: str = DEFAULT_PLACEHOLDER_TITLE,
        description_note: str = DEFAULT_DESCRIPTION_NOTE,
    ):
        self.prefix = prefix.strip()
        self.placeholder_title = placeholder_title
        self.description_note = description_note

    def title(self, event: SourceEvent) -> str:
        title = event.summary or self.placeholder_title
        if self.prefix:
            return f"{self.prefix} {title}"
        return title

    def description(self, event: SourceEvent) -> str:
        if event.description:
            return f"{event.description}\n\n({self.description_note})"
        return self.description_note

    def translate(self, event: SourceEvent) -> MirroredEvent:
        return MirroredEvent(
            source_event_id=event.id,
            summary=self.title(event),
            description=self.description(event),
            location=event.location or None,
            start=event.start,
            end=event.end,
            transparency=event.transparency or Transparency.OPAQUE,
        )
