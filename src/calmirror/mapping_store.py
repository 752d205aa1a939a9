"""Durable source-event to target-event correspondence, one file per target."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Union

logger = logging.getLogger(__name__)


class MappingStoreError(Exception):
    """The persisted mapping file cannot be read or written."""
    pass


class Mapping(NamedTuple):
    source_event_id: str
    target_event_ref: str


class MappingStore:
    """Maps source event IDs to target event references.

    The persisted form is a flat JSON object. Every entry reflects a confirmed
    remote side effect, so callers only ``put`` after a successful create and
    only ``remove`` after a successful delete. Not safe for concurrent use; the
    owning reconciliation pass is the only writer.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._entries: Dict[str, str] = {}
        self.logger = logger.getChild(self.path.stem)

    def load(self) -> List[Mapping]:
        """Replace in-memory state with the persisted state.

        A missing file means nothing has been mirrored yet.

        Raises:
            MappingStoreError: If the file exists but is not a valid mapping document
        """
        if not self.path.exists():
            self._entries = {}
            self.logger.info(f"No mapping file at {self.path}, starting empty")
            return []

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise MappingStoreError(f"Cannot read mapping file {self.path}: {e}")

        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise MappingStoreError(
                f"Mapping file {self.path} must be a JSON object of string to string"
            )

        self._entries = dict(data)
        self.logger.info(f"Loaded {len(self._entries)} previously synced events from {self.path}")
        return self.entries()

    def get(self, source_event_id: str) -> Optional[str]:
        return self._entries.get(source_event_id)

    def put(self, source_event_id: str, target_event_ref: str) -> None:
        self._entries[source_event_id] = target_event_ref

    def remove(self, source_event_id: str) -> None:
        self._entries.pop(source_event_id, None)

    def entries(self) -> List[Mapping]:
        """Snapshot of all mappings, safe to iterate while mutating the store."""
        return [Mapping(k, v) for k, v in self._entries.items()]

    def as_dict(self) -> Dict[str, str]:
        return dict(self._entries)

    def save(self) -> None:
        """Atomically persist the current state.

        The document is written to a temporary file next to the target, flushed
        to disk, then renamed over the previous file. A crash at any point
        leaves either the old or the new document in place.

        Raises:
            MappingStoreError: If the document cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
        except OSError as e:
            raise MappingStoreError(f"Cannot write mapping file {self.path}: {e}")

        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self._entries, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise MappingStoreError(f"Cannot write mapping file {self.path}: {e}")

        self.logger.info(f"Saved {len(self._entries)} synced events to {self.path}")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, source_event_id: object) -> bool:
        return source_event_id in self._entries

    def __iter__(self) -> Iterator[Mapping]:
        return iter(self.entries())
