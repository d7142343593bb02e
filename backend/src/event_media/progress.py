"""Incremental progress records for long batch operations.

Long-running operations (indexing an event, repairing thumbnails) are written
as generators of ProgressEvent records so a caller can consume per-item status
while the work is still running, e.g. as NDJSON lines over HTTP or as a
progress bar in the CLI.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, Optional

START = "start"
FILE = "file"
ATTEMPT = "attempt"
FAILED = "failed"
PROGRESS = "progress"
DONE = "done"
ERROR = "error"

EVENT_TYPES = (START, FILE, ATTEMPT, FAILED, PROGRESS, DONE, ERROR)


@dataclass
class ProgressEvent:
    """One record in a progress stream.

    Attributes:
        type: One of start, file, attempt, failed, progress, done, error
        data: Record payload
    """
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate event type."""
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown progress event type: {self.type}")

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into a single dictionary with a 'type' key."""
        return {'type': self.type, **self.data}

    def to_json(self) -> str:
        """Serialize as one NDJSON line (newline included)."""
        return json.dumps(self.to_dict(), default=str) + "\n"

    def __getitem__(self, key: str) -> Any:
        return self.data[key]


def event(kind: str, **data: Any) -> ProgressEvent:
    """Shorthand constructor: event('file', name='a.jpg')."""
    return ProgressEvent(type=kind, data=data)


def ndjson(events: Iterable[ProgressEvent]) -> Iterator[str]:
    """Render a progress stream as NDJSON lines."""
    for ev in events:
        yield ev.to_json()


def drain(events: Iterable[ProgressEvent]) -> Optional[ProgressEvent]:
    """Consume a progress stream and return its final record."""
    last = None
    for ev in events:
        last = ev
    return last
