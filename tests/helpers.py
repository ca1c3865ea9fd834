"""Helpers shared by test modules."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from filekeeper.documents.events import Event


@dataclass
class EventRecorder:
    """Collects every event handed to it, in order."""

    events: list[Event] = field(default_factory=list)

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[Event]) -> list[Event]:
        return [event for event in self.events if isinstance(event, event_type)]


def bump_mtime(path: Path, seconds: int = 5) -> None:
    """Move ``path``'s modification time forward without touching its contents."""

    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + seconds * 1_000_000_000))
