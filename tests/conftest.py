"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from filekeeper.documents.events import EventBus
from filekeeper.documents.manager import FileManager, FileManagerConfig


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("FILEKEEPER_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def manager(tmp_path: Path, event_bus: EventBus) -> FileManager:
    return FileManager(FileManagerConfig(root=tmp_path), event_bus=event_bus)

