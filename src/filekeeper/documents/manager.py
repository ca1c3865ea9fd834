"""Open/save/close/check lifecycle for on-disk text documents."""

from __future__ import annotations

import contextlib
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from ..utils.file_io import (
    CharacterEncoding,
    encoding_for_text,
    get_modified_time,
    try_load_file,
    try_save,
)
from .errors import FileIOError, HasChangedError
from .events import (
    DocumentChangedExternally,
    DocumentClosed,
    DocumentOpened,
    DocumentSaved,
    Event,
    EventBus,
    SaveConflict,
)
from .registry import DocumentInfo, DocumentRegistry, FileId

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

__all__ = ["FileManagerConfig", "FileManager", "SynchronizedFileManager"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class FileManagerConfig:
    """Where documents live and how new ones are encoded."""

    root: Path
    default_encoding: CharacterEncoding = field(default=CharacterEncoding.UTF8)

    @property
    def doc_dir(self) -> Path:
        return Path(self.root) / "doc"

    @classmethod
    def from_settings(cls, settings: Settings) -> FileManagerConfig:
        encoding = CharacterEncoding.from_codec(settings.default_encoding)
        if encoding is None:
            LOGGER.warning(
                "Unsupported default encoding %r; falling back to utf-8",
                settings.default_encoding,
            )
            encoding = CharacterEncoding.UTF8
        return cls(root=Path(settings.root_dir).expanduser(), default_encoding=encoding)


class FileManager:
    """Tracks open documents and guards saves against external modification.

    A document becomes tracked on its first successful :meth:`open` or
    :meth:`save`. :meth:`check` compares the file's modification time with
    the one recorded at that point; once they differ the document is marked
    changed and same-path saves are refused with :class:`HasChangedError`
    until the caller reopens the file or saves it elsewhere.

    Not safe for concurrent callers; wrap it in :class:`SynchronizedFileManager`.
    """

    def __init__(self, config: FileManagerConfig, *, event_bus: EventBus | None = None) -> None:
        self._config = config
        self._registry = DocumentRegistry()
        self._bus = event_bus

    @property
    def config(self) -> FileManagerConfig:
        return self._config

    @property
    def registry(self) -> DocumentRegistry:
        return self._registry

    def open(self, path: Path | str, file_id: FileId) -> str:
        """Load ``path`` for ``file_id``; a missing file is an empty, untracked document."""

        target = Path(path)
        if not target.exists():
            LOGGER.debug("open: %s does not exist yet (file_id=%r)", target, file_id)
            return ""

        try:
            text, info = try_load_file(target)
        except (OSError, UnicodeDecodeError) as exc:
            raise FileIOError(path=target, message="Failed to open file") from exc

        self._registry.remove_by_id(file_id)
        self._registry.insert(target, file_id, info)
        LOGGER.debug(
            "open: file_id=%r path=%s encoding=%s", file_id, target, info.encoding.codec
        )
        self._publish(DocumentOpened(file_id=file_id, path=target))
        return text

    def save(self, path: Path | str, text: str, file_id: FileId) -> None:
        target = Path(path)
        info = self._registry.get_info(file_id)
        if info is None:
            self._save_new(target, text, file_id, hint=None)
            self._publish(DocumentSaved(file_id=file_id, path=target))
        elif info.path != target:
            self._save_as(target, text, file_id, info)
        elif info.has_changed:
            LOGGER.warning("save refused: %s changed on disk (file_id=%r)", target, file_id)
            self._publish(SaveConflict(file_id=file_id, path=target))
            raise HasChangedError(path=target)
        else:
            encoding = encoding_for_text(info.encoding, text)
            self._write(target, text, encoding, info)
            info.encoding = encoding
            info.modified_time = self._modified_time(target)
            LOGGER.debug("save: file_id=%r path=%s", file_id, target)
            self._publish(DocumentSaved(file_id=file_id, path=target))

    def close(self, file_id: FileId) -> None:
        info = self._registry.remove_by_id(file_id)
        if info is None:
            return
        LOGGER.debug("close: file_id=%r path=%s", file_id, info.path)
        self._publish(DocumentClosed(file_id=file_id, path=info.path))

    def check(self, path: Path | str, file_id: FileId) -> bool:
        """Return whether ``file_id`` has been modified on disk behind the manager's back.

        The changed flag is sticky: it is only cleared by a later successful
        open or save-as, never by the file's timestamp reverting.
        """

        info = self._registry.get_info(file_id)
        if info is None:
            return False
        target = Path(path)
        if self._modified_time(target) != info.modified_time and not info.has_changed:
            info.has_changed = True
            LOGGER.info("check: %s was modified externally (file_id=%r)", target, file_id)
            self._publish(DocumentChangedExternally(file_id=file_id, path=target))
        return info.has_changed

    def make_file_path(self, file_id: str) -> Path:
        """Return the canonical location of ``file_id`` under the document root."""

        return self._config.doc_dir / str(file_id)

    def get_info(self, file_id: FileId) -> DocumentInfo | None:
        return self._registry.get_info(file_id)

    def get_file_id(self, path: Path | str) -> FileId | None:
        return self._registry.get_file_id(path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _save_new(
        self,
        path: Path,
        text: str,
        file_id: FileId,
        *,
        hint: DocumentInfo | None,
    ) -> None:
        encoding = encoding_for_text(self._config.default_encoding, text)
        self._write(path, text, encoding, hint)
        info = DocumentInfo(
            encoding=encoding,
            path=path,
            modified_time=self._modified_time(path),
            has_changed=False,
        )
        self._registry.insert(path, file_id, info)
        LOGGER.debug("save: new document file_id=%r path=%s", file_id, path)

    def _save_as(self, path: Path, text: str, file_id: FileId, info: DocumentInfo) -> None:
        previous_path = info.path
        self._save_new(path, text, file_id, hint=info)
        # The new path is registered; only now retire the old one.
        if self._registry.get_file_id(previous_path) == file_id:
            self._registry.remove_by_path(previous_path)
        LOGGER.debug("save: file_id=%r moved %s -> %s", file_id, previous_path, path)
        self._publish(DocumentSaved(file_id=file_id, path=path, previous_path=previous_path))

    def _write(
        self,
        path: Path,
        text: str,
        encoding: CharacterEncoding,
        hint: DocumentInfo | None,
    ) -> None:
        try:
            try_save(path, text, encoding, hint)
        except (OSError, UnicodeEncodeError) as exc:
            raise FileIOError(path=path, message="Failed to save file") from exc

    def _modified_time(self, path: Path) -> int | None:
        try:
            return get_modified_time(path)
        except OSError as exc:
            raise FileIOError(path=path, message="Failed to read modification time") from exc

    def _publish(self, event: Event) -> None:
        if self._bus is not None:
            self._bus.publish(event)


class SynchronizedFileManager:
    """Serialises every call to a :class:`FileManager` on one re-entrant lock.

    Use :meth:`locked` when a sequence such as check-then-save must not be
    interleaved with another caller.
    """

    def __init__(self, manager: FileManager) -> None:
        self._manager = manager
        self._lock = threading.RLock()

    @contextlib.contextmanager
    def locked(self) -> Iterator[FileManager]:
        with self._lock:
            yield self._manager

    def open(self, path: Path | str, file_id: FileId) -> str:
        with self._lock:
            return self._manager.open(path, file_id)

    def save(self, path: Path | str, text: str, file_id: FileId) -> None:
        with self._lock:
            self._manager.save(path, text, file_id)

    def close(self, file_id: FileId) -> None:
        with self._lock:
            self._manager.close(file_id)

    def check(self, path: Path | str, file_id: FileId) -> bool:
        with self._lock:
            return self._manager.check(path, file_id)

    def make_file_path(self, file_id: str) -> Path:
        return self._manager.make_file_path(file_id)

    def get_info(self, file_id: FileId) -> DocumentInfo | None:
        with self._lock:
            return self._manager.get_info(file_id)

    def get_file_id(self, path: Path | str) -> FileId | None:
        with self._lock:
            return self._manager.get_file_id(path)
