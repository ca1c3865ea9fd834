"""Document lifecycle: registry, manager, errors and events."""

from .errors import ErrorCode, FileError, FileIOError, HasChangedError
from .events import (
    DocumentChangedExternally,
    DocumentClosed,
    DocumentOpened,
    DocumentSaved,
    Event,
    EventBus,
    SaveConflict,
)
from .manager import FileManager, FileManagerConfig, SynchronizedFileManager
from .models import CreateDocRequest, Doc, DocDescription
from .registry import DocumentInfo, DocumentRegistry, FileId

__all__ = [
    "CreateDocRequest",
    "Doc",
    "DocDescription",
    "DocumentChangedExternally",
    "DocumentClosed",
    "DocumentInfo",
    "DocumentOpened",
    "DocumentRegistry",
    "DocumentSaved",
    "ErrorCode",
    "Event",
    "EventBus",
    "FileError",
    "FileId",
    "FileIOError",
    "FileManager",
    "FileManagerConfig",
    "HasChangedError",
    "SaveConflict",
    "SynchronizedFileManager",
]
