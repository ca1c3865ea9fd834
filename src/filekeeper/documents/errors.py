"""Error types raised by the document lifecycle operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

__all__ = ["ErrorCode", "FileError", "FileIOError", "HasChangedError"]


class ErrorCode:
    """Machine-readable codes carried by :class:`FileError` subclasses."""

    IO_ERROR = "io_error"
    HAS_CHANGED = "has_changed"


@dataclass
class FileError(Exception):
    """Base class for document persistence failures.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable description.
        path: The filesystem path the failure relates to.
        suggestion: Guidance for recovering from the failure.
    """

    error_code: str
    message: str
    path: Path | None = None
    suggestion: str = ""

    def __post_init__(self) -> None:
        if self.path is not None:
            self.path = Path(self.path)
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.path is not None:
            result["path"] = str(self.path)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        if self.path is None:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message}: {self.path}"


@dataclass
class FileIOError(FileError):
    """Reading or writing a document failed. The original error is the ``__cause__``."""

    error_code: str = field(default=ErrorCode.IO_ERROR)
    message: str = field(default="Failed to access file")
    path: Path | None = field(default=None)
    suggestion: str = field(default="")


@dataclass
class HasChangedError(FileError):
    """A save was refused because the file changed on disk since it was last read or written."""

    error_code: str = field(default=ErrorCode.HAS_CHANGED)
    message: str = field(default="File was modified outside the editor")
    path: Path | None = field(default=None)
    suggestion: str = field(default="Reload the document before saving it again")
