"""Bookkeeping for tracked documents: path and identifier maps kept in sync."""

from __future__ import annotations

from collections.abc import Hashable, Iterator
from dataclasses import dataclass
from pathlib import Path

from ..utils.file_io import CharacterEncoding

__all__ = ["FileId", "DocumentInfo", "DocumentRegistry"]

FileId = Hashable


@dataclass(slots=True)
class DocumentInfo:
    """Metadata recorded for a document at its last open or save."""

    encoding: CharacterEncoding
    path: Path
    modified_time: int | None
    has_changed: bool = False


class DocumentRegistry:
    """Two mutually consistent maps: ``path -> FileId`` and ``FileId -> DocumentInfo``.

    The maps are never handed out for direct mutation. Each mutator keeps
    every identifier's recorded path resolving back to that identifier,
    except for the stale entry a save-as leaves behind until the caller
    retires it with :meth:`remove_by_path`.
    """

    __slots__ = ("_open_files", "_file_info")

    def __init__(self) -> None:
        self._open_files: dict[Path, FileId] = {}
        self._file_info: dict[FileId, DocumentInfo] = {}

    def insert(self, path: Path | str, file_id: FileId, info: DocumentInfo) -> None:
        """Register ``path`` for ``file_id`` and replace its metadata."""

        self._open_files[Path(path)] = file_id
        self._file_info[file_id] = info

    def remove_by_id(self, file_id: FileId) -> DocumentInfo | None:
        """Forget ``file_id`` and the path recorded for it."""

        info = self._file_info.pop(file_id, None)
        if info is not None and self._open_files.get(info.path) == file_id:
            del self._open_files[info.path]
        return info

    def remove_by_path(self, path: Path | str) -> FileId | None:
        """Drop the path entry only; metadata is left alone."""

        return self._open_files.pop(Path(path), None)

    def get_info(self, file_id: FileId) -> DocumentInfo | None:
        return self._file_info.get(file_id)

    def get_file_id(self, path: Path | str) -> FileId | None:
        return self._open_files.get(Path(path))

    def paths(self) -> dict[Path, FileId]:
        return dict(self._open_files)

    def file_ids(self) -> list[FileId]:
        return list(self._file_info)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._file_info

    def __len__(self) -> int:
        return len(self._file_info)

    def __iter__(self) -> Iterator[FileId]:
        return iter(list(self._file_info))
