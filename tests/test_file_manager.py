"""Tests for the open/save/close/check lifecycle in :mod:`filekeeper.documents.manager`."""

from __future__ import annotations

import codecs
import os
import threading
from pathlib import Path

import pytest

from filekeeper.documents.errors import ErrorCode, FileIOError, HasChangedError
from filekeeper.documents.events import (
    DocumentChangedExternally,
    DocumentClosed,
    DocumentOpened,
    DocumentSaved,
    EventBus,
    SaveConflict,
)
from filekeeper.documents.manager import FileManager, FileManagerConfig, SynchronizedFileManager
from filekeeper.utils.file_io import CharacterEncoding
from tests.helpers import EventRecorder, bump_mtime


# ---------------------------------------------------------------------------
# open
# ---------------------------------------------------------------------------


def test_open_missing_file_returns_empty_text_without_tracking(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "missing.md"

    text = manager.open(target, "doc-1")

    assert text == ""
    assert manager.get_info("doc-1") is None
    assert manager.get_file_id(target) is None
    assert len(manager.registry) == 0
    assert not target.exists()


def test_open_existing_file_registers_both_maps(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "notes.md"
    target.write_text("# Notes\n", encoding="utf-8")

    text = manager.open(target, "doc-1")

    assert text == "# Notes\n"
    info = manager.get_info("doc-1")
    assert info is not None
    assert info.path == target
    assert info.encoding is CharacterEncoding.UTF8
    assert info.modified_time == target.stat().st_mtime_ns
    assert info.has_changed is False
    assert manager.get_file_id(target) == "doc-1"


def test_open_accepts_string_paths(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "notes.md"
    target.write_text("body", encoding="utf-8")

    assert manager.open(str(target), "doc-1") == "body"
    assert manager.get_file_id(target) == "doc-1"


def test_open_replaces_prior_metadata_and_drops_stale_path(manager: FileManager, tmp_path: Path) -> None:
    first = tmp_path / "first.md"
    second = tmp_path / "second.md"
    first.write_text("one", encoding="utf-8")
    second.write_text("two", encoding="utf-8")

    manager.open(first, "doc-1")
    text = manager.open(second, "doc-1")

    assert text == "two"
    assert manager.get_info("doc-1").path == second
    assert manager.get_file_id(second) == "doc-1"
    assert manager.get_file_id(first) is None


def test_open_clears_changed_flag(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "notes.md"
    manager.save(target, "mine", "doc-1")
    target.write_text("theirs", encoding="utf-8")
    bump_mtime(target)
    assert manager.check(target, "doc-1") is True

    assert manager.open(target, "doc-1") == "theirs"

    assert manager.get_info("doc-1").has_changed is False
    assert manager.check(target, "doc-1") is False
    manager.save(target, "merged", "doc-1")
    assert target.read_text(encoding="utf-8") == "merged"


def test_open_unreadable_path_raises_io_error(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "folder.md"
    target.mkdir()

    with pytest.raises(FileIOError) as excinfo:
        manager.open(target, "doc-1")

    assert excinfo.value.path == target
    assert excinfo.value.error_code == ErrorCode.IO_ERROR
    assert isinstance(excinfo.value.__cause__, OSError)
    assert len(manager.registry) == 0


# ---------------------------------------------------------------------------
# save
# ---------------------------------------------------------------------------


def test_save_new_document_writes_and_registers(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "nested" / "draft.md"

    manager.save(target, "hello", "doc-1")

    assert target.read_text(encoding="utf-8") == "hello"
    info = manager.get_info("doc-1")
    assert info is not None
    assert info.encoding is CharacterEncoding.UTF8
    assert info.path == target
    assert info.modified_time == target.stat().st_mtime_ns
    assert info.has_changed is False
    assert manager.get_file_id(target) == "doc-1"


def test_check_after_save_reports_clean(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"

    manager.save(target, "first", "doc-1")
    assert manager.check(target, "doc-1") is False

    manager.save(target, "second", "doc-1")
    assert manager.check(target, "doc-1") is False


def test_save_then_open_round_trips_exact_text(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    body = "Line one\r\nLine two\rLine three\néè ☃ \U0001f600\n"

    manager.save(target, body, "doc-1")

    assert manager.open(target, "doc-1") == body


def test_same_path_save_keeps_recorded_encoding(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "wide.txt"
    target.write_bytes(codecs.BOM_UTF16_LE + "original".encode("utf-16-le"))
    manager.open(target, "doc-1")

    manager.save(target, "updated", "doc-1")

    raw = target.read_bytes()
    assert raw == codecs.BOM_UTF16_LE + "updated".encode("utf-16-le")
    info = manager.get_info("doc-1")
    assert info.encoding is CharacterEncoding.UTF16_LE
    assert info.path == target
    assert info.modified_time == target.stat().st_mtime_ns
    assert manager.open(target, "doc-1") == "updated"


def test_text_starting_with_bom_character_survives_reopen(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "marked.txt"
    body = "\ufeffhello"

    manager.save(target, body, "doc-1")

    assert target.read_bytes() == codecs.BOM_UTF8 + body.encode("utf-8")
    assert manager.get_info("doc-1").encoding is CharacterEncoding.UTF8_BOM
    assert manager.open(target, "doc-1") == body
    fresh = FileManager(manager.config)
    assert fresh.open(target, "doc-1") == body
    assert fresh.get_info("doc-1").encoding is CharacterEncoding.UTF8_BOM


def test_same_path_save_of_text_starting_with_bom_character(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "plain.txt"
    target.write_bytes(b"x")
    manager.open(target, "doc-1")
    assert manager.get_info("doc-1").encoding is CharacterEncoding.UTF8

    manager.save(target, "\ufeffx", "doc-1")

    assert manager.get_info("doc-1").encoding is CharacterEncoding.UTF8_BOM
    assert manager.check(target, "doc-1") is False
    assert manager.open(target, "doc-1") == "\ufeffx"


def test_dirty_same_path_save_is_refused_without_writing(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "mine", "doc-1")
    target.write_text("theirs", encoding="utf-8")
    bump_mtime(target)
    assert manager.check(target, "doc-1") is True
    mtime_before = target.stat().st_mtime_ns

    with pytest.raises(HasChangedError) as excinfo:
        manager.save(target, "clobber", "doc-1")

    assert excinfo.value.path == target
    assert excinfo.value.to_dict()["error"] == ErrorCode.HAS_CHANGED
    assert target.read_text(encoding="utf-8") == "theirs"
    assert target.stat().st_mtime_ns == mtime_before
    assert manager.get_info("doc-1").has_changed is True


def test_dirty_flag_is_not_cleared_by_repeated_saves(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "mine", "doc-1")
    bump_mtime(target)
    manager.check(target, "doc-1")

    for _ in range(2):
        with pytest.raises(HasChangedError):
            manager.save(target, "again", "doc-1")


def test_save_without_check_does_not_detect_changes(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "mine", "doc-1")
    bump_mtime(target)

    manager.save(target, "overwrite", "doc-1")

    assert target.read_text(encoding="utf-8") == "overwrite"


def test_save_as_moves_path_mapping(manager: FileManager, tmp_path: Path) -> None:
    old_path = tmp_path / "old.md"
    new_path = tmp_path / "new.md"
    manager.save(old_path, "content", "doc-1")

    manager.save(new_path, "content v2", "doc-1")

    assert manager.get_file_id(old_path) is None
    assert manager.get_file_id(new_path) == "doc-1"
    info = manager.get_info("doc-1")
    assert info.path == new_path
    assert info.has_changed is False
    assert info.modified_time == new_path.stat().st_mtime_ns
    assert new_path.read_text(encoding="utf-8") == "content v2"
    assert old_path.read_text(encoding="utf-8") == "content"


def test_save_as_resets_dirty_document(manager: FileManager, tmp_path: Path) -> None:
    old_path = tmp_path / "old.md"
    new_path = tmp_path / "copy.md"
    manager.save(old_path, "content", "doc-1")
    bump_mtime(old_path)
    assert manager.check(old_path, "doc-1") is True

    manager.save(new_path, "rescued", "doc-1")

    assert manager.get_info("doc-1").has_changed is False
    assert manager.check(new_path, "doc-1") is False


def test_save_as_uses_default_encoding(manager: FileManager, tmp_path: Path) -> None:
    source = tmp_path / "wide.txt"
    source.write_bytes(codecs.BOM_UTF16_LE + "text".encode("utf-16-le"))
    manager.open(source, "doc-1")
    target = tmp_path / "narrow.txt"

    manager.save(target, "text", "doc-1")

    assert target.read_bytes() == b"text"
    assert manager.get_info("doc-1").encoding is CharacterEncoding.UTF8


def test_failed_save_new_leaves_registry_untouched(manager: FileManager, tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    target = blocker / "draft.md"

    with pytest.raises(FileIOError) as excinfo:
        manager.save(target, "text", "doc-1")

    assert excinfo.value.path == target
    assert isinstance(excinfo.value.__cause__, OSError)
    assert manager.get_info("doc-1") is None
    assert manager.get_file_id(target) is None
    assert len(manager.registry) == 0


def test_failed_save_as_leaves_registry_untouched(manager: FileManager, tmp_path: Path) -> None:
    old_path = tmp_path / "old.md"
    manager.save(old_path, "content", "doc-1")
    recorded = manager.get_info("doc-1")
    snapshot = (recorded.path, recorded.modified_time, recorded.encoding, recorded.has_changed)
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    new_path = blocker / "new.md"

    with pytest.raises(FileIOError):
        manager.save(new_path, "content v2", "doc-1")

    info = manager.get_info("doc-1")
    assert (info.path, info.modified_time, info.encoding, info.has_changed) == snapshot
    assert manager.get_file_id(old_path) == "doc-1"
    assert manager.get_file_id(new_path) is None
    assert manager.registry.paths() == {old_path: "doc-1"}


def test_failed_same_path_save_keeps_metadata(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "latin.txt"
    target.write_bytes(("café au lait, crème brûlée. " * 20).encode("latin-1"))
    manager.open(target, "doc-1")
    info = manager.get_info("doc-1")
    before = (info.encoding, info.modified_time)

    with pytest.raises(FileIOError):
        manager.save(target, "snowman ☃", "doc-1")

    assert (info.encoding, info.modified_time) == before


# ---------------------------------------------------------------------------
# close
# ---------------------------------------------------------------------------


def test_close_removes_both_maps(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "text", "doc-1")

    manager.close("doc-1")

    assert manager.get_info("doc-1") is None
    assert manager.get_file_id(target) is None
    assert target.exists()


def test_close_is_idempotent(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "text", "doc-1")

    manager.close("doc-1")
    manager.close("doc-1")
    manager.close("never-opened")

    assert len(manager.registry) == 0
    assert manager.registry.paths() == {}


def test_close_then_save_starts_fresh(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "text", "doc-1")
    bump_mtime(target)
    manager.check(target, "doc-1")
    manager.close("doc-1")

    manager.save(target, "fresh", "doc-1")

    assert target.read_text(encoding="utf-8") == "fresh"
    assert manager.get_info("doc-1").has_changed is False


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


def test_check_unknown_identifier_returns_false(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    target.write_text("text", encoding="utf-8")

    assert manager.check(target, "doc-1") is False
    assert len(manager.registry) == 0


def test_check_detects_external_modification(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "text", "doc-1")

    bump_mtime(target)

    assert manager.check(target, "doc-1") is True
    assert manager.get_info("doc-1").has_changed is True


def test_changed_flag_is_sticky(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "text", "doc-1")
    recorded = manager.get_info("doc-1").modified_time
    bump_mtime(target)
    assert manager.check(target, "doc-1") is True

    stat = target.stat()
    os.utime(target, ns=(stat.st_atime_ns, recorded))

    assert manager.check(target, "doc-1") is True


def test_check_treats_deleted_file_as_changed(manager: FileManager, tmp_path: Path) -> None:
    target = tmp_path / "draft.md"
    manager.save(target, "text", "doc-1")
    target.unlink()

    assert manager.check(target, "doc-1") is True


# ---------------------------------------------------------------------------
# make_file_path
# ---------------------------------------------------------------------------


def test_make_file_path_places_documents_under_doc_dir(manager: FileManager, tmp_path: Path) -> None:
    path = manager.make_file_path("abc123")

    assert path == tmp_path / "doc" / "abc123"
    assert not (tmp_path / "doc").exists()


def test_canonical_path_round_trip(manager: FileManager, tmp_path: Path) -> None:
    path = manager.make_file_path("abc123")

    manager.save(path, "stored", "abc123")

    assert manager.open(path, "abc123") == "stored"
    assert manager.get_file_id(path) == "abc123"


# ---------------------------------------------------------------------------
# events
# ---------------------------------------------------------------------------


def test_lifecycle_events_are_published(manager: FileManager, event_bus: EventBus, tmp_path: Path) -> None:
    recorder = EventRecorder()
    for event_type in (DocumentOpened, DocumentSaved, DocumentClosed, DocumentChangedExternally, SaveConflict):
        event_bus.subscribe(event_type, recorder)
    first = tmp_path / "a.md"
    second = tmp_path / "b.md"

    manager.save(first, "one", "doc-1")
    manager.open(first, "doc-1")
    manager.save(second, "two", "doc-1")
    bump_mtime(second)
    manager.check(second, "doc-1")
    manager.check(second, "doc-1")
    with pytest.raises(HasChangedError):
        manager.save(second, "three", "doc-1")
    manager.close("doc-1")

    assert recorder.events == [
        DocumentSaved(file_id="doc-1", path=first),
        DocumentOpened(file_id="doc-1", path=first),
        DocumentSaved(file_id="doc-1", path=second, previous_path=first),
        DocumentChangedExternally(file_id="doc-1", path=second),
        SaveConflict(file_id="doc-1", path=second),
        DocumentClosed(file_id="doc-1", path=second),
    ]


def test_failing_event_handler_does_not_break_save(manager: FileManager, event_bus: EventBus, tmp_path: Path) -> None:
    def explode(event: DocumentSaved) -> None:
        raise RuntimeError("handler failure")

    event_bus.subscribe(DocumentSaved, explode)
    target = tmp_path / "draft.md"

    manager.save(target, "text", "doc-1")

    assert manager.get_file_id(target) == "doc-1"


def test_manager_without_event_bus(tmp_path: Path) -> None:
    manager = FileManager(FileManagerConfig(root=tmp_path))
    target = tmp_path / "draft.md"

    manager.save(target, "text", "doc-1")
    manager.close("doc-1")

    assert len(manager.registry) == 0


# ---------------------------------------------------------------------------
# SynchronizedFileManager
# ---------------------------------------------------------------------------


def test_synchronized_manager_delegates(tmp_path: Path) -> None:
    wrapped = SynchronizedFileManager(FileManager(FileManagerConfig(root=tmp_path)))
    target = wrapped.make_file_path("doc-1")

    wrapped.save(target, "text", "doc-1")

    assert wrapped.get_file_id(target) == "doc-1"
    assert wrapped.check(target, "doc-1") is False
    assert wrapped.open(target, "doc-1") == "text"
    with wrapped.locked() as inner:
        assert inner.get_info("doc-1") is wrapped.get_info("doc-1")
    wrapped.close("doc-1")
    assert wrapped.get_info("doc-1") is None


def test_synchronized_manager_handles_concurrent_saves(tmp_path: Path) -> None:
    wrapped = SynchronizedFileManager(FileManager(FileManagerConfig(root=tmp_path)))
    errors: list[BaseException] = []

    def worker(index: int) -> None:
        try:
            for revision in range(5):
                wrapped.save(tmp_path / f"doc-{index}.md", f"rev {revision}", f"doc-{index}")
        except BaseException as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    for index in range(8):
        path = tmp_path / f"doc-{index}.md"
        assert wrapped.get_file_id(path) == f"doc-{index}"
        assert path.read_text(encoding="utf-8") == "rev 4"
