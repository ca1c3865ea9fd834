"""Low-level file IO primitives used by the document manager."""

from __future__ import annotations

import codecs
import logging
import os
import stat
import tempfile
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import chardet

if TYPE_CHECKING:  # pragma: no cover
    from ..documents.registry import DocumentInfo

__all__ = [
    "CharacterEncoding",
    "detect_encoding",
    "encoding_for_text",
    "try_load_file",
    "try_save",
    "get_modified_time",
]

LOGGER = logging.getLogger(__name__)

_CHARDET_MIN_CONFIDENCE = 0.7
_CHARDET_SAMPLE_BYTES = 64 * 1024


class CharacterEncoding(Enum):
    """Text encodings the manager knows how to read back and re-save."""

    UTF8 = "utf-8"
    UTF8_BOM = "utf-8-sig"
    UTF16_LE = "utf-16-le"
    UTF16_BE = "utf-16-be"
    UTF32_LE = "utf-32-le"
    UTF32_BE = "utf-32-be"
    CP1252 = "cp1252"
    LATIN1 = "latin-1"

    @property
    def codec(self) -> str:
        return self.value

    @property
    def bom(self) -> bytes:
        """Byte-order mark that identifies this encoding on disk, if any."""

        return _BOMS.get(self, b"")

    @classmethod
    def from_codec(cls, name: str | None) -> CharacterEncoding | None:
        """Map a codec name (any alias Python accepts) onto a member."""

        if not name:
            return None
        try:
            canonical = codecs.lookup(name).name
        except LookupError:
            return None
        for member in cls:
            if codecs.lookup(member.value).name == canonical:
                return member
        return None

    def encode(self, text: str) -> bytes:
        return self.bom + text.encode(self._payload_codec)

    def decode(self, raw: bytes) -> str:
        bom = self.bom
        if bom and raw.startswith(bom):
            raw = raw[len(bom):]
        return raw.decode(self._payload_codec, errors="strict")

    @property
    def _payload_codec(self) -> str:
        # The BOM is handled explicitly; utf-8-sig would add or strip a second one.
        if self is CharacterEncoding.UTF8_BOM:
            return "utf-8"
        return self.codec


_BOMS: dict[CharacterEncoding, bytes] = {
    CharacterEncoding.UTF8_BOM: codecs.BOM_UTF8,
    CharacterEncoding.UTF16_LE: codecs.BOM_UTF16_LE,
    CharacterEncoding.UTF16_BE: codecs.BOM_UTF16_BE,
    CharacterEncoding.UTF32_LE: codecs.BOM_UTF32_LE,
    CharacterEncoding.UTF32_BE: codecs.BOM_UTF32_BE,
}

# UTF-32 LE must be probed before UTF-16 LE: its BOM starts with the same two bytes.
_BOM_PROBE_ORDER: tuple[CharacterEncoding, ...] = (
    CharacterEncoding.UTF32_LE,
    CharacterEncoding.UTF32_BE,
    CharacterEncoding.UTF8_BOM,
    CharacterEncoding.UTF16_LE,
    CharacterEncoding.UTF16_BE,
)


def detect_encoding(raw: bytes) -> CharacterEncoding:
    """Guess the encoding of ``raw``: BOM, strict UTF-8, chardet, then latin-1."""

    for candidate in _BOM_PROBE_ORDER:
        if raw.startswith(candidate.bom):
            return candidate

    try:
        raw.decode("utf-8")
        return CharacterEncoding.UTF8
    except UnicodeDecodeError:
        pass

    detected = chardet.detect(raw[:_CHARDET_SAMPLE_BYTES])
    name = detected.get("encoding")
    confidence = detected.get("confidence") or 0.0
    candidate = CharacterEncoding.from_codec(name)
    if candidate is not None and confidence >= _CHARDET_MIN_CONFIDENCE:
        try:
            raw.decode(candidate.codec)
            return candidate
        except UnicodeDecodeError:
            pass
    LOGGER.debug(
        "Falling back to latin-1 (chardet guessed %s, confidence=%.2f)", name, confidence
    )
    return CharacterEncoding.LATIN1


def encoding_for_text(encoding: CharacterEncoding, text: str) -> CharacterEncoding:
    """Return the encoding to write ``text`` with so it reads back unchanged.

    Plain UTF-8 text that starts with U+FEFF would be detected as BOM-marked
    on load and lose its first character, so it is written with an explicit
    BOM in front of it instead.
    """

    if encoding is CharacterEncoding.UTF8 and text.startswith("\ufeff"):
        return CharacterEncoding.UTF8_BOM
    return encoding


def try_load_file(
path: Path | str) -> tuple[str, DocumentInfo]:
    """Read ``path`` and return its text together with fresh metadata.

    Line endings are returned untouched so a later save writes back exactly
    what was read. Raises :class:`OSError` or :class:`UnicodeDecodeError`.
    """

    from ..documents.registry import DocumentInfo

    target = Path(path)
    raw = target.read_bytes()
    encoding = detect_encoding(raw)
    text = encoding.decode(raw)
    info = DocumentInfo(
        encoding=encoding,
        path=target,
        modified_time=get_modified_time(target),
        has_changed=False,
    )
    LOGGER.debug("Loaded %s (%d bytes, encoding=%s)", target, len(raw), encoding.codec)
    return text, info


def try_save(
    path: Path | str,
    text: str,
    encoding: CharacterEncoding,
    hint: DocumentInfo | None = None,
) -> None:
    """Atomically write ``text`` to ``path`` using ``encoding``.

    ``hint`` is the metadata recorded for the document before this write.
    When the target does not exist yet (save-as), the permission bits of
    the hinted file are carried over. Raises :class:`OSError` or
    :class:`UnicodeEncodeError`; on failure the target is left as it was.
    """

    target = Path(path)
    payload = encoding.encode(text)
    mode = _resolve_mode(target, hint)
    target.parent.mkdir(parents=True, exist_ok=True)

    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
            try:
                os.unlink(tmp_name)
            except OSError:
                LOGGER.debug("Unable to remove temporary file %s", tmp_name)
    LOGGER.debug("Saved %s (%d bytes, encoding=%s)", target, len(payload), encoding.codec)


def get_modified_time(path: Path | str) -> int | None:
    """Return the modification time of ``path`` in nanoseconds, or ``None`` if missing."""

    try:
        return Path(path).stat().st_mtime_ns
    except FileNotFoundError:
        return None


def _resolve_mode(target: Path, hint: DocumentInfo | None) -> int | None:
    for source in (target, hint.path if hint is not None else None):
        if source is None:
            continue
        try:
            return stat.S_IMODE(source.stat().st_mode)
        except OSError:
            continue
    return _default_mode()


def _read_umask() -> int:
    # os.umask can only be read by setting it; do that once, before any worker threads.
    umask = os.umask(0)
    os.umask(umask)
    return umask


_UMASK = _read_umask()


def _default_mode() -> int:
    # mkstemp creates 0600 files; new documents should honour the umask instead.
    return 0o666 & ~_UMASK
