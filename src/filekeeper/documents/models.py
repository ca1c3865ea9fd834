"""Payloads exchanged with the editor session layer when documents are created or loaded."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Mapping

__all__ = ["CreateDocRequest", "DocDescription", "Doc"]


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return "" if value is None else str(value)


@dataclass(slots=True)
class CreateDocRequest:
    """Request to create a new document."""

    id: str = ""
    name: str = ""
    desc: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> CreateDocRequest:
        return cls(id=_text(payload, "id"), name=_text(payload, "name"), desc=_text(payload, "desc"))


@dataclass(slots=True)
class DocDescription:
    """Describes a document and where it is stored."""

    id: str = ""
    name: str = ""
    desc: str = ""
    path: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> DocDescription:
        return cls(
            id=_text(payload, "id"),
            name=_text(payload, "name"),
            desc=_text(payload, "desc"),
            path=_text(payload, "path"),
        )


@dataclass(slots=True)
class Doc:
    """A document description together with its text content."""

    desc: DocDescription | None = None
    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "desc": self.desc.to_dict() if self.desc is not None else None,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Doc:
        desc_payload = payload.get("desc")
        desc = DocDescription.from_dict(desc_payload) if isinstance(desc_payload, Mapping) else None
        return cls(desc=desc, content=_text(payload, "content"))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, body: str) -> Doc:
        payload = json.loads(body)
        if not isinstance(payload, Mapping):
            raise ValueError("Doc payload must be a JSON object")
        return cls.from_dict(payload)
