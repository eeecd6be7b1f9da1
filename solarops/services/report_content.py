"""
Report Content Model — typed payloads for the ``details`` document.

Each report type has exactly one payload class; ``CONTENT_TYPES`` maps the
``report_type`` discriminant to it.  Stored JSON keeps the legacy camelCase
keys (``beforeImages``, ``adminNotes``, ``updates`` ...) so rows written by
earlier clients stay readable.  Keys a payload class does not know are kept
in ``extra`` and written back untouched.

Deserialisation never raises.  Malformed text yields an empty payload of
the right type, and a malformed list field yields ``[]``.  Both cases are
logged at WARNING so the row can be repaired by hand.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, ClassVar

from solarops.core.exceptions import ValidationError
from solarops.models.report import (
    REPORT_TYPE_INQUIRY,
    REPORT_TYPE_MAINTENANCE,
    REPORT_TYPE_PROJECT,
    REPORT_TYPE_SALES,
    REPORT_TYPES,
)

logger = logging.getLogger(__name__)


# ── Leaf records ─────────────────────────────────────────────────────────────


@dataclass
class Attachment:
    """Stored file reference.  Owned by exactly one stage or exception record."""

    id: str
    url: str
    file_name: str = ""
    uploaded_by: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "fileName": self.file_name,
            "uploadedBy": self.uploaded_by,
        }

    @classmethod
    def from_raw(cls, raw) -> Attachment | None:
        # Early clients stored bare URL strings.
        if isinstance(raw, str):
            return cls(id="", url=raw, file_name=os.path.basename(raw.split("?", 1)[0]))
        if not isinstance(raw, dict) or not raw.get("url"):
            return None
        return cls(
            id=str(raw.get("id") or ""),
            url=raw["url"],
            file_name=raw.get("fileName") or raw.get("name") or "",
            uploaded_by=raw.get("uploadedBy"),
        )


@dataclass
class StageRecord:
    """One milestone in a Project report's ``updates`` list, keyed by ``id``."""

    id: str
    label: str = ""
    completed: bool = False
    timestamp: str | None = None
    comment: str | None = None
    files: list[Attachment] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    _KNOWN: ClassVar[set] = {"id", "label", "completed", "timestamp", "comment", "files"}

    def to_dict(self) -> dict:
        d = dict(self.extra)
        d.update({
            "id": self.id,
            "label": self.label,
            "completed": self.completed,
            "timestamp": self.timestamp,
            "comment": self.comment,
            "files": [f.to_dict() for f in self.files],
        })
        return d

    @classmethod
    def from_raw(cls, raw) -> StageRecord | None:
        if not isinstance(raw, dict) or not raw.get("id"):
            return None
        return cls(
            id=str(raw["id"]),
            label=raw.get("label") or "",
            completed=bool(raw.get("completed")),
            timestamp=raw.get("timestamp"),
            comment=raw.get("comment"),
            files=_attachments(raw.get("files")),
            extra={k: v for k, v in raw.items() if k not in cls._KNOWN},
        )


@dataclass
class ExceptionRecord:
    """Out-of-band incident note; does not affect stage progression."""

    id: str
    comment: str = ""
    files: list[Attachment] = field(default_factory=list)
    timestamp: str | None = None
    uploaded_by: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "comment": self.comment,
            "files": [f.to_dict() for f in self.files],
            "timestamp": self.timestamp,
            "uploadedBy": self.uploaded_by,
        }

    @classmethod
    def from_raw(cls, raw) -> ExceptionRecord | None:
        if not isinstance(raw, dict) or not raw.get("id"):
            return None
        return cls(
            id=str(raw["id"]),
            comment=raw.get("comment") or "",
            files=_attachments(raw.get("files")),
            timestamp=raw.get("timestamp"),
            uploaded_by=raw.get("uploadedBy"),
        )


@dataclass
class NoteReply:
    id: str
    author_id: int | None
    author_name: str
    content: str
    timestamp: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "authorId": self.author_id,
            "authorName": self.author_name,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_raw(cls, raw) -> NoteReply | None:
        if not isinstance(raw, dict) or not raw.get("id"):
            return None
        return cls(
            id=str(raw["id"]),
            author_id=raw.get("authorId"),
            author_name=raw.get("authorName") or "",
            content=raw.get("content") or "",
            timestamp=raw.get("timestamp"),
        )


@dataclass
class AdminNote:
    id: str
    author_id: int | None
    author_name: str
    content: str
    timestamp: str | None = None
    replies: list[NoteReply] = field(default_factory=list)
    read_by: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "authorId": self.author_id,
            "authorName": self.author_name,
            "content": self.content,
            "timestamp": self.timestamp,
            "replies": [r.to_dict() for r in self.replies],
            "readBy": list(self.read_by),
        }

    @classmethod
    def from_raw(cls, raw) -> AdminNote | None:
        if not isinstance(raw, dict) or not raw.get("id"):
            return None
        read_by = raw.get("readBy")
        return cls(
            id=str(raw["id"]),
            author_id=raw.get("authorId"),
            author_name=raw.get("authorName") or "",
            content=raw.get("content") or "",
            timestamp=raw.get("timestamp"),
            replies=_records(raw.get("replies"), NoteReply, "replies"),
            read_by=list(read_by) if isinstance(read_by, list) else [],
        )


# ── Payload variants ─────────────────────────────────────────────────────────


@dataclass
class ReportContent:
    """Fields shared by every report type."""

    report_type: ClassVar[str] = ""
    # (attribute, storage key) for list-shaped fields, in serialisation order
    LIST_FIELDS: ClassVar[tuple] = (("admin_notes", "adminNotes"),)

    admin_notes: list[AdminNote] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = dict(self.extra)
        for attr, key in self.LIST_FIELDS:
            d[key] = [_dump_item(item) for item in getattr(self, attr)]
        return d

    def find_note(self, note_id: str) -> AdminNote | None:
        for note in self.admin_notes:
            if note.id == note_id:
                return note
        return None


@dataclass
class InquiryContent(ReportContent):
    report_type: ClassVar[str] = REPORT_TYPE_INQUIRY
    LIST_FIELDS: ClassVar[tuple] = (
        ("customers", "customers"),
        ("admin_notes", "adminNotes"),
    )

    customers: list[dict] = field(default_factory=list)


@dataclass
class SalesContent(ReportContent):
    report_type: ClassVar[str] = REPORT_TYPE_SALES
    LIST_FIELDS: ClassVar[tuple] = (
        ("customers", "customers"),
        ("admin_notes", "adminNotes"),
    )

    customers: list[dict] = field(default_factory=list)


@dataclass
class MaintenanceContent(ReportContent):
    report_type: ClassVar[str] = REPORT_TYPE_MAINTENANCE
    LIST_FIELDS: ClassVar[tuple] = (
        ("customers", "customers"),
        ("before_images", "beforeImages"),
        ("after_images", "afterImages"),
        ("admin_notes", "adminNotes"),
    )

    customers: list[dict] = field(default_factory=list)
    before_images: list[str] = field(default_factory=list)
    after_images: list[str] = field(default_factory=list)


@dataclass
class ProjectContent(ReportContent):
    report_type: ClassVar[str] = REPORT_TYPE_PROJECT
    LIST_FIELDS: ClassVar[tuple] = (
        ("customers", "customers"),
        ("updates", "updates"),
        ("exceptions", "exceptions"),
        ("admin_notes", "adminNotes"),
    )

    customers: list[dict] = field(default_factory=list)
    updates: list[StageRecord] = field(default_factory=list)
    exceptions: list[ExceptionRecord] = field(default_factory=list)

    def find_stage(self, stage_id: str) -> StageRecord | None:
        for record in self.updates:
            if record.id == stage_id:
                return record
        return None


CONTENT_TYPES: dict[str, type[ReportContent]] = {
    REPORT_TYPE_INQUIRY: InquiryContent,
    REPORT_TYPE_MAINTENANCE: MaintenanceContent,
    REPORT_TYPE_SALES: SalesContent,
    REPORT_TYPE_PROJECT: ProjectContent,
}

# Item parser per list field; plain values are kept as-is.
_ITEM_PARSERS = {
    "admin_notes": AdminNote,
    "updates": StageRecord,
    "exceptions": ExceptionRecord,
}

# Fields that are owned by workflow operations, never by a general edit.
WORKFLOW_MANAGED_KEYS = frozenset({"updates", "exceptions", "adminNotes"})


# ── Helpers ──────────────────────────────────────────────────────────────────


def _dump_item(item):
    return item.to_dict() if hasattr(item, "to_dict") else item


def _attachments(raw) -> list[Attachment]:
    if not isinstance(raw, list):
        return []
    return [a for a in (Attachment.from_raw(r) for r in raw) if a is not None]


def _coerce_list(raw, key: str, report_id=None) -> list:
    """Return ``raw`` as a list; decode double-encoded JSON; default to []."""
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning(
                "Malformed %s in report content, defaulting to []", key,
                extra={"report_id": report_id},
            )
            return []
    if not isinstance(raw, list):
        logger.warning(
            "Non-list %s in report content, defaulting to []", key,
            extra={"report_id": report_id},
        )
        return []
    return raw


def _records(raw, record_cls, key: str, report_id=None) -> list:
    items = _coerce_list(raw, key, report_id)
    return [r for r in (record_cls.from_raw(i) for i in items) if r is not None]


def validate_report_type(report_type: str) -> str:
    if report_type not in CONTENT_TYPES:
        raise ValidationError(
            f"Invalid report type '{report_type}'",
            details={"type": f"must be one of {', '.join(REPORT_TYPES)}"},
        )
    return report_type


def empty_content(report_type: str) -> ReportContent:
    return CONTENT_TYPES[validate_report_type(report_type)]()


# ── Public API ───────────────────────────────────────────────────────────────


def content_from_dict(report_type: str, data: dict | None, report_id=None) -> ReportContent:
    """Build the typed payload for ``report_type`` from a decoded document.

    Unknown keys go to ``extra``; malformed list fields become ``[]``.
    """
    cls = CONTENT_TYPES[validate_report_type(report_type)]
    if not isinstance(data, dict):
        return cls()

    known_keys = {key for _, key in cls.LIST_FIELDS}
    kwargs: dict[str, Any] = {
        "extra": {k: v for k, v in data.items() if k not in known_keys},
    }
    for attr, key in cls.LIST_FIELDS:
        parser = _ITEM_PARSERS.get(attr)
        if parser is not None:
            kwargs[attr] = _records(data.get(key), parser, key, report_id)
        else:
            kwargs[attr] = _coerce_list(data.get(key), key, report_id)
    return cls(**kwargs)


def dumps_content(content: ReportContent) -> str:
    """Serialise a payload for the ``details`` column."""
    return json.dumps(content.to_dict(), ensure_ascii=False)


def loads_content(report_type: str, raw, report_id=None) -> ReportContent:
    """Deserialise the ``details`` column.  Never raises on bad data.

    Returns an empty payload of the right type when ``raw`` is not a JSON
    object.  An unknown ``report_type`` is still a ValidationError, because
    that is a schema error on the row itself, not a content error.
    """
    if raw is None or raw == "":
        return empty_content(report_type)
    data = raw
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(
                "Malformed report content, defaulting to empty %s payload", report_type,
                extra={"report_id": report_id},
            )
            return empty_content(report_type)
    if not isinstance(data, dict):
        logger.warning(
            "Report content is not an object, defaulting to empty %s payload", report_type,
            extra={"report_id": report_id},
        )
        return empty_content(report_type)
    return content_from_dict(report_type, data, report_id)


def loads_json(raw, default):
    """Decode an auxiliary JSON column, returning ``default`` on any failure."""
    if raw is None or raw == "":
        return default
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Malformed JSON column, using default")
        return default
    if default is not None and not isinstance(value, type(default)):
        return default
    return value
