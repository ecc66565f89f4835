"""Typed records for everything the store persists.

Each record type knows how to load itself leniently from stored JSON
(``from_dict``), how to validate a request payload (``from_payload``) and how
to serialize back to the camelCase JSON the UI expects (``to_dict``). Keys a
record does not know about are carried in ``extra`` so rewriting a file never
drops data written by another version.

Notes and resources are a tagged union: a real entity, or a ``FolderMarker``
that only exists to keep an otherwise-empty virtual folder visible.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal, Union

from vivaro.errors import ValidationError
from vivaro.folders.tree import normalize_path

FOLDER_KIND = "folder"
LEGACY_FOLDER_TITLE = ".folder"

ClientStatus = Literal["active", "archived"]
Priority = Literal["low", "medium", "high"]
ResourceType = Literal["link", "file"]

_PRIORITIES = ("low", "medium", "high")


# ── Helpers ───────────────────────────────────────────────────


def now_iso() -> str:
    """UTC timestamp in the ``2026-01-12T09:30:00.000Z`` form."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed); None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class IdGenerator:
    """Millisecond-timestamp ids, bumped so consecutive ids never repeat."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            candidate = int(time.time() * 1000)
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return str(candidate)


def _text(payload: dict, key: str, default: str = "") -> str:
    value = payload.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string", field=key)
    return value


def _required_text(payload: dict, key: str) -> str:
    value = _text(payload, key)
    if not value.strip():
        raise ValidationError(f"'{key}' is required", field=key)
    return value


def _entity_title(payload: dict) -> str:
    title = _required_text(payload, "title")
    if title.strip() == LEGACY_FOLDER_TITLE:
        raise ValidationError(f"'{LEGACY_FOLDER_TITLE}' is a reserved title", field="title")
    return title


def _optional_date(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if value in (None, ""):
        return None
    if parse_timestamp(value) is None:
        raise ValidationError(f"'{key}' must be an ISO-8601 date", field=key)
    return value


def _required_date(payload: dict, key: str) -> str:
    value = _optional_date(payload, key)
    if value is None:
        raise ValidationError(f"'{key}' is required", field=key)
    return value


def _bool(payload: dict, key: str, default: bool = False) -> bool:
    value = payload.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"'{key}' must be a boolean", field=key)
    return value


def _extras(data: dict, known: tuple[str, ...]) -> dict:
    return {k: v for k, v in data.items() if k not in known}


def _merge(current: dict, payload: dict) -> dict:
    """Overlay ``payload`` on ``current``; the id never changes."""
    merged = {**current, **payload}
    merged["id"] = current["id"]
    return merged


# ── Client ────────────────────────────────────────────────────


def _normalize_sows(raw: Any) -> list[dict]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("'sows' must be a list", field="sows")
    sows: list[dict] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("each SOW must be an object", field="sows")
        sows.append(
            {
                **item,
                "id": str(item.get("id") or ""),
                "startDate": _required_date(item, "startDate"),
                "endDate": _optional_date(item, "endDate") or "",
                "amount": item.get("amount") or "",
                "description": _text(item, "description"),
                "current": _bool(item, "current"),
            }
        )
    current = [s for s in sows if s["current"]]
    for stale in current[:-1]:
        stale["current"] = False
    return sows


def _normalize_embedded_contacts(raw: Any) -> list[dict]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("'contacts' must be a list", field="contacts")
    contacts: list[dict] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("each contact must be an object", field="contacts")
        contacts.append(
            {
                **item,
                "name": _required_text(item, "name"),
                "email": _text(item, "email"),
                "title": _text(item, "title"),
                "primary": _bool(item, "primary"),
            }
        )
    return contacts


@dataclass
class Client:
    id: str
    name: str
    status: ClientStatus = "active"
    notes: str = ""
    contacts: list[dict] = field(default_factory=list)
    sows: list[dict] = field(default_factory=list)
    created_at: str = ""
    archived_at: str | None = None
    extra: dict = field(default_factory=dict)

    KEYS: ClassVar[tuple[str, ...]] = (
        "id", "name", "status", "notes", "contacts", "sows", "createdAt", "archivedAt",
    )

    @classmethod
    def from_dict(cls, data: dict) -> Client:
        status = data.get("status") or "active"
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            status="archived" if status == "archived" else "active",
            notes=data.get("notes") or "",
            contacts=list(data.get("contacts") or []),
            sows=list(data.get("sows") or []),
            created_at=data.get("createdAt") or "",
            archived_at=data.get("archivedAt"),
            extra=_extras(data, cls.KEYS),
        )

    @classmethod
    def from_payload(cls, payload: dict, *, id: str, created_at: str) -> Client:
        status = payload.get("status") or "active"
        if status not in ("active", "archived"):
            raise ValidationError("'status' must be 'active' or 'archived'", field="status")
        return cls(
            id=id,
            name=_required_text(payload, "name").strip(),
            status=status,
            notes=_text(payload, "notes"),
            contacts=_normalize_embedded_contacts(payload.get("contacts")),
            sows=_normalize_sows(payload.get("sows")),
            created_at=created_at,
            archived_at=payload.get("archivedAt"),
            extra=_extras(payload, cls.KEYS),
        )

    def updated(self, payload: dict) -> Client:
        merged = _merge(self.to_dict(), payload)
        return Client.from_payload(merged, id=self.id, created_at=self.created_at)

    def archived(self, when: str) -> Client:
        return replace(self, status="archived", archived_at=when)

    def unarchived(self) -> Client:
        return replace(self, status="active", archived_at=None)

    def to_dict(self) -> dict:
        data = {
            **self.extra,
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "notes": self.notes,
            "contacts": self.contacts,
            "sows": self.sows,
            "createdAt": self.created_at,
        }
        if self.archived_at is not None or self.status == "archived":
            data["archivedAt"] = self.archived_at
        return data


# ── Folder markers ────────────────────────────────────────────


@dataclass
class FolderMarker:
    """Stored record whose only purpose is to pin a virtual folder path."""

    id: str
    folder: str
    created_at: str = ""

    is_marker: ClassVar[bool] = True

    @property
    def sort_date(self) -> datetime:
        return parse_timestamp(self.created_at) or datetime.min.replace(tzinfo=timezone.utc)

    @classmethod
    def from_dict(cls, data: dict) -> FolderMarker:
        return cls(
            id=str(data.get("id", "")),
            folder=data.get("folder") or "",
            created_at=data.get("createdAt") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": FOLDER_KIND,
            "folder": self.folder,
            "createdAt": self.created_at,
        }


def _is_marker_dict(data: dict) -> bool:
    if "kind" in data:
        return data["kind"] == FOLDER_KIND
    # Untagged placeholders from older versions carry only the sentinel title.
    if data.get("content") or data.get("url"):
        return False
    return LEGACY_FOLDER_TITLE in (data.get("title"), data.get("name"))


# ── Meeting notes ─────────────────────────────────────────────


@dataclass
class MeetingNote:
    id: str
    title: str
    date: str
    content: str = ""
    label: str = ""
    folder: str = ""
    created_at: str = ""
    extra: dict = field(default_factory=dict)

    is_marker: ClassVar[bool] = False
    KEYS: ClassVar[tuple[str, ...]] = (
        "id", "kind", "title", "date", "content", "label", "folder", "createdAt",
    )

    @classmethod
    def from_dict(cls, data: dict) -> MeetingNote:
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            date=data.get("date") or data.get("createdAt") or "",
            content=data.get("content") or "",
            label=data.get("label") or "",
            folder=data.get("folder") or "",
            created_at=data.get("createdAt") or "",
            extra=_extras(data, cls.KEYS),
        )

    @classmethod
    def from_payload(cls, payload: dict, *, id: str, created_at: str) -> MeetingNote:
        return cls(
            id=id,
            title=_entity_title(payload),
            date=_optional_date(payload, "date") or created_at,
            content=_text(payload, "content"),
            label=_text(payload, "label"),
            folder=normalize_path(_text(payload, "folder")),
            created_at=created_at,
            extra=_extras(payload, cls.KEYS),
        )

    def updated(self, payload: dict) -> MeetingNote:
        merged = _merge(self.to_dict(), payload)
        return MeetingNote.from_payload(merged, id=self.id, created_at=self.created_at)

    @property
    def sort_date(self) -> datetime:
        return (
            parse_timestamp(self.date)
            or parse_timestamp(self.created_at)
            or datetime.min.replace(tzinfo=timezone.utc)
        )

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "title": self.title,
            "date": self.date,
            "content": self.content,
            "label": self.label,
            "folder": self.folder,
            "createdAt": self.created_at,
        }


NoteEntry = Union[MeetingNote, FolderMarker]


def load_note(data: dict) -> NoteEntry:
    if _is_marker_dict(data):
        return FolderMarker.from_dict(data)
    return MeetingNote.from_dict(data)


# ── Resources ─────────────────────────────────────────────────


@dataclass
class Resource:
    id: str
    type: ResourceType
    title: str
    url: str
    description: str = ""
    folder: str = ""
    created_at: str = ""
    file_name: str | None = None
    file_size: int | None = None
    uploaded_at: str | None = None
    extra: dict = field(default_factory=dict)

    is_marker: ClassVar[bool] = False
    KEYS: ClassVar[tuple[str, ...]] = (
        "id", "kind", "type", "title", "url", "description", "folder", "createdAt",
        "fileName", "fileSize", "uploadedAt",
    )

    @classmethod
    def from_dict(cls, data: dict) -> Resource:
        return cls(
            id=str(data.get("id", "")),
            type="file" if data.get("type") == "file" else "link",
            title=data.get("title") or "",
            url=data.get("url") or "",
            description=data.get("description") or "",
            folder=data.get("folder") or "",
            created_at=data.get("createdAt") or "",
            file_name=data.get("fileName"),
            file_size=data.get("fileSize"),
            uploaded_at=data.get("uploadedAt"),
            extra=_extras(data, cls.KEYS),
        )

    @classmethod
    def link_from_payload(cls, payload: dict, *, id: str, created_at: str) -> Resource:
        return cls(
            id=id,
            type="link",
            title=_entity_title(payload),
            url=_required_text(payload, "url").strip(),
            description=_text(payload, "description"),
            folder=normalize_path(_text(payload, "folder")),
            created_at=created_at,
        )

    @classmethod
    def file_from_upload(
        cls,
        *,
        id: str,
        created_at: str,
        file_name: str,
        file_size: int,
        url: str,
        title: str = "",
        description: str = "",
        folder: str = "",
    ) -> Resource:
        return cls(
            id=id,
            type="file",
            title=title.strip() or file_name,
            url=url,
            description=description,
            folder=normalize_path(folder),
            created_at=created_at,
            file_name=file_name,
            file_size=file_size,
            uploaded_at=created_at,
        )

    def updated(self, payload: dict) -> Resource:
        """Only title, description, folder and (for links) url are editable."""
        changes: dict[str, Any] = {}
        if _text(payload, "title").strip():
            changes["title"] = _entity_title(payload)
        if _text(payload, "description"):
            changes["description"] = payload["description"]
        if "folder" in payload:
            changes["folder"] = normalize_path(_text(payload, "folder"))
        if self.type == "link" and _text(payload, "url").strip():
            changes["url"] = payload["url"].strip()
        return replace(self, **changes)

    def to_dict(self) -> dict:
        data = {
            **self.extra,
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "url": self.url,
            "description": self.description,
            "folder": self.folder,
            "createdAt": self.created_at,
        }
        if self.type == "file":
            data["fileName"] = self.file_name
            data["fileSize"] = self.file_size
            data["uploadedAt"] = self.uploaded_at
        return data


ResourceEntry = Union[Resource, FolderMarker]


def load_resource(data: dict) -> ResourceEntry:
    if _is_marker_dict(data):
        return FolderMarker.from_dict(data)
    return Resource.from_dict(data)


# ── Reminders, milestones, contacts ───────────────────────────


@dataclass
class Reminder:
    id: str
    text: str
    due_date: str | None = None
    priority: Priority = "medium"
    completed: bool = False
    created_at: str = ""
    extra: dict = field(default_factory=dict)

    KEYS: ClassVar[tuple[str, ...]] = (
        "id", "text", "dueDate", "priority", "completed", "createdAt",
    )

    @classmethod
    def from_dict(cls, data: dict) -> Reminder:
        priority = data.get("priority")
        return cls(
            id=str(data.get("id", "")),
            text=data.get("text") or "",
            due_date=data.get("dueDate"),
            priority=priority if priority in _PRIORITIES else "medium",
            completed=bool(data.get("completed")),
            created_at=data.get("createdAt") or "",
            extra=_extras(data, cls.KEYS),
        )

    @classmethod
    def from_payload(cls, payload: dict, *, id: str, created_at: str) -> Reminder:
        priority = payload.get("priority") or "medium"
        if priority not in _PRIORITIES:
            raise ValidationError(
                f"'priority' must be one of {', '.join(_PRIORITIES)}", field="priority"
            )
        return cls(
            id=id,
            text=_required_text(payload, "text"),
            due_date=_optional_date(payload, "dueDate"),
            priority=priority,
            completed=_bool(payload, "completed"),
            created_at=created_at,
            extra=_extras(payload, cls.KEYS),
        )

    def updated(self, payload: dict) -> Reminder:
        merged = _merge(self.to_dict(), payload)
        return Reminder.from_payload(merged, id=self.id, created_at=self.created_at)

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "text": self.text,
            "dueDate": self.due_date,
            "priority": self.priority,
            "completed": self.completed,
            "createdAt": self.created_at,
        }


@dataclass
class Milestone:
    id: str
    title: str
    date: str
    description: str = ""
    celebrated: bool = False
    created_at: str = ""
    extra: dict = field(default_factory=dict)

    KEYS: ClassVar[tuple[str, ...]] = (
        "id", "title", "date", "description", "celebrated", "createdAt",
    )

    @classmethod
    def from_dict(cls, data: dict) -> Milestone:
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            date=data.get("date") or data.get("createdAt") or "",
            description=data.get("description") or "",
            celebrated=bool(data.get("celebrated")),
            created_at=data.get("createdAt") or "",
            extra=_extras(data, cls.KEYS),
        )

    @classmethod
    def from_payload(cls, payload: dict, *, id: str, created_at: str) -> Milestone:
        return cls(
            id=id,
            title=_required_text(payload, "title"),
            date=_optional_date(payload, "date") or created_at,
            description=_text(payload, "description"),
            celebrated=_bool(payload, "celebrated"),
            created_at=created_at,
            extra=_extras(payload, cls.KEYS),
        )

    def updated(self, payload: dict) -> Milestone:
        merged = _merge(self.to_dict(), payload)
        return Milestone.from_payload(merged, id=self.id, created_at=self.created_at)

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "title": self.title,
            "date": self.date,
            "description": self.description,
            "celebrated": self.celebrated,
            "createdAt": self.created_at,
        }


@dataclass
class Contact:
    id: str
    name: str
    email: str = ""
    title: str = ""
    created_at: str = ""
    extra: dict = field(default_factory=dict)

    KEYS: ClassVar[tuple[str, ...]] = ("id", "name", "email", "title", "createdAt")

    @classmethod
    def from_dict(cls, data: dict) -> Contact:
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            email=data.get("email") or "",
            title=data.get("title") or "",
            created_at=data.get("createdAt") or "",
            extra=_extras(data, cls.KEYS),
        )

    @classmethod
    def from_payload(cls, payload: dict, *, id: str, created_at: str) -> Contact:
        return cls(
            id=id,
            name=_required_text(payload, "name"),
            email=_text(payload, "email"),
            title=_text(payload, "title"),
            created_at=created_at,
            extra=_extras(payload, cls.KEYS),
        )

    def updated(self, payload: dict) -> Contact:
        """Blank fields in the payload keep the stored value."""
        changes = {
            key: payload[key]
            for key in ("name", "email", "title")
            if _text(payload, key).strip()
        }
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "title": self.title,
            "createdAt": self.created_at,
        }
