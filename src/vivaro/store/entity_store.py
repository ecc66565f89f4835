"""Folder-per-client JSON store.

JSON files are the source of truth. A client's directory is derived from its
name (see ``folder_name``), not its id, so finding a client by id needs a
scan. An in-memory id -> directory index (built on first use, updated on
writes, rebuilt whenever an entry turns out stale) avoids repeating that scan
on every request.
"""

from __future__ import annotations

import json
import logging
import os
import re
import secrets
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Literal

from vivaro.errors import NotFoundError
from vivaro.store.records import (
    Client,
    Contact,
    Milestone,
    NoteEntry,
    Reminder,
    load_note,
    load_resource,
)

logger = logging.getLogger(__name__)

CLIENT_FILE = "client.json"
NOTES_DIR = "notes"
UPLOADS_DIR = "resources"
FALLBACK_SLUG = "unnamed-project"
FILES_URL_PREFIX = "/api/files/"

ListKind = Literal["reminders", "milestones", "resources", "contacts"]

LIST_FILES: dict[str, str] = {
    "reminders": "reminders.json",
    "milestones": "milestones.json",
    "resources": "resources.json",
    "contacts": "contacts.json",
}

LIST_LOADERS: dict[str, Callable[[dict], Any]] = {
    "reminders": Reminder.from_dict,
    "milestones": Milestone.from_dict,
    "resources": load_resource,
    "contacts": Contact.from_dict,
}

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def folder_name(name: str | None) -> str:
    """Filesystem-safe slug for a client name.

    Lowercase, special characters stripped, whitespace runs collapsed to a
    single dash, leading/trailing dashes trimmed. Empty input (or input that
    slugs to nothing) maps to ``unnamed-project``.
    """
    if not name:
        return FALLBACK_SLUG
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")
    return slug or FALLBACK_SLUG


class EntityStore:
    """Read/write access to the client directory tree under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._index: dict[str, Path] = {}
        self._indexed = False
        self._ensure_initialized()

    def _ensure_initialized(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    # ── Paths ─────────────────────────────────────────────────

    def resolve_client_directory(self, name: str | None) -> Path:
        """Pure: the directory a client with this name would live in."""
        return self.root / folder_name(name)

    def _belongs_to(self, directory: Path, name: str) -> bool:
        """True if ``directory`` is this name's slug or a collision-suffixed copy of it."""
        slug = folder_name(name)
        if directory.parent != self.root:
            return False
        if directory.name == slug:
            return True
        suffixed = re.fullmatch(rf"{re.escape(slug)}-\d+", directory.name) is not None
        return suffixed and (self.root / slug).exists()

    def unique_client_directory(self, name: str | None) -> Path:
        """First free directory among ``slug``, ``slug-1``, ``slug-2``, …"""
        base = self.resolve_client_directory(name)
        path = base
        counter = 1
        while path.exists():
            path = base.with_name(f"{base.name}-{counter}")
            counter += 1
        return path

    # ── JSON I/O ──────────────────────────────────────────────

    @staticmethod
    def _read_json(path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def _write_json(path: Path, data: Any) -> None:
        """Write via a temp file in the same directory, then replace."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %s", path)

    # ── Client index ──────────────────────────────────────────

    def _scan(self) -> list[tuple[Client, Path]]:
        """Read every first-level client directory and rebuild the index.

        Directories without a readable client.json are logged and skipped.
        If a failed relocation left two directories with the same id, the
        most recently written one wins.
        """
        found: dict[str, tuple[Client, Path, float]] = {}
        for entry in sorted(self.root.iterdir()):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            client_file = entry / CLIENT_FILE
            try:
                client = Client.from_dict(self._read_json(client_file))
                mtime = client_file.stat().st_mtime
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("Skipping client directory %s: %s", entry.name, e)
                continue
            previous = found.get(client.id)
            if previous is not None:
                logger.warning(
                    "Client %s found in both %s and %s", client.id, previous[1].name, entry.name
                )
                if previous[2] >= mtime:
                    continue
            found[client.id] = (client, entry, mtime)

        self._index = {client_id: path for client_id, (_, path, _) in found.items()}
        self._indexed = True
        return [(client, path) for client, path, _ in found.values()]

    def _lookup(self, client_id: str) -> tuple[Client, Path] | None:
        """Locate a client by id: index first, full scan on a miss or stale entry."""
        if self._indexed:
            path = self._index.get(client_id)
            if path is not None:
                try:
                    client = Client.from_dict(self._read_json(path / CLIENT_FILE))
                    if client.id == client_id:
                        return client, path
                except (OSError, ValueError, AttributeError):
                    pass
        for client, path in self._scan():
            if client.id == client_id:
                return client, path
        return None

    def client_directory(self, client_id: str) -> Path | None:
        found = self._lookup(client_id)
        return found[1] if found else None

    def _require_directory(self, client_id: str) -> Path:
        directory = self.client_directory(client_id)
        if directory is None:
            raise NotFoundError("client", client_id)
        return directory

    # ── Clients ───────────────────────────────────────────────

    def list_clients(self) -> list[Client]:
        return [client for client, _ in self._scan()]

    def read_client(self, client_id: str) -> Client | None:
        found = self._lookup(client_id)
        return found[0] if found else None

    def write_client(self, client: Client) -> Path:
        """Persist ``client``, relocating its directory if the name changed.

        A rename that fails (e.g. the source vanished) is logged and the
        client is written fresh at the destination instead.
        """
        current = self.client_directory(client.id)
        moved_from: str | None = None
        if current is not None and self._belongs_to(current, client.name):
            target = current
        else:
            target = self.unique_client_directory(client.name)
            if current is not None:
                try:
                    current.rename(target)
                except OSError as e:
                    logger.warning(
                        "Failed to move client directory %s -> %s: %s", current, target, e
                    )
                else:
                    logger.info("Moved client directory: %s -> %s", current.name, target.name)
                    moved_from = current.name

        target.mkdir(parents=True, exist_ok=True)
        self._write_json(target / CLIENT_FILE, client.to_dict())
        self._index[client.id] = target
        if moved_from is not None:
            try:
                self._rewrite_upload_urls(target, moved_from)
            except (OSError, ValueError) as e:
                logger.warning("Failed to rewrite upload URLs for %s: %s", target.name, e)
        return target

    def delete_client(self, client_id: str) -> bool:
        """Remove the client's directory tree. False if the id is unknown."""
        directory = self.client_directory(client_id)
        if directory is None:
            return False
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            pass
        self._index.pop(client_id, None)
        logger.info("Deleted client %s (%s)", client_id, directory.name)
        return True

    # ── Meeting notes (one file per note) ─────────────────────

    def _note_path(self, directory: Path, note_id: str) -> Path | None:
        if not _SAFE_ID.match(note_id):
            return None
        return directory / NOTES_DIR / f"{note_id}.json"

    def list_notes(self, client_id: str) -> list[NoteEntry]:
        """All notes of a client, folder markers included. [] for unknown clients."""
        directory = self.client_directory(client_id)
        if directory is None:
            return []
        notes_dir = directory / NOTES_DIR
        if not notes_dir.is_dir():
            return []
        return [load_note(self._read_json(path)) for path in sorted(notes_dir.glob("*.json"))]

    def read_note(self, client_id: str, note_id: str) -> NoteEntry | None:
        directory = self.client_directory(client_id)
        if directory is None:
            return None
        path = self._note_path(directory, note_id)
        if path is None:
            return None
        try:
            return load_note(self._read_json(path))
        except FileNotFoundError:
            return None

    def write_note(self, client_id: str, note: NoteEntry) -> None:
        directory = self._require_directory(client_id)
        path = self._note_path(directory, note.id)
        if path is None:
            raise NotFoundError("meeting note", note.id)
        self._write_json(path, note.to_dict())

    def delete_note(self, client_id: str, note_id: str) -> bool:
        """Delete a note file. False if it was already absent."""
        directory = self._require_directory(client_id)
        path = self._note_path(directory, note_id)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def delete_notes(self, client_id: str, note_ids: list[str]) -> int:
        return sum(1 for note_id in note_ids if self.delete_note(client_id, note_id))

    # ── List-shaped kinds (one JSON array per client) ─────────

    def read_list(self, client_id: str, kind: ListKind) -> list[Any]:
        """Typed records of a list-shaped kind. [] if the client or file is absent."""
        directory = self.client_directory(client_id)
        if directory is None:
            return []
        try:
            raw = self._read_json(directory / LIST_FILES[kind])
        except FileNotFoundError:
            return []
        loader = LIST_LOADERS[kind]
        return [loader(item) for item in raw]

    def write_list(self, client_id: str, kind: ListKind, records: list[Any]) -> None:
        """Rewrite the whole array; last writer wins."""
        directory = self._require_directory(client_id)
        self._write_json(directory / LIST_FILES[kind], [r.to_dict() for r in records])

    # ── Uploaded files ────────────────────────────────────────

    def save_upload(self, client_id: str, original_name: str, data: bytes) -> tuple[str, str]:
        """Store an uploaded file under ``resources/``; returns (stored name, URL)."""
        directory = self._require_directory(client_id)
        uploads = directory / UPLOADS_DIR
        uploads.mkdir(parents=True, exist_ok=True)

        original = Path(original_name or "upload").name
        stem, ext = os.path.splitext(original)
        safe_stem = re.sub(r"[^a-z0-9]", "_", stem, flags=re.IGNORECASE) or "file"
        suffix = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}"
        stored_name = f"{safe_stem}-{suffix}{ext}"

        (uploads / stored_name).write_bytes(data)
        logger.info("Stored upload %s (%d bytes) for client %s", stored_name, len(data), client_id)
        return stored_name, f"{FILES_URL_PREFIX}{directory.name}/{UPLOADS_DIR}/{stored_name}"

    def upload_path(self, url: str) -> Path | None:
        """Map an upload URL back to a file under the data root, or None."""
        if not url.startswith(FILES_URL_PREFIX):
            return None
        relative = url[len(FILES_URL_PREFIX):]
        root = self.root.resolve()
        candidate = (root / relative).resolve()
        if root not in candidate.parents:
            return None
        return candidate

    def remove_upload(self, url: str) -> bool:
        """Delete the file behind an upload URL; failures are logged, not raised."""
        path = self.upload_path(url)
        if path is None:
            logger.warning("Refusing to delete upload outside the data directory: %s", url)
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.warning("Failed to delete uploaded file %s: %s", path, e)
            return False
        return True

    def _rewrite_upload_urls(self, directory: Path, old_name: str) -> None:
        """Point file-resource URLs at the client's relocated directory."""
        resources_file = directory / LIST_FILES["resources"]
        try:
            raw = self._read_json(resources_file)
        except FileNotFoundError:
            return
        old_prefix = f"{FILES_URL_PREFIX}{old_name}/"
        new_prefix = f"{FILES_URL_PREFIX}{directory.name}/"
        if not isinstance(raw, list):
            raise ValueError(f"{resources_file.name} does not hold a list")
        changed = 0
        for item in raw:
            if not isinstance(item, dict):
                continue
            url = item.get("url") or ""
            if item.get("type") == "file" and url.startswith(old_prefix):
                item["url"] = new_prefix + url[len(old_prefix):]
                changed += 1
        if changed:
            self._write_json(resources_file, raw)
            logger.info("Rewrote %d upload URL(s) for %s", changed, directory.name)
