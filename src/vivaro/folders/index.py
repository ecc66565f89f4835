"""Folder operations over one entity kind (notes or resources) of a client.

Every operation reloads the client's flat entity list, works on it with the
pure helpers in ``vivaro.folders.tree`` and writes back only what changed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any, Literal

from vivaro.errors import FolderNotEmptyError, NotFoundError, ValidationError
from vivaro.folders.tree import (
    FolderContents,
    FolderNode,
    build_tree,
    folder_contents,
    in_subtree,
    is_folder_empty,
    missing_prefixes,
    normalize_path,
    relocate,
)
from vivaro.store.entity_store import EntityStore
from vivaro.store.records import FolderMarker, IdGenerator, now_iso

logger = logging.getLogger(__name__)

FolderKind = Literal["notes", "resources"]


def _note_sort_key(entry: Any) -> Any:
    return entry.sort_date


def _resource_sort_key(entry: Any) -> Any:
    return entry.created_at


class FolderIndex:
    """Virtual folder hierarchy of a client's notes or resources."""

    def __init__(
        self,
        store: EntityStore,
        kind: FolderKind,
        ids: IdGenerator | None = None,
    ) -> None:
        if kind not in ("notes", "resources"):
            raise ValueError(f"Unknown folder kind: {kind}")
        self.store = store
        self.kind = kind
        self._ids = ids or IdGenerator()

    # ── Load / save ───────────────────────────────────────────

    def _require_client(self, client_id: str) -> None:
        if self.store.client_directory(client_id) is None:
            raise NotFoundError("client", client_id)

    def entries(self, client_id: str) -> list[Any]:
        """Flat list of entities and folder markers."""
        if self.kind == "notes":
            return self.store.list_notes(client_id)
        return self.store.read_list(client_id, "resources")

    def _save(self, client_id: str, entries: list[Any], changed: list[Any]) -> None:
        """Persist ``changed`` entries (notes) or the whole list (resources)."""
        if self.kind == "notes":
            for entry in changed:
                self.store.write_note(client_id, entry)
        else:
            self.store.write_list(client_id, "resources", entries)

    def _remove(self, client_id: str, entries: list[Any], doomed: list[Any]) -> None:
        if self.kind == "notes":
            self.store.delete_notes(client_id, [e.id for e in doomed])
        else:
            doomed_ids = {e.id for e in doomed}
            kept = [e for e in entries if e.id not in doomed_ids]
            self.store.write_list(client_id, "resources", kept)

    @property
    def _sort(self) -> tuple[Callable[[Any], Any], bool]:
        if self.kind == "notes":
            return _note_sort_key, True
        return _resource_sort_key, False

    # ── Queries ───────────────────────────────────────────────

    def tree(self, client_id: str) -> FolderNode:
        self._require_client(client_id)
        key, reverse = self._sort
        return build_tree(self.entries(client_id), sort_key=key, reverse=reverse)

    def contents(self, client_id: str, path: str | None) -> FolderContents:
        return folder_contents(self.tree(client_id), path)

    def is_empty(self, client_id: str, path: str | None) -> bool:
        self._require_client(client_id)
        return is_folder_empty(self.entries(client_id), path)

    # ── Mutations ─────────────────────────────────────────────

    def create_folder(self, client_id: str, path: str | None) -> list[FolderMarker]:
        """Pin ``path`` and each of its ancestors that nothing references yet.

        Idempotent: re-creating an existing folder writes nothing.
        """
        self._require_client(client_id)
        normalized = normalize_path(path)
        if not normalized:
            raise ValidationError("Folder path is required", field="path")

        entries = self.entries(client_id)
        created_at = now_iso()
        markers = [
            FolderMarker(id=self._ids.next(), folder=prefix, created_at=created_at)
            for prefix in missing_prefixes(entries, normalized)
        ]
        if markers:
            self._save(client_id, entries + markers, markers)
            logger.info("Created %s folder %r for client %s", self.kind, normalized, client_id)
        return markers

    def delete_folder(self, client_id: str, path: str | None) -> int:
        """Delete an empty folder (its markers); returns how many records went."""
        self._require_client(client_id)
        normalized = normalize_path(path)
        if not normalized:
            raise ValidationError("The root folder cannot be deleted", field="path")

        entries = self.entries(client_id)
        inside = [e for e in entries if in_subtree(e.folder, normalized)]
        real = [e for e in inside if not e.is_marker]
        if real:
            raise FolderNotEmptyError(normalized, len(real))

        if inside:
            self._remove(client_id, entries, inside)
            logger.info("Deleted %s folder %r for client %s", self.kind, normalized, client_id)
        return len(inside)

    def move_entity(self, client_id: str, entity_id: str, path: str | None) -> Any:
        """Reassign an entity's folder; the destination need not exist yet."""
        self._require_client(client_id)
        entries = self.entries(client_id)
        for i, entry in enumerate(entries):
            if entry.id == entity_id and not entry.is_marker:
                moved = replace(entry, folder=normalize_path(path))
                entries[i] = moved
                self._save(client_id, entries, [moved])
                return moved
        raise NotFoundError(self.kind.rstrip("s"), entity_id)

    def move_folder(self, client_id: str, path: str | None, new_path: str | None) -> int:
        """Re-parent a whole folder subtree; returns how many records moved."""
        self._require_client(client_id)
        source = normalize_path(path)
        target = normalize_path(new_path)
        if not source:
            raise ValidationError("The root folder cannot be moved", field="from")
        if not target:
            raise ValidationError("Destination folder path is required", field="to")
        if in_subtree(target, source):
            raise ValidationError("A folder cannot be moved into itself", field="to")

        entries = self.entries(client_id)
        changed: list[Any] = []
        for i, entry in enumerate(entries):
            if in_subtree(entry.folder, source):
                entries[i] = replace(entry, folder=relocate(entry.folder, source, target))
                changed.append(entries[i])
        if not changed:
            raise NotFoundError("folder", source)

        self._save(client_id, entries, changed)
        logger.info("Moved %s folder %r -> %r for client %s", self.kind, source, target, client_id)
        return len(changed)
