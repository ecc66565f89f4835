"""Vivaro orchestrator, the layer between HTTP routes and the entity store.

Responsibilities:
1. Validate payloads into typed records (ids and timestamps stamped here)
2. Lane Queue: serialize mutations per client so read-modify-write of
   list-shaped files cannot lose updates
3. Directory lock: client creates, renames and deletes are serialized with
   each other so slug collision checks cannot race
4. Run blocking file I/O in worker threads
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from vivaro.config import VivaroConfig
from vivaro.errors import NotFoundError, ValidationError
from vivaro.folders.index import FolderIndex
from vivaro.folders.tree import FolderContents, FolderNode
from vivaro.store.entity_store import EntityStore, ListKind
from vivaro.store.records import (
    Client,
    Contact,
    IdGenerator,
    MeetingNote,
    Milestone,
    Reminder,
    Resource,
    now_iso,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ITEM_TYPES: dict[str, Any] = {
    "reminders": Reminder,
    "milestones": Milestone,
    "contacts": Contact,
}

ITEM_NAMES = {
    "reminders": "reminder",
    "milestones": "milestone",
    "contacts": "contact",
    "resources": "resource",
}


class Vivaro:
    """Core orchestrator. Every API operation goes through here."""

    def __init__(self, config: VivaroConfig, store: EntityStore | None = None) -> None:
        self.config = config
        self.store = store or EntityStore(config.data_dir)
        self._ids = IdGenerator()
        self.folders: dict[str, FolderIndex] = {
            kind: FolderIndex(self.store, kind, self._ids) for kind in ("notes", "resources")
        }
        self._lane_locks: dict[str, asyncio.Lock] = {}  # per-client serialization
        self._directory_lock = asyncio.Lock()

    # ── Lane Queue (per-client serialization) ────────────────

    def _get_lane_lock(self, client_id: str) -> asyncio.Lock:
        if client_id not in self._lane_locks:
            self._lane_locks[client_id] = asyncio.Lock()
        return self._lane_locks[client_id]

    @asynccontextmanager
    async def _lane(self, client_id: str) -> AsyncIterator[None]:
        """Hold the client's lane lock; forget the lock if the client is unknown."""
        lock = self._get_lane_lock(client_id)
        try:
            async with lock:
                yield
        except NotFoundError as e:
            if e.kind == "client" and self._lane_locks.get(client_id) is lock:
                del self._lane_locks[client_id]
            raise

    async def _io(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(fn, *args)

    async def _require_client(self, client_id: str) -> Client:
        client = await self._io(self.store.read_client, client_id)
        if client is None:
            raise NotFoundError("client", client_id)
        return client

    # ── Clients ───────────────────────────────────────────────

    async def list_clients(self) -> list[Client]:
        return await self._io(self.store.list_clients)

    async def get_client(self, client_id: str) -> Client:
        return await self._require_client(client_id)

    async def create_client(self, payload: dict) -> Client:
        client = Client.from_payload(payload, id=self._ids.next(), created_at=now_iso())
        async with self._directory_lock:
            directory = await self._io(self.store.write_client, client)
        logger.info("Created client %s (%s) in %s", client.id, client.name, directory.name)
        return client

    async def _rewrite_client(self, client_id: str, change: Callable[[Client], Client]) -> Client:
        async with self._directory_lock, self._lane(client_id):
            client = change(await self._require_client(client_id))
            await self._io(self.store.write_client, client)
            return client

    async def update_client(self, client_id: str, payload: dict) -> Client:
        return await self._rewrite_client(client_id, lambda c: c.updated(payload))

    async def archive_client(self, client_id: str) -> Client:
        return await self._rewrite_client(client_id, lambda c: c.archived(now_iso()))

    async def unarchive_client(self, client_id: str) -> Client:
        return await self._rewrite_client(client_id, lambda c: c.unarchived())

    async def delete_client(self, client_id: str) -> None:
        """Idempotent: deleting an unknown or already-removed client succeeds."""
        async with self._directory_lock, self._get_lane_lock(client_id):
            if not await self._io(self.store.delete_client, client_id):
                logger.info("Client %s already absent", client_id)
        self._lane_locks.pop(client_id, None)

    # ── Meeting notes ─────────────────────────────────────────

    async def list_notes(self, client_id: str) -> list[MeetingNote]:
        """Real notes only, most recent first."""
        await self._require_client(client_id)
        entries = await self._io(self.store.list_notes, client_id)
        notes = [e for e in entries if not e.is_marker]
        notes.sort(key=lambda n: n.sort_date, reverse=True)
        return notes

    async def create_note(self, client_id: str, payload: dict) -> MeetingNote:
        note = MeetingNote.from_payload(payload, id=self._ids.next(), created_at=now_iso())
        async with self._lane(client_id):
            await self._require_client(client_id)
            await self._io(self.store.write_note, client_id, note)
        return note

    async def _require_note(self, client_id: str, note_id: str) -> MeetingNote:
        await self._require_client(client_id)
        note = await self._io(self.store.read_note, client_id, note_id)
        if note is None or note.is_marker:
            raise NotFoundError("meeting note", note_id)
        return note

    async def update_note(self, client_id: str, note_id: str, payload: dict) -> MeetingNote:
        async with self._lane(client_id):
            note = (await self._require_note(client_id, note_id)).updated(payload)
            await self._io(self.store.write_note, client_id, note)
            return note

    async def delete_note(self, client_id: str, note_id: str) -> None:
        async with self._lane(client_id):
            await self._require_note(client_id, note_id)
            await self._io(self.store.delete_note, client_id, note_id)

    # ── Reminders, milestones, contacts ───────────────────────

    @staticmethod
    def _item_type(kind: str) -> Any:
        if kind not in ITEM_TYPES:
            raise ValueError(f"Unknown item kind: {kind}")
        return ITEM_TYPES[kind]

    async def list_items(self, client_id: str, kind: ListKind) -> list[Any]:
        self._item_type(kind)
        await self._require_client(client_id)
        return await self._io(self.store.read_list, client_id, kind)

    async def create_item(self, client_id: str, kind: ListKind, payload: dict) -> Any:
        item = self._item_type(kind).from_payload(
            payload, id=self._ids.next(), created_at=now_iso()
        )
        async with self._lane(client_id):
            await self._require_client(client_id)
            items = await self._io(self.store.read_list, client_id, kind)
            items.append(item)
            await self._io(self.store.write_list, client_id, kind, items)
        return item

    async def update_item(self, client_id: str, kind: ListKind, item_id: str, payload: dict) -> Any:
        self._item_type(kind)
        async with self._lane(client_id):
            await self._require_client(client_id)
            items = await self._io(self.store.read_list, client_id, kind)
            for i, item in enumerate(items):
                if item.id == item_id:
                    items[i] = item.updated(payload)
                    await self._io(self.store.write_list, client_id, kind, items)
                    return items[i]
        raise NotFoundError(ITEM_NAMES[kind], item_id)

    async def delete_item(self, client_id: str, kind: ListKind, item_id: str) -> None:
        self._item_type(kind)
        async with self._lane(client_id):
            await self._require_client(client_id)
            items = await self._io(self.store.read_list, client_id, kind)
            kept = [item for item in items if item.id != item_id]
            if len(kept) == len(items):
                raise NotFoundError(ITEM_NAMES[kind], item_id)
            await self._io(self.store.write_list, client_id, kind, kept)

    # ── Resources ─────────────────────────────────────────────

    async def list_resources(self, client_id: str) -> list[Resource]:
        await self._require_client(client_id)
        entries = await self._io(self.store.read_list, client_id, "resources")
        return [e for e in entries if not e.is_marker]

    async def _append_resource(self, client_id: str, resource: Resource) -> Resource:
        entries = await self._io(self.store.read_list, client_id, "resources")
        entries.append(resource)
        await self._io(self.store.write_list, client_id, "resources", entries)
        return resource

    async def create_link(self, client_id: str, payload: dict) -> Resource:
        resource = Resource.link_from_payload(payload, id=self._ids.next(), created_at=now_iso())
        async with self._lane(client_id):
            await self._require_client(client_id)
            return await self._append_resource(client_id, resource)

    async def upload_file(
        self,
        client_id: str,
        file_name: str,
        data: bytes,
        *,
        title: str = "",
        description: str = "",
        folder: str = "",
    ) -> Resource:
        if not file_name:
            raise ValidationError("No file uploaded", field="file")
        async with self._lane(client_id):
            await self._require_client(client_id)
            _, url = await self._io(self.store.save_upload, client_id, file_name, data)
            resource = Resource.file_from_upload(
                id=self._ids.next(),
                created_at=now_iso(),
                file_name=file_name,
                file_size=len(data),
                url=url,
                title=title,
                description=description,
                folder=folder,
            )
            return await self._append_resource(client_id, resource)

    async def update_resource(self, client_id: str, resource_id: str, payload: dict) -> Resource:
        async with self._lane(client_id):
            await self._require_client(client_id)
            entries = await self._io(self.store.read_list, client_id, "resources")
            for i, entry in enumerate(entries):
                if entry.id == resource_id and not entry.is_marker:
                    entries[i] = entry.updated(payload)
                    await self._io(self.store.write_list, client_id, "resources", entries)
                    return entries[i]
        raise NotFoundError("resource", resource_id)

    async def delete_resource(self, client_id: str, resource_id: str) -> None:
        """Drop the record; a backing file that cannot be removed is only logged."""
        async with self._lane(client_id):
            await self._require_client(client_id)
            entries = await self._io(self.store.read_list, client_id, "resources")
            target = next(
                (e for e in entries if e.id == resource_id and not e.is_marker), None
            )
            if target is None:
                raise NotFoundError("resource", resource_id)
            if target.type == "file" and target.url:
                await self._io(self.store.remove_upload, target.url)
            kept = [e for e in entries if e.id != resource_id]
            await self._io(self.store.write_list, client_id, "resources", kept)

    # ── Virtual folders ───────────────────────────────────────

    def _folder_index(self, kind: str) -> FolderIndex:
        index = self.folders.get(kind)
        if index is None:
            raise ValueError(f"Unknown folder kind: {kind}")
        return index

    async def folder_tree(self, client_id: str, kind: str) -> FolderNode:
        return await self._io(self._folder_index(kind).tree, client_id)

    async def folder_contents(self, client_id: str, kind: str, path: str | None) -> FolderContents:
        return await self._io(self._folder_index(kind).contents, client_id, path)

    async def create_folder(self, client_id: str, kind: str, path: str | None) -> list[Any]:
        index = self._folder_index(kind)
        async with self._lane(client_id):
            return await self._io(index.create_folder, client_id, path)

    async def delete_folder(self, client_id: str, kind: str, path: str | None) -> int:
        index = self._folder_index(kind)
        async with self._lane(client_id):
            return await self._io(index.delete_folder, client_id, path)

    async def move_folder(
        self, client_id: str, kind: str, path: str | None, new_path: str | None
    ) -> int:
        index = self._folder_index(kind)
        async with self._lane(client_id):
            return await self._io(index.move_folder, client_id, path, new_path)

    async def move_entity(self, client_id: str, kind: str, entity_id: str, path: str | None) -> Any:
        index = self._folder_index(kind)
        async with self._lane(client_id):
            return await self._io(index.move_entity, client_id, entity_id, path)
