"""Tests for the Vivaro core orchestrator."""

import asyncio
import pytest
from pathlib import Path

from vivaro.config import VivaroConfig
from vivaro.core import Vivaro
from vivaro.errors import FolderNotEmptyError, NotFoundError, ValidationError


@pytest.fixture
def config(tmp_path: Path) -> VivaroConfig:
    return VivaroConfig(data_dir=tmp_path / "data")


@pytest.fixture
def vivaro(config: VivaroConfig) -> Vivaro:
    return Vivaro(config)


class TestClients:
    @pytest.mark.asyncio
    async def test_create_stamps_id_and_timestamp(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme Inc.", "id": "ignored"})
        assert client.id != "ignored"
        assert client.id.isdigit()
        assert client.created_at.endswith("Z")
        assert client.status == "active"
        assert (vivaro.store.root / "acme-inc" / "client.json").is_file()

    @pytest.mark.asyncio
    async def test_create_requires_name(self, vivaro: Vivaro):
        with pytest.raises(ValidationError):
            await vivaro.create_client({"notes": "no name"})
        assert await vivaro.list_clients() == []

    @pytest.mark.asyncio
    async def test_rename_scenario(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme Inc."})
        await vivaro.create_note(client.id, {"title": "Kickoff"})

        renamed = await vivaro.update_client(client.id, {"name": "Acme Incorporated"})

        root = vivaro.store.root
        assert renamed.id == client.id
        assert not (root / "acme-inc").exists()
        assert (root / "acme-incorporated" / "client.json").is_file()
        notes = await vivaro.list_notes(client.id)
        assert [n.title for n in notes] == ["Kickoff"]

    @pytest.mark.asyncio
    async def test_archive_and_unarchive(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        archived = await vivaro.archive_client(client.id)
        assert archived.status == "archived"
        assert archived.archived_at is not None
        assert (await vivaro.get_client(client.id)).status == "archived"

        restored = await vivaro.unarchive_client(client.id)
        assert restored.status == "active"
        assert restored.archived_at is None

    @pytest.mark.asyncio
    async def test_delete(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        await vivaro.delete_client(client.id)
        assert await vivaro.list_clients() == []
        assert vivaro.store.read_client(client.id) is None
        with pytest.raises(NotFoundError):
            await vivaro.get_client(client.id)
        await vivaro.delete_client(client.id)  # already absent

    @pytest.mark.asyncio
    async def test_unknown_client_leaves_no_lane_lock(self, vivaro: Vivaro):
        with pytest.raises(NotFoundError):
            await vivaro.create_note("nope", {"title": "x"})
        with pytest.raises(NotFoundError):
            await vivaro.update_client("nope", {"name": "x"})
        with pytest.raises(NotFoundError):
            await vivaro.create_folder("nope", "notes", "a")
        assert vivaro._lane_locks == {}

        client = await vivaro.create_client({"name": "Acme"})
        with pytest.raises(NotFoundError):
            await vivaro.delete_note(client.id, "missing")
        assert list(vivaro._lane_locks) == [client.id]

    @pytest.mark.asyncio
    async def test_concurrent_creates_with_same_name(self, vivaro: Vivaro):
        clients = await asyncio.gather(*(vivaro.create_client({"name": "Acme"}) for _ in range(5)))
        dirs = sorted(p.name for p in vivaro.store.root.iterdir())
        assert dirs == ["acme", "acme-1", "acme-2", "acme-3", "acme-4"]
        assert len({c.id for c in clients}) == 5


class TestNotes:
    @pytest.mark.asyncio
    async def test_listing_sorted_and_markers_hidden(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        await vivaro.create_note(client.id, {"title": "Old", "date": "2023-05-01"})
        await vivaro.create_note(client.id, {"title": "New", "date": "2024-05-01"})
        await vivaro.create_folder(client.id, "notes", "archive")

        notes = await vivaro.list_notes(client.id)
        assert [n.title for n in notes] == ["New", "Old"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        note = await vivaro.create_note(client.id, {"title": "Draft", "content": "<p>x</p>"})

        updated = await vivaro.update_note(client.id, note.id, {"title": "Final"})
        assert updated.id == note.id
        assert updated.content == "<p>x</p>"

        await vivaro.delete_note(client.id, note.id)
        with pytest.raises(NotFoundError):
            await vivaro.delete_note(client.id, note.id)

    @pytest.mark.asyncio
    async def test_sentinel_title_cannot_hide_a_note(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        with pytest.raises(ValidationError):
            await vivaro.create_note(client.id, {"title": ".folder", "content": "real text"})
        note = await vivaro.create_note(client.id, {"title": "Plan", "folder": "q1"})
        with pytest.raises(ValidationError):
            await vivaro.update_note(client.id, note.id, {"title": ".folder"})

        assert [n.id for n in await vivaro.list_notes(client.id)] == [note.id]
        with pytest.raises(FolderNotEmptyError):
            await vivaro.delete_folder(client.id, "notes", "q1")

    @pytest.mark.asyncio
    async def test_unknown_client(self, vivaro: Vivaro):
        with pytest.raises(NotFoundError):
            await vivaro.create_note("nope", {"title": "x"})
        with pytest.raises(NotFoundError):
            await vivaro.list_notes("nope")


class TestItems:
    @pytest.mark.asyncio
    async def test_reminder_lifecycle(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        reminder = await vivaro.create_item(client.id, "reminders", {"text": "Call", "priority": "high"})

        done = await vivaro.update_item(client.id, "reminders", reminder.id, {"completed": True})
        assert done.completed is True
        assert done.priority == "high"

        await vivaro.delete_item(client.id, "reminders", reminder.id)
        assert await vivaro.list_items(client.id, "reminders") == []
        with pytest.raises(NotFoundError):
            await vivaro.delete_item(client.id, "reminders", reminder.id)

    @pytest.mark.asyncio
    async def test_validation(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        with pytest.raises(ValidationError):
            await vivaro.create_item(client.id, "milestones", {"description": "no title"})
        with pytest.raises(NotFoundError):
            await vivaro.update_item(client.id, "contacts", "missing", {"name": "x"})

    @pytest.mark.asyncio
    async def test_concurrent_appends_not_lost(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        await asyncio.gather(
            *(vivaro.create_item(client.id, "contacts", {"name": f"Person {i}"}) for i in range(20))
        )
        contacts = await vivaro.list_items(client.id, "contacts")
        assert len(contacts) == 20


class TestResources:
    @pytest.mark.asyncio
    async def test_upload_and_delete_removes_file(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        resource = await vivaro.upload_file(
            client.id, "deck.pdf", b"%PDF-1.4", title="Pitch", folder="sales"
        )
        assert resource.type == "file"
        assert resource.file_size == 8
        path = vivaro.store.upload_path(resource.url)
        assert path.is_file()

        await vivaro.delete_resource(client.id, resource.id)
        assert not path.exists()
        assert await vivaro.list_resources(client.id) == []

    @pytest.mark.asyncio
    async def test_delete_survives_missing_file(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        resource = await vivaro.upload_file(client.id, "a.txt", b"a")
        vivaro.store.upload_path(resource.url).unlink()
        await vivaro.delete_resource(client.id, resource.id)
        assert await vivaro.list_resources(client.id) == []

    @pytest.mark.asyncio
    async def test_link_update(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        link = await vivaro.create_link(client.id, {"title": "Site", "url": "https://a.example"})
        updated = await vivaro.update_resource(client.id, link.id, {"url": "https://b.example"})
        assert updated.url == "https://b.example"
        with pytest.raises(NotFoundError):
            await vivaro.update_resource(client.id, "missing", {"title": "x"})

    @pytest.mark.asyncio
    async def test_upload_named_like_sentinel_stays_listed(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        resource = await vivaro.upload_file(client.id, ".folder", b"x")
        assert [r.id for r in await vivaro.list_resources(client.id)] == [resource.id]
        await vivaro.delete_resource(client.id, resource.id)

    @pytest.mark.asyncio
    async def test_upload_requires_file_name(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        with pytest.raises(ValidationError):
            await vivaro.upload_file(client.id, "", b"")


class TestFolders:
    @pytest.mark.asyncio
    async def test_delete_gate_and_move(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        note = await vivaro.create_note(client.id, {"title": "Plan", "folder": "q1"})

        with pytest.raises(FolderNotEmptyError):
            await vivaro.delete_folder(client.id, "notes", "q1")

        await vivaro.move_entity(client.id, "notes", note.id, "q2/planning")
        assert await vivaro.delete_folder(client.id, "notes", "q1") == 0

        tree = await vivaro.folder_tree(client.id, "notes")
        assert tree.subfolders == ["q2"]
        contents = await vivaro.folder_contents(client.id, "notes", "q2/planning")
        assert [e.id for e in contents.entities] == [note.id]

    @pytest.mark.asyncio
    async def test_move_folder(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        await vivaro.create_folder(client.id, "resources", "docs/legal")
        moved = await vivaro.move_folder(client.id, "resources", "docs", "archive")
        assert moved == 2
        tree = await vivaro.folder_tree(client.id, "resources")
        assert tree.subfolders == ["archive"]

    @pytest.mark.asyncio
    async def test_unknown_kind(self, vivaro: Vivaro):
        client = await vivaro.create_client({"name": "Acme"})
        with pytest.raises(ValueError):
            await vivaro.create_folder(client.id, "reminders", "a")
