"""One-time upgrade from the flat ``clients.json`` file to the folder layout."""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from vivaro.store.entity_store import CLIENT_FILE, NOTES_DIR, EntityStore

logger = logging.getLogger(__name__)

LEGACY_FILE = "clients.json"
BACKUP_SUFFIX = ".backup"


def _write_note(store: EntityStore, directory: Path, note: object) -> None:
    note_id = str(note.get("id", "")) if isinstance(note, dict) else ""
    path = store._note_path(directory, note_id)
    if path is None:
        logger.warning("Skipping legacy note without a usable id in %s", directory.name)
        return
    store._write_json(path, note)


def migrate_legacy_data(store: EntityStore) -> int:
    """Split a legacy ``clients.json`` into per-client directories.

    Each client's ``meetingNotes`` array becomes one file per note; the rest
    of the record becomes ``client.json``. The original is then copied to
    ``clients.json.backup``, whose presence stops the migration from ever
    running again. Returns the number of clients migrated. Errors are logged
    and never abort startup.
    """
    legacy = store.root / LEGACY_FILE
    backup = legacy.with_name(legacy.name + BACKUP_SUFFIX)
    if not legacy.is_file() or backup.exists():
        return 0

    try:
        data = json.loads(legacy.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Cannot read legacy %s: %s", legacy, e)
        return 0
    if not isinstance(data, list) or not data:
        return 0

    logger.info("Migrating %d client(s) from %s to folder layout", len(data), legacy.name)
    migrated = 0
    try:
        for raw in data:
            if not isinstance(raw, dict):
                continue
            client = dict(raw)
            notes = client.pop("meetingNotes", None) or []
            # A rerun after a partial failure rewrites clients already migrated.
            directory = (
                store.client_directory(str(client["id"])) if client.get("id") else None
            ) or store.unique_client_directory(client.get("name"))
            (directory / NOTES_DIR).mkdir(parents=True, exist_ok=True)
            store._write_json(directory / CLIENT_FILE, client)
            for note in notes:
                _write_note(store, directory, note)
            migrated += 1

        shutil.copyfile(legacy, backup)
    except (OSError, TypeError) as e:
        logger.error("Legacy migration failed after %d client(s): %s", migrated, e)
        return migrated

    logger.info("Migration complete, old file backed up to %s", backup)
    return migrated
