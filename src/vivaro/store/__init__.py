"""Client store: JSON files in a folder per client.

Layout:
    <data_dir>/
    ├── acme-inc/                      # slug of the client name
    │   ├── client.json                # the client record
    │   ├── notes/<noteId>.json        # one file per meeting note
    │   ├── reminders.json             # list-shaped kinds: one array each
    │   ├── milestones.json
    │   ├── resources.json
    │   ├── resources/<upload>         # uploaded files behind file resources
    │   └── contacts.json
    └── clients.json.backup            # left behind by the legacy migration

A second client whose name slugs to ``acme-inc`` lands in ``acme-inc-1``.
"""

from vivaro.store.entity_store import EntityStore, folder_name

__all__ = ["EntityStore", "folder_name"]
