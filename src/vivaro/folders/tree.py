"""Virtual folder tree built from a flat entity list.

Folders are not stored anywhere: a folder exists while at least one entry
(a real entity or a folder marker) sits at its path or below it. The tree is
rebuilt from scratch on every query, so there is no persisted structure to
keep in sync with the entity files.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol

SEPARATOR = "/"


class FolderEntry(Protocol):
    """Anything with an id, a virtual folder path and a marker flag."""

    id: str
    folder: str
    is_marker: bool

    def to_dict(self) -> dict: ...


# ── Paths ─────────────────────────────────────────────────────


def split_path(path: str | None) -> list[str]:
    """Split on ``/`` and drop empty segments."""
    if not path:
        return []
    return [segment.strip() for segment in path.split(SEPARATOR) if segment.strip()]


def normalize_path(path: str | None) -> str:
    return SEPARATOR.join(split_path(path))


def ancestor_prefixes(path: str | None) -> list[str]:
    """``"a/b/c"`` -> ``["a", "a/b", "a/b/c"]``."""
    segments = split_path(path)
    return [SEPARATOR.join(segments[: i + 1]) for i in range(len(segments))]


def in_subtree(folder: str | None, path: str | None) -> bool:
    """True if ``folder`` equals ``path`` or lies anywhere below it."""
    target = normalize_path(path)
    current = normalize_path(folder)
    if not target:
        return True
    return current == target or current.startswith(target + SEPARATOR)


def relocate(folder: str | None, path: str, new_path: str) -> str:
    """Rewrite the ``path`` prefix of ``folder`` to ``new_path``."""
    current = normalize_path(folder)
    source = normalize_path(path)
    target = normalize_path(new_path)
    if current == source:
        return target
    suffix = current[len(source) + 1 :]
    return SEPARATOR.join(p for p in (target, suffix) if p)


# ── Tree ──────────────────────────────────────────────────────


@dataclass
class FolderNode:
    name: str
    path: str
    entries: list[Any] = field(default_factory=list)
    children: dict[str, FolderNode] = field(default_factory=dict)

    @property
    def entities(self) -> list[Any]:
        """Entries at this node, folder markers excluded."""
        return [e for e in self.entries if not e.is_marker]

    @property
    def subfolders(self) -> list[str]:
        return list(self.children)

    def walk(self) -> Iterator[FolderNode]:
        yield self
        for child in self.children.values():
            yield from child.walk()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "count": count_entities(self),
            "entities": [e.to_dict() for e in self.entities],
            "subfolders": [child.to_dict() for child in self.children.values()],
        }


@dataclass
class FolderContents:
    path: str
    entities: list[Any] = field(default_factory=list)
    subfolders: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "entities": [e.to_dict() for e in self.entities],
            "subfolders": self.subfolders,
        }


def _sort(node: FolderNode, sort_key: Callable[[Any], Any] | None, reverse: bool) -> None:
    node.children = dict(
        sorted(node.children.items(), key=lambda item: (item[0].lower(), item[0]))
    )
    if sort_key is not None:
        node.entries.sort(key=sort_key, reverse=reverse)
    for child in node.children.values():
        _sort(child, sort_key, reverse)


def build_tree(
    entries: Iterable[FolderEntry],
    sort_key: Callable[[Any], Any] | None = None,
    reverse: bool = False,
) -> FolderNode:
    """Group entries by their folder path into nested nodes.

    Intermediate nodes are created for every prefix. Children are sorted by
    name at every level; entries inside a node follow ``sort_key``.
    """
    root = FolderNode(name="", path="")
    for entry in entries:
        node = root
        for prefix in ancestor_prefixes(entry.folder):
            name = prefix.rsplit(SEPARATOR, 1)[-1]
            if name not in node.children:
                node.children[name] = FolderNode(name=name, path=prefix)
            node = node.children[name]
        node.entries.append(entry)
    _sort(root, sort_key, reverse)
    return root


def find_node(tree: FolderNode, path: str | None) -> FolderNode | None:
    node = tree
    for segment in split_path(path):
        node = node.children.get(segment)
        if node is None:
            return None
    return node


def folder_contents(tree: FolderNode, path: str | None) -> FolderContents:
    """Real entities directly at ``path`` plus immediate subfolder names.

    An unknown path yields empty contents rather than an error.
    """
    normalized = normalize_path(path)
    node = find_node(tree, normalized)
    if node is None:
        return FolderContents(path=normalized)
    return FolderContents(path=normalized, entities=node.entities, subfolders=node.subfolders)


def count_entities(node: FolderNode) -> int:
    return sum(len(n.entities) for n in node.walk())


# ── Flat-list queries ─────────────────────────────────────────


def all_folder_paths(entries: Iterable[FolderEntry]) -> set[str]:
    """Every folder path in use, including each path's ancestors."""
    paths: set[str] = set()
    for entry in entries:
        paths.update(ancestor_prefixes(entry.folder))
    return paths


def missing_prefixes(entries: Iterable[FolderEntry], path: str | None) -> list[str]:
    """Prefixes of ``path`` (shallowest first) that no entry establishes yet."""
    existing = all_folder_paths(entries)
    return [prefix for prefix in ancestor_prefixes(path) if prefix not in existing]


def is_folder_empty(entries: Iterable[FolderEntry], path: str | None) -> bool:
    """True when no real entity sits at ``path`` or anywhere below it."""
    return not any(
        not entry.is_marker and in_subtree(entry.folder, path) for entry in entries
    )
