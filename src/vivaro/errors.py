"""Error taxonomy shared by the store, the folder index and the HTTP layer."""

from __future__ import annotations


class VivaroError(Exception):
    """Base class for all application errors."""


class NotFoundError(VivaroError, LookupError):
    """A client or sub-entity does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class ValidationError(VivaroError, ValueError):
    """A payload is missing required fields or carries invalid values."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class FolderNotEmptyError(ValidationError):
    """Raised when deleting a virtual folder that still holds real entities."""

    def __init__(self, path: str, count: int) -> None:
        super().__init__(f"Folder '{path}' is not empty ({count} item(s))", field="path")
        self.path = path
        self.count = count
