"""Error taxonomy for the storage engine.

Every failure the engine reports is a :class:`StorageError` subclass tagged
with an :class:`ErrorKind`. Structured context lives in ``details``; callers
turn the error into a display string only at the outermost boundary.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    NOT_INITIALIZED = "not_initialized"
    NOT_FOUND = "not_found"
    CONSTRAINT_VIOLATION = "constraint_violation"
    GUARDED_OVERWRITE = "guarded_overwrite"
    IO_FAILURE = "io_failure"


class StorageError(Exception):
    """Base class for storage engine failures.

    Attributes:
        message: Human-readable description.
        kind: Category used by callers to decide how to react.
        details: Structured context (entity, id, field, ...).
    """

    kind: ErrorKind = ErrorKind.IO_FAILURE

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class NotInitializedError(StorageError):
    kind = ErrorKind.NOT_INITIALIZED

    def __init__(self) -> None:
        super().__init__("Database not initialized")


class NotFoundError(StorageError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity.capitalize()} '{entity_id}' not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class ConstraintViolationError(StorageError):
    """Foreign-key or uniqueness breach, message taken from SQLite verbatim."""

    kind = ErrorKind.CONSTRAINT_VIOLATION

    def __init__(
        self,
        message: str,
        entity: str | None = None,
        entity_id: str | None = None,
        field: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if entity:
            details["entity"] = entity
        if entity_id:
            details["id"] = entity_id
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.entity = entity
        self.entity_id = entity_id
        self.field = field


class GuardedOverwriteError(StorageError):
    """An empty editor state tried to replace a note that still has content."""

    kind = ErrorKind.GUARDED_OVERWRITE

    def __init__(self, note_id: str, title: str, existing_length: int) -> None:
        super().__init__(
            f"Blocked overwrite of note '{title}' ({existing_length} chars) "
            "with empty editor content",
            details={
                "entity": "note",
                "id": note_id,
                "field": "content",
                "existing_length": existing_length,
            },
        )
        self.note_id = note_id
        self.existing_length = existing_length


class StorageIOError(StorageError):
    kind = ErrorKind.IO_FAILURE

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, details={"path": path} if path else None)
        self.path = path
