from __future__ import annotations

from enum import Enum


class ReferenceKind(str, Enum):
    GROUP = "group"
    FILE_LIST = "file_list"
    DIRECTORY_LIST = "directory_list"


class SyncStoreError(Exception):
    """Base class for every error raised by the sync configuration store."""


class RecordNotFoundError(SyncStoreError):
    """Raised when a requested external id has no stored row."""


class ReferenceNotFoundError(SyncStoreError):
    """Raised when a dependency or list reference does not resolve."""

    def __init__(self, kind: ReferenceKind, external_id: str, detail: str | None = None):
        self.kind = kind
        self.external_id = external_id
        message = f"{kind.value.replace('_', ' ')} {external_id!r} not found"
        if detail:
            message = f"{detail}: {message}"
        super().__init__(message)


class CircularDependencyError(SyncStoreError):
    """Raised when group dependencies form a cycle."""


class InvalidRepoFormatError(SyncStoreError):
    """Raised when a repository reference is not of the form 'org/repo'."""


class ValidationFailedError(SyncStoreError):
    """Raised when a field level rule is violated before a row is written."""


class ImportFailedError(SyncStoreError):
    """Wraps a storage failure raised while importing a document."""

    def __init__(self, operation: str, entity: str, external_id: str | None = None):
        self.operation = operation
        self.entity = entity
        self.external_id = external_id
        subject = f"{entity} {external_id!r}" if external_id is not None else entity
        super().__init__(f"import failed: could not {operation} {subject}")


class ExportFailedError(SyncStoreError):
    """Wraps a storage failure raised while exporting a document."""
