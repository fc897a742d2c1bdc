from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from sync_store.models import DirectoryList, FileList, Group
from sync_store.services.errors import ReferenceKind, ReferenceNotFoundError


@dataclass
class ReferenceResolver:
    """Request scoped external id <-> surrogate key maps.

    Imports fill the forward maps as rows are written. Exports build the
    resolver from stored rows and use the reverse lookups. Repository keys
    resolved by :class:`RepoNameResolver` are memoized here as well.
    """

    groups: dict[str, int] = field(default_factory=dict)
    file_lists: dict[str, int] = field(default_factory=dict)
    directory_lists: dict[str, int] = field(default_factory=dict)
    organizations: dict[str, int] = field(default_factory=dict)
    repos: dict[str, int] = field(default_factory=dict)
    _reverse: dict[ReferenceKind, dict[int, str]] | None = field(default=None, repr=False)

    @classmethod
    def from_database(cls, db: Session, config_id: int) -> "ReferenceResolver":
        resolver = cls()
        for kind, model in (
            (ReferenceKind.FILE_LIST, FileList),
            (ReferenceKind.DIRECTORY_LIST, DirectoryList),
            (ReferenceKind.GROUP, Group),
        ):
            rows = db.execute(
                select(model.external_id, model.id).where(
                    model.config_id == config_id,
                    model.deleted_at.is_(None),
                )
            ).all()
            for external_id, internal_id in rows:
                resolver.record(kind, external_id, internal_id)
        return resolver

    def _forward(self, kind: ReferenceKind) -> dict[str, int]:
        if kind is ReferenceKind.GROUP:
            return self.groups
        if kind is ReferenceKind.FILE_LIST:
            return self.file_lists
        return self.directory_lists

    def record(self, kind: ReferenceKind, external_id: str, internal_id: int) -> None:
        self._forward(kind)[external_id] = internal_id
        self._reverse = None

    def contains(self, kind: ReferenceKind, external_id: str) -> bool:
        return external_id in self._forward(kind)

    def resolve(self, kind: ReferenceKind, external_id: str) -> int:
        try:
            return self._forward(kind)[external_id]
        except KeyError:
            raise ReferenceNotFoundError(kind, external_id) from None

    def reverse(self, kind: ReferenceKind, internal_id: int) -> str | None:
        if self._reverse is None:
            self._reverse = {
                ref_kind: {value: key for key, value in self._forward(ref_kind).items()}
                for ref_kind in ReferenceKind
            }
        return self._reverse[kind].get(internal_id)
