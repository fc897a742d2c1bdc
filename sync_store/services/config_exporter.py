from __future__ import annotations

import logging
from collections import defaultdict
from operator import attrgetter
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from sync_store.config import Settings, get_settings
from sync_store.models import (
    DirectoryList,
    DirectoryMapping,
    FileList,
    FileMapping,
    Group,
    GroupDefault,
    GroupGlobal,
    OwnerType,
    Source,
    SyncConfig,
    Target,
    TargetDirectoryListRef,
    TargetFileListRef,
    Transform,
)
from sync_store.schemas import (
    DefaultsDocument,
    DirectoryListDocument,
    DirectoryMappingDocument,
    FileListDocument,
    FileMappingDocument,
    GlobalSettingsDocument,
    GroupDocument,
    ModuleConfigDocument,
    SourceDocument,
    SyncConfigDocument,
    TargetDocument,
    TransformDocument,
)
from sync_store.services.errors import (
    ExportFailedError,
    RecordNotFoundError,
    ReferenceKind,
    SyncStoreError,
)
from sync_store.services.reference_resolver import ReferenceResolver

logger = logging.getLogger(__name__)

_by_position = attrgetter("position")


def _live(rows: Iterable) -> list:
    return sorted((row for row in rows if row.deleted_at is None), key=_by_position)


def _group_loader_options():
    return (
        selectinload(Group.source).selectinload(Source.repo),
        selectinload(Group.global_settings),
        selectinload(Group.defaults),
        selectinload(Group.dependencies),
        selectinload(Group.targets).selectinload(Target.repo),
        selectinload(Group.targets).selectinload(Target.file_list_refs),
        selectinload(Group.targets).selectinload(Target.directory_list_refs),
    )


class _OwnedRows:
    """Mappings and transforms of a set of owners, bucketed by owner id."""

    def __init__(self, db: Session, owner_type: OwnerType, owner_ids: Sequence[int]):
        self.files: dict[int, list[FileMapping]] = defaultdict(list)
        self.directories: dict[int, list[DirectoryMapping]] = defaultdict(list)
        self.transforms: dict[int, Transform] = {}
        self.directory_transforms: dict[int, Transform] = {}
        if not owner_ids:
            return

        files = db.execute(
            select(FileMapping)
            .where(
                FileMapping.owner_type == owner_type.value,
                FileMapping.owner_id.in_(owner_ids),
                FileMapping.deleted_at.is_(None),
            )
            .order_by(FileMapping.owner_id, FileMapping.position)
        ).scalars()
        for mapping in files:
            self.files[mapping.owner_id].append(mapping)

        directories = db.execute(
            select(DirectoryMapping)
            .where(
                DirectoryMapping.owner_type == owner_type.value,
                DirectoryMapping.owner_id.in_(owner_ids),
                DirectoryMapping.deleted_at.is_(None),
            )
            .order_by(DirectoryMapping.owner_id, DirectoryMapping.position)
        ).scalars()
        directory_ids = []
        for mapping in directories:
            self.directories[mapping.owner_id].append(mapping)
            directory_ids.append(mapping.id)

        self.transforms = self._load_transforms(db, owner_type, owner_ids)
        self.directory_transforms = self._load_transforms(
            db, OwnerType.DIRECTORY_MAPPING, directory_ids
        )

    @staticmethod
    def _load_transforms(
        db: Session, owner_type: OwnerType, owner_ids: Sequence[int]
    ) -> dict[int, Transform]:
        if not owner_ids:
            return {}
        rows = db.execute(
            select(Transform).where(
                Transform.owner_type == owner_type.value,
                Transform.owner_id.in_(owner_ids),
                Transform.deleted_at.is_(None),
            )
        ).scalars()
        return {row.owner_id: row for row in rows}


class SyncConfigExporter:
    """Rebuilds :class:`SyncConfigDocument` trees from stored rows."""

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    def export_config(self, external_id: str) -> SyncConfigDocument:
        try:
            config = self.db.execute(
                select(SyncConfig).where(
                    SyncConfig.external_id == external_id,
                    SyncConfig.deleted_at.is_(None),
                )
            ).scalar_one_or_none()
            if config is None:
                raise RecordNotFoundError(f"sync config {external_id!r} not found")

            document = SyncConfigDocument(
                version=config.version,
                id=config.external_id,
                name=config.name,
                file_lists=self._export_file_lists(config.id),
                directory_lists=self._export_directory_lists(config.id),
            )
            refs = ReferenceResolver.from_database(self.db, config.id)
            groups = self.db.execute(
                select(Group)
                .where(Group.config_id == config.id, Group.deleted_at.is_(None))
                .order_by(Group.position)
                .options(*_group_loader_options())
            ).scalars().all()
            document.groups = self._export_groups(groups, refs)
        except SyncStoreError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Export of sync config %s failed: %s", external_id, exc)
            raise ExportFailedError(f"failed to export sync config {external_id!r}") from exc

        logger.info(
            "Exported sync config %s with %d groups", external_id, len(document.groups)
        )
        return document

    def export_group(self, config_id: int, group_external_id: str) -> GroupDocument:
        try:
            group = self.db.execute(
                select(Group)
                .where(
                    Group.config_id == config_id,
                    Group.external_id == group_external_id,
                    Group.deleted_at.is_(None),
                )
                .options(*_group_loader_options())
            ).scalar_one_or_none()
            if group is None:
                raise RecordNotFoundError(f"group {group_external_id!r} not found")

            refs = ReferenceResolver.from_database(self.db, config_id)
            (document,) = self._export_groups([group], refs)
        except SyncStoreError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Export of group %s failed: %s", group_external_id, exc)
            raise ExportFailedError(f"failed to export group {group_external_id!r}") from exc
        return document

    # Lists

    def _export_file_lists(self, config_id: int) -> list[FileListDocument]:
        lists = self.db.execute(
            select(FileList)
            .where(FileList.config_id == config_id, FileList.deleted_at.is_(None))
            .order_by(FileList.position)
        ).scalars().all()
        owned = _OwnedRows(self.db, OwnerType.FILE_LIST, [row.id for row in lists])
        return [
            FileListDocument(
                id=row.external_id,
                name=row.name,
                description=row.description or "",
                files=self._file_mappings(owned.files[row.id]),
            )
            for row in sorted(lists, key=_by_position)
        ]

    def _export_directory_lists(self, config_id: int) -> list[DirectoryListDocument]:
        lists = self.db.execute(
            select(DirectoryList)
            .where(DirectoryList.config_id == config_id, DirectoryList.deleted_at.is_(None))
            .order_by(DirectoryList.position)
        ).scalars().all()
        owned = _OwnedRows(self.db, OwnerType.DIRECTORY_LIST, [row.id for row in lists])
        return [
            DirectoryListDocument(
                id=row.external_id,
                name=row.name,
                description=row.description or "",
                directories=self._directory_mappings(owned.directories[row.id], owned),
            )
            for row in sorted(lists, key=_by_position)
        ]

    # Groups

    def _export_groups(
        self, groups: Sequence[Group], refs: ReferenceResolver
    ) -> list[GroupDocument]:
        targets_by_group = {group.id: _live(group.targets) for group in groups}
        target_ids = [target.id for targets in targets_by_group.values() for target in targets]
        owned = _OwnedRows(self.db, OwnerType.TARGET, target_ids)

        documents = []
        for group in sorted(groups, key=_by_position):
            documents.append(
                GroupDocument(
                    id=group.external_id,
                    name=group.name,
                    description=group.description or "",
                    priority=group.priority,
                    enabled=group.enabled,
                    depends_on=[
                        dependency.depends_on_id
                        for dependency in sorted(group.dependencies, key=_by_position)
                    ],
                    source=self._source(group.source),
                    global_settings=self._global_settings(group.global_settings),
                    defaults=self._defaults(group.defaults),
                    targets=[
                        self._target(target, owned, refs) for target in targets_by_group[group.id]
                    ],
                )
            )
        return documents

    @staticmethod
    def _source(source: Source | None) -> SourceDocument:
        if source is None:
            return SourceDocument()
        return SourceDocument(
            repo=source.repo.full_name,
            branch=source.branch,
            blob_size_limit=source.blob_size_limit or "",
            security_email=source.security_email or "",
            support_email=source.support_email or "",
        )

    @staticmethod
    def _global_settings(row: GroupGlobal | None) -> GlobalSettingsDocument:
        if row is None:
            return GlobalSettingsDocument()
        return GlobalSettingsDocument(
            pr_labels=list(row.pr_labels or []),
            pr_assignees=list(row.pr_assignees or []),
            pr_reviewers=list(row.pr_reviewers or []),
            pr_team_reviewers=list(row.pr_team_reviewers or []),
        )

    @staticmethod
    def _defaults(row: GroupDefault | None) -> DefaultsDocument:
        if row is None:
            return DefaultsDocument()
        return DefaultsDocument(
            branch_prefix=row.branch_prefix or "",
            pr_labels=list(row.pr_labels or []),
            pr_assignees=list(row.pr_assignees or []),
            pr_reviewers=list(row.pr_reviewers or []),
            pr_team_reviewers=list(row.pr_team_reviewers or []),
        )

    def _target(self, target: Target, owned: _OwnedRows, refs: ReferenceResolver) -> TargetDocument:
        return TargetDocument(
            repo=target.repo.full_name,
            branch=target.branch or "",
            blob_size_limit=target.blob_size_limit or "",
            security_email=target.security_email or "",
            support_email=target.support_email or "",
            pr_labels=list(target.pr_labels or []),
            pr_assignees=list(target.pr_assignees or []),
            pr_reviewers=list(target.pr_reviewers or []),
            pr_team_reviewers=list(target.pr_team_reviewers or []),
            files=self._file_mappings(owned.files[target.id]),
            directories=self._directory_mappings(owned.directories[target.id], owned),
            file_list_refs=self._list_refs(
                ReferenceKind.FILE_LIST, target.file_list_refs, "file_list_id", refs
            ),
            directory_list_refs=self._list_refs(
                ReferenceKind.DIRECTORY_LIST, target.directory_list_refs, "directory_list_id", refs
            ),
            transform=self._transform(owned.transforms.get(target.id)),
        )

    def _list_refs(
        self,
        kind: ReferenceKind,
        rows: Sequence[TargetFileListRef] | Sequence[TargetDirectoryListRef],
        key_attribute: str,
        refs: ReferenceResolver,
    ) -> list[str]:
        external_ids = []
        for row in sorted(rows, key=_by_position):
            internal_id = getattr(row, key_attribute)
            external_id = refs.reverse(kind, internal_id)
            if external_id is None:
                if self.settings.strict_reference_export:
                    raise ExportFailedError(
                        f"{kind.value.replace('_', ' ')} with id {internal_id} cannot be resolved"
                    )
                external_id = f"unknown-{kind.value.replace('_', '-')}-{internal_id}"
                logger.warning(
                    "Target %s references unresolved %s %s; exporting placeholder %s",
                    row.target_id,
                    kind.value,
                    internal_id,
                    external_id,
                )
            external_ids.append(external_id)
        return external_ids

    # Mappings

    @staticmethod
    def _file_mappings(rows: Sequence[FileMapping]) -> list[FileMappingDocument]:
        return [
            FileMappingDocument(src=row.src or "", dest=row.dest, delete=row.delete_flag)
            for row in sorted(rows, key=_by_position)
        ]

    def _directory_mappings(
        self, rows: Sequence[DirectoryMapping], owned: _OwnedRows
    ) -> list[DirectoryMappingDocument]:
        return [
            DirectoryMappingDocument(
                src=row.src or "",
                dest=row.dest,
                exclude=list(row.exclude or []),
                include_only=list(row.include_only or []),
                preserve_structure=row.preserve_structure,
                include_hidden=row.include_hidden,
                delete=row.delete_flag,
                module=(
                    ModuleConfigDocument(**row.module_config)
                    if row.module_config is not None
                    else None
                ),
                transform=self._transform(owned.directory_transforms.get(row.id)),
            )
            for row in sorted(rows, key=_by_position)
        ]

    @staticmethod
    def _transform(row: Transform | None) -> TransformDocument:
        if row is None:
            return TransformDocument()
        return TransformDocument(repo_name=row.repo_name, variables=dict(row.variables or {}))
