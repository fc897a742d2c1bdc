from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Iterator, Sequence, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sync_store.models import (
    DirectoryList,
    DirectoryMapping,
    FileList,
    FileMapping,
    Group,
    GroupDefault,
    GroupDependency,
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
    DirectoryMappingDocument,
    FileMappingDocument,
    GroupDocument,
    SyncConfigDocument,
    TargetDocument,
    TransformDocument,
)
from sync_store.services import ownership
from sync_store.services.dependency_graph import validate_document
from sync_store.services.errors import (
    ImportFailedError,
    ReferenceKind,
    ReferenceNotFoundError,
)
from sync_store.services.reference_resolver import ReferenceResolver
from sync_store.services.repo_resolver import RepoNameResolver
from sync_store.services.validation import (
    validate_group_default_row,
    validate_group_row,
    validate_list_row,
    validate_mapping_row,
    validate_non_empty,
    validate_source_row,
    validate_target_row,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


def enrich_config_fields(
    document: SyncConfigDocument, source_path: str | None = None
) -> tuple[str, str]:
    """Return ``(name, external_id)``, deriving blanks from the source file name.

    Nothing is derived without a ``source_path``. ``"-"`` stands for stdin.
    """
    name = document.name
    external_id = document.id

    if source_path and (not name or not external_id):
        if source_path == "-":
            base_name = "stdin"
        else:
            base_name = PurePath(source_path).stem
            if not base_name:
                base_name = f"config-{int(time.time())}"
        name = name or base_name
        external_id = external_id or base_name

    return name, external_id


def calculate_config_metrics(document: SyncConfigDocument) -> dict[str, dict[str, Any]]:
    total_targets = total_files = total_directories = 0
    enabled_groups = disabled_groups = 0
    has_dependencies = has_transforms = has_module_configs = False
    source_repos: list[str] = []
    target_repos: set[str] = set()

    for group in document.groups:
        if group.enabled is None or group.enabled:
            enabled_groups += 1
        else:
            disabled_groups += 1
        if group.source.repo and group.source.repo not in source_repos:
            source_repos.append(group.source.repo)
        if group.depends_on:
            has_dependencies = True

        total_targets += len(group.targets)
        for target in group.targets:
            if target.repo:
                target_repos.add(target.repo)
            total_files += len(target.files) + len(target.file_list_refs)
            total_directories += len(target.directories) + len(target.directory_list_refs)
            if not target.transform.is_empty():
                has_transforms = True
            for directory in target.directories:
                if not directory.transform.is_empty():
                    has_transforms = True
                if directory.module is not None and (directory.module.type or directory.module.version):
                    has_module_configs = True

    return {
        "metrics": {
            "groups_count": len(document.groups),
            "file_lists_count": len(document.file_lists),
            "directory_lists_count": len(document.directory_lists),
            "total_targets": total_targets,
            "total_files": total_files,
            "total_directories": total_directories,
            "enabled_groups": enabled_groups,
            "disabled_groups": disabled_groups,
        },
        "config_analysis": {
            "has_dependencies": has_dependencies,
            "has_transforms": has_transforms,
            "has_module_configs": has_module_configs,
            "source_repos": source_repos,
            "target_repos_count": len(target_repos),
        },
    }


class SyncConfigImporter:
    """Writes a :class:`SyncConfigDocument` into the relational store in one transaction."""

    def __init__(self, db: Session):
        self.db = db

    def import_config(
        self, document: SyncConfigDocument, source_path: str | None = None
    ) -> SyncConfig:
        name, external_id = enrich_config_fields(document, source_path)
        validate_non_empty("config id", external_id)
        # Structural checks run before anything is written.
        validate_document(document)

        refs = ReferenceResolver()
        repos = RepoNameResolver(self.db, refs)

        try:
            config = self._upsert_config(document, name, external_id, source_path)
            self._import_file_lists(config.id, document, refs)
            self._import_directory_lists(config.id, document, refs)
            self._validate_references(document, refs)
            self._import_groups(config.id, document.groups, refs, repos)
            self._prune_stale_entries(config.id, external_id, document)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Import of sync config %s failed: %s", external_id, exc)
            raise ImportFailedError("commit", "sync config", external_id) from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Imported sync config %s: %d groups, %d file lists, %d directory lists",
            external_id,
            len(document.groups),
            len(document.file_lists),
            len(document.directory_lists),
        )
        return config

    @contextmanager
    def _storage_step(
        self, operation: str, entity: str, external_id: str | None = None
    ) -> Iterator[None]:
        try:
            yield
            self.db.flush()
        except SQLAlchemyError as exc:
            logger.error("Failed to %s %s %s: %s", operation, entity, external_id, exc)
            raise ImportFailedError(operation, entity, external_id) from exc

    def _find_by_external_id(self, model: Type[ModelT], external_id: str) -> ModelT | None:
        with self._storage_step("look up", model.__tablename__, external_id):
            return self.db.execute(
                select(model).where(model.external_id == external_id)
            ).scalar_one_or_none()

    def _find_by_group(self, model: Type[ModelT], group_id: int) -> ModelT | None:
        return self.db.execute(select(model).where(model.group_id == group_id)).scalar_one_or_none()

    # Document root

    def _upsert_config(
        self,
        document: SyncConfigDocument,
        name: str,
        external_id: str,
        source_path: str | None,
    ) -> SyncConfig:
        metadata = {
            "import": {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "source_path": source_path,
            },
            **calculate_config_metrics(document),
        }

        config = self._find_by_external_id(SyncConfig, external_id)
        operation = "update" if config is not None else "create"
        with self._storage_step(operation, "sync config", external_id):
            if config is None:
                config = SyncConfig(external_id=external_id)
                self.db.add(config)
            config.name = name
            config.version = document.version
            config.deleted_at = None
            config.extra_metadata = metadata
        return config

    # Shared lists

    def _upsert_list(
        self,
        model: Type[FileList] | Type[DirectoryList],
        config_id: int,
        position: int,
        external_id: str,
        name: str,
        description: str,
    ):
        row = self._find_by_external_id(model, external_id)
        existed = row is not None
        if row is None:
            row = model(external_id=external_id)
            self.db.add(row)
        row.config_id = config_id
        row.name = name
        row.description = description or None
        row.position = position
        row.deleted_at = None
        validate_list_row(row)
        return row, existed

    def _import_file_lists(
        self, config_id: int, document: SyncConfigDocument, refs: ReferenceResolver
    ) -> None:
        for position, file_list in enumerate(document.file_lists):
            with self._storage_step("upsert", "file list", file_list.id):
                row, existed = self._upsert_list(
                    FileList,
                    config_id,
                    position,
                    file_list.id,
                    file_list.name,
                    file_list.description,
                )
            refs.record(ReferenceKind.FILE_LIST, file_list.id, row.id)

            with self._storage_step("replace files of", "file list", file_list.id):
                if existed:
                    ownership.delete_file_mappings(self.db, OwnerType.FILE_LIST, [row.id])
                self._add_file_mappings(OwnerType.FILE_LIST, row.id, file_list.files)
            logger.debug("Imported file list %s (id=%s)", file_list.id, row.id)

    def _import_directory_lists(
        self, config_id: int, document: SyncConfigDocument, refs: ReferenceResolver
    ) -> None:
        for position, directory_list in enumerate(document.directory_lists):
            with self._storage_step("upsert", "directory list", directory_list.id):
                row, existed = self._upsert_list(
                    DirectoryList,
                    config_id,
                    position,
                    directory_list.id,
                    directory_list.name,
                    directory_list.description,
                )
            refs.record(ReferenceKind.DIRECTORY_LIST, directory_list.id, row.id)

            with self._storage_step("replace directories of", "directory list", directory_list.id):
                if existed:
                    ownership.delete_directory_mappings(
                        self.db, OwnerType.DIRECTORY_LIST, [row.id]
                    )
                self._add_directory_mappings(
                    OwnerType.DIRECTORY_LIST, row.id, directory_list.directories
                )
            logger.debug("Imported directory list %s (id=%s)", directory_list.id, row.id)

    def _validate_references(self, document: SyncConfigDocument, refs: ReferenceResolver) -> None:
        for group in document.groups:
            for target in group.targets:
                for ref in target.file_list_refs:
                    if not refs.contains(ReferenceKind.FILE_LIST, ref):
                        raise ReferenceNotFoundError(
                            ReferenceKind.FILE_LIST, ref, detail=f"group {group.id!r}"
                        )
                for ref in target.directory_list_refs:
                    if not refs.contains(ReferenceKind.DIRECTORY_LIST, ref):
                        raise ReferenceNotFoundError(
                            ReferenceKind.DIRECTORY_LIST, ref, detail=f"group {group.id!r}"
                        )

    # Groups

    def _import_groups(
        self,
        config_id: int,
        groups: Sequence[GroupDocument],
        refs: ReferenceResolver,
        repos: RepoNameResolver,
    ) -> None:
        for position, group_doc in enumerate(groups):
            group = self._find_by_external_id(Group, group_doc.id)
            existed = group is not None
            with self._storage_step("update" if existed else "create", "group", group_doc.id):
                if group is None:
                    group = Group(external_id=group_doc.id)
                    self.db.add(group)
                group.config_id = config_id
                group.name = group_doc.name
                group.description = group_doc.description or None
                group.priority = group_doc.priority
                group.enabled = group_doc.enabled
                group.position = position
                group.deleted_at = None
                validate_group_row(group)

            if existed:
                with self._storage_step("clear targets of", "group", group_doc.id):
                    ownership.delete_group_children(self.db, group.id)
            refs.record(ReferenceKind.GROUP, group_doc.id, group.id)

            with self._storage_step("import source of", "group", group_doc.id):
                self._upsert_source(group.id, group_doc, repos)
            with self._storage_step("import global settings of", "group", group_doc.id):
                self._upsert_group_global(group.id, group_doc)
            with self._storage_step("import defaults of", "group", group_doc.id):
                self._upsert_group_default(group.id, group_doc)
            with self._storage_step("import dependencies of", "group", group_doc.id):
                for dep_position, depends_on in enumerate(group_doc.depends_on):
                    self.db.add(
                        GroupDependency(
                            group_id=group.id,
                            depends_on_id=depends_on,
                            position=dep_position,
                        )
                    )

            for target_position, target_doc in enumerate(group_doc.targets):
                with self._storage_step(
                    "create", f"target {target_doc.repo!r} of group", group_doc.id
                ):
                    self._create_target(group.id, target_position, target_doc, refs, repos)

            logger.debug(
                "Imported group %s (id=%s) with %d targets",
                group_doc.id,
                group.id,
                len(group_doc.targets),
            )

    def _upsert_source(self, group_id: int, group_doc: GroupDocument, repos: RepoNameResolver) -> None:
        source_doc = group_doc.source
        repo_id = repos.resolve(source_doc.repo)
        source = self._find_by_group(Source, group_id)
        if source is None:
            source = Source(group_id=group_id)
            self.db.add(source)
        source.repo_id = repo_id
        source.branch = source_doc.branch
        source.blob_size_limit = source_doc.blob_size_limit or None
        source.security_email = source_doc.security_email or None
        source.support_email = source_doc.support_email or None
        validate_source_row(source)

    def _upsert_group_global(self, group_id: int, group_doc: GroupDocument) -> None:
        settings = group_doc.global_settings
        row = self._find_by_group(GroupGlobal, group_id)
        if row is None:
            row = GroupGlobal(group_id=group_id)
            self.db.add(row)
        row.pr_labels = list(settings.pr_labels)
        row.pr_assignees = list(settings.pr_assignees)
        row.pr_reviewers = list(settings.pr_reviewers)
        row.pr_team_reviewers = list(settings.pr_team_reviewers)

    def _upsert_group_default(self, group_id: int, group_doc: GroupDocument) -> None:
        defaults = group_doc.defaults
        row = self._find_by_group(GroupDefault, group_id)
        if row is None:
            row = GroupDefault(group_id=group_id)
            self.db.add(row)
        row.branch_prefix = defaults.branch_prefix or None
        row.pr_labels = list(defaults.pr_labels)
        row.pr_assignees = list(defaults.pr_assignees)
        row.pr_reviewers = list(defaults.pr_reviewers)
        row.pr_team_reviewers = list(defaults.pr_team_reviewers)
        validate_group_default_row(row)

    def _create_target(
        self,
        group_id: int,
        position: int,
        target_doc: TargetDocument,
        refs: ReferenceResolver,
        repos: RepoNameResolver,
    ) -> Target:
        target = Target(
            group_id=group_id,
            repo_id=repos.resolve(target_doc.repo),
            branch=target_doc.branch or None,
            blob_size_limit=target_doc.blob_size_limit or None,
            security_email=target_doc.security_email or None,
            support_email=target_doc.support_email or None,
            pr_labels=list(target_doc.pr_labels),
            pr_assignees=list(target_doc.pr_assignees),
            pr_reviewers=list(target_doc.pr_reviewers),
            pr_team_reviewers=list(target_doc.pr_team_reviewers),
            position=position,
        )
        validate_target_row(target)
        self.db.add(target)
        self.db.flush()

        self._add_file_mappings(OwnerType.TARGET, target.id, target_doc.files)
        self._add_directory_mappings(OwnerType.TARGET, target.id, target_doc.directories)
        self._add_transform(OwnerType.TARGET, target.id, target_doc.transform)

        for ref_position, ref in enumerate(target_doc.file_list_refs):
            self.db.add(
                TargetFileListRef(
                    target_id=target.id,
                    file_list_id=refs.resolve(ReferenceKind.FILE_LIST, ref),
                    position=ref_position,
                )
            )
        for ref_position, ref in enumerate(target_doc.directory_list_refs):
            self.db.add(
                TargetDirectoryListRef(
                    target_id=target.id,
                    directory_list_id=refs.resolve(ReferenceKind.DIRECTORY_LIST, ref),
                    position=ref_position,
                )
            )
        return target

    # Mappings and transforms

    def _add_file_mappings(
        self, owner_type: OwnerType, owner_id: int, files: Sequence[FileMappingDocument]
    ) -> None:
        for position, file_doc in enumerate(files):
            mapping = FileMapping(
                owner_type=owner_type.value,
                owner_id=owner_id,
                src=file_doc.src or None,
                dest=file_doc.dest,
                delete_flag=file_doc.delete,
                position=position,
            )
            validate_mapping_row(mapping)
            self.db.add(mapping)

    def _add_directory_mappings(
        self,
        owner_type: OwnerType,
        owner_id: int,
        directories: Sequence[DirectoryMappingDocument],
    ) -> None:
        for position, directory_doc in enumerate(directories):
            mapping = DirectoryMapping(
                owner_type=owner_type.value,
                owner_id=owner_id,
                src=directory_doc.src or None,
                dest=directory_doc.dest,
                exclude=list(directory_doc.exclude),
                include_only=list(directory_doc.include_only),
                preserve_structure=directory_doc.preserve_structure,
                include_hidden=directory_doc.include_hidden,
                delete_flag=directory_doc.delete,
                module_config=(
                    directory_doc.module.model_dump() if directory_doc.module is not None else None
                ),
                position=position,
            )
            validate_mapping_row(mapping)
            self.db.add(mapping)
            if not directory_doc.transform.is_empty():
                self.db.flush()
                self._add_transform(OwnerType.DIRECTORY_MAPPING, mapping.id, directory_doc.transform)

    def _add_transform(
        self, owner_type: OwnerType, owner_id: int, transform_doc: TransformDocument
    ) -> None:
        if transform_doc.is_empty():
            return
        self.db.add(
            Transform(
                owner_type=owner_type.value,
                owner_id=owner_id,
                repo_name=transform_doc.repo_name,
                variables=dict(transform_doc.variables),
            )
        )

    # Stale rows

    def _prune_stale_entries(
        self, config_id: int, external_id: str, document: SyncConfigDocument
    ) -> None:
        """Drop groups and lists of this config that the new document no longer contains."""
        stale_groups = self._stale_ids(Group, config_id, {group.id for group in document.groups})
        stale_file_lists = self._stale_ids(
            FileList, config_id, {file_list.id for file_list in document.file_lists}
        )
        stale_directory_lists = self._stale_ids(
            DirectoryList,
            config_id,
            {directory_list.id for directory_list in document.directory_lists},
        )
        with self._storage_step("prune stale entries of", "sync config", external_id):
            ownership.delete_groups(self.db, stale_groups)
            ownership.delete_file_lists(self.db, stale_file_lists)
            ownership.delete_directory_lists(self.db, stale_directory_lists)
        if stale_groups or stale_file_lists or stale_directory_lists:
            logger.info(
                "Removed %d stale groups, %d file lists, %d directory lists",
                len(stale_groups),
                len(stale_file_lists),
                len(stale_directory_lists),
            )

    def _stale_ids(self, model, config_id: int, keep: set[str]) -> list[int]:
        rows = self.db.execute(
            select(model.id, model.external_id).where(model.config_id == config_id)
        ).all()
        return [row_id for row_id, external_id in rows if external_id not in keep]
