"""Bulk removal of owned rows.

Mappings and transforms are owned through ``(owner_type, owner_id)`` pairs that
carry no foreign key, so the database cannot cascade to them. These helpers
delete an owner's whole subtree explicitly, children first.
"""
from __future__ import annotations

from typing import Collection

from sqlalchemy import delete, select
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


def _ids(db: Session, statement) -> list[int]:
    return list(db.execute(statement).scalars())


def delete_transforms(db: Session, owner_type: OwnerType, owner_ids: Collection[int]) -> None:
    if not owner_ids:
        return
    db.execute(
        delete(Transform)
        .where(Transform.owner_type == owner_type.value, Transform.owner_id.in_(owner_ids))
        .execution_options(synchronize_session=False)
    )


def delete_file_mappings(db: Session, owner_type: OwnerType, owner_ids: Collection[int]) -> None:
    if not owner_ids:
        return
    db.execute(
        delete(FileMapping)
        .where(FileMapping.owner_type == owner_type.value, FileMapping.owner_id.in_(owner_ids))
        .execution_options(synchronize_session=False)
    )


def delete_directory_mappings(
    db: Session, owner_type: OwnerType, owner_ids: Collection[int]
) -> None:
    if not owner_ids:
        return
    mapping_ids = _ids(
        db,
        select(DirectoryMapping.id).where(
            DirectoryMapping.owner_type == owner_type.value,
            DirectoryMapping.owner_id.in_(owner_ids),
        ),
    )
    delete_transforms(db, OwnerType.DIRECTORY_MAPPING, mapping_ids)
    if mapping_ids:
        db.execute(
            delete(DirectoryMapping)
            .where(DirectoryMapping.id.in_(mapping_ids))
            .execution_options(synchronize_session=False)
        )


def delete_targets(db: Session, target_ids: Collection[int]) -> None:
    if not target_ids:
        return
    delete_file_mappings(db, OwnerType.TARGET, target_ids)
    delete_directory_mappings(db, OwnerType.TARGET, target_ids)
    delete_transforms(db, OwnerType.TARGET, target_ids)
    for model in (TargetFileListRef, TargetDirectoryListRef):
        db.execute(
            delete(model)
            .where(model.target_id.in_(target_ids))
            .execution_options(synchronize_session=False)
        )
    db.execute(
        delete(Target).where(Target.id.in_(target_ids)).execution_options(synchronize_session=False)
    )


def delete_group_children(db: Session, group_id: int) -> None:
    """Remove the collections that an update import re-creates: targets and dependencies."""
    delete_targets(db, _ids(db, select(Target.id).where(Target.group_id == group_id)))
    db.execute(
        delete(GroupDependency)
        .where(GroupDependency.group_id == group_id)
        .execution_options(synchronize_session=False)
    )


def delete_groups(db: Session, group_ids: Collection[int]) -> None:
    if not group_ids:
        return
    for group_id in group_ids:
        delete_group_children(db, group_id)
    for model in (Source, GroupGlobal, GroupDefault):
        db.execute(
            delete(model)
            .where(model.group_id.in_(group_ids))
            .execution_options(synchronize_session=False)
        )
    db.execute(
        delete(Group).where(Group.id.in_(group_ids)).execution_options(synchronize_session=False)
    )


def delete_file_lists(db: Session, file_list_ids: Collection[int]) -> None:
    if not file_list_ids:
        return
    delete_file_mappings(db, OwnerType.FILE_LIST, file_list_ids)
    db.execute(
        delete(TargetFileListRef)
        .where(TargetFileListRef.file_list_id.in_(file_list_ids))
        .execution_options(synchronize_session=False)
    )
    db.execute(
        delete(FileList)
        .where(FileList.id.in_(file_list_ids))
        .execution_options(synchronize_session=False)
    )


def delete_directory_lists(db: Session, directory_list_ids: Collection[int]) -> None:
    if not directory_list_ids:
        return
    delete_directory_mappings(db, OwnerType.DIRECTORY_LIST, directory_list_ids)
    db.execute(
        delete(TargetDirectoryListRef)
        .where(TargetDirectoryListRef.directory_list_id.in_(directory_list_ids))
        .execution_options(synchronize_session=False)
    )
    db.execute(
        delete(DirectoryList)
        .where(DirectoryList.id.in_(directory_list_ids))
        .execution_options(synchronize_session=False)
    )


def delete_sync_config(db: Session, config_id: int) -> None:
    def _owned_ids(model) -> list[int]:
        return _ids(db, select(model.id).where(model.config_id == config_id))

    delete_groups(db, _owned_ids(Group))
    delete_file_lists(db, _owned_ids(FileList))
    delete_directory_lists(db, _owned_ids(DirectoryList))
    db.execute(
        delete(SyncConfig)
        .where(SyncConfig.id == config_id)
        .execution_options(synchronize_session=False)
    )
