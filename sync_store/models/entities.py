from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sync_store.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OwnerType(str, Enum):
    """Owner kinds for polymorphically owned rows (mappings and transforms)."""

    TARGET = "target"
    FILE_LIST = "file_list"
    DIRECTORY_LIST = "directory_list"
    DIRECTORY_MAPPING = "directory_mapping"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class SoftDeleteMixin:
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class MetadataMixin:
    # "metadata" is reserved on declarative classes, so the attribute is renamed.
    extra_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True
    )


class EntityMixin(TimestampMixin, SoftDeleteMixin, MetadataMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)


# Repository dimension


class Client(Base, EntityMixin):
    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    organizations: Mapped[list["Organization"]] = relationship(
        "Organization",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Organization(Base, EntityMixin):
    __tablename__ = "organizations"

    client_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    client: Mapped[Client] = relationship("Client", back_populates="organizations")
    repos: Mapped[list["Repo"]] = relationship(
        "Repo",
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Repo(Base, EntityMixin):
    __tablename__ = "repos"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_repos_organization_name"),
    )

    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    organization: Mapped[Organization] = relationship("Organization", back_populates="repos")


# Configuration document


class SyncConfig(Base, EntityMixin):
    __tablename__ = "sync_configs"

    external_id: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    groups: Mapped[list["Group"]] = relationship(
        "Group",
        back_populates="config",
        order_by="Group.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    file_lists: Mapped[list["FileList"]] = relationship(
        "FileList",
        back_populates="config",
        order_by="FileList.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    directory_lists: Mapped[list["DirectoryList"]] = relationship(
        "DirectoryList",
        back_populates="config",
        order_by="DirectoryList.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Group(Base, EntityMixin):
    __tablename__ = "sync_groups"

    config_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    config: Mapped[SyncConfig] = relationship("SyncConfig", back_populates="groups")
    source: Mapped[Optional["Source"]] = relationship(
        "Source",
        back_populates="group",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    global_settings: Mapped[Optional["GroupGlobal"]] = relationship(
        "GroupGlobal",
        back_populates="group",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    defaults: Mapped[Optional["GroupDefault"]] = relationship(
        "GroupDefault",
        back_populates="group",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    dependencies: Mapped[list["GroupDependency"]] = relationship(
        "GroupDependency",
        back_populates="group",
        order_by="GroupDependency.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    targets: Mapped[list["Target"]] = relationship(
        "Target",
        back_populates="group",
        order_by="Target.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class GroupDependency(Base, TimestampMixin, MetadataMixin):
    __tablename__ = "group_dependencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # External id of the group depended upon.
    depends_on_id: Mapped[str] = mapped_column(String(200), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    group: Mapped[Group] = relationship("Group", back_populates="dependencies")


class Source(Base, EntityMixin):
    __tablename__ = "group_sources"

    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_groups.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    repo_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repos.id"), nullable=False, index=True
    )
    branch: Mapped[str] = mapped_column(String(255), nullable=False)
    blob_size_limit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    security_email: Mapped[str | None] = mapped_column(String(254), nullable=True)
    support_email: Mapped[str | None] = mapped_column(String(254), nullable=True)

    group: Mapped[Group] = relationship("Group", back_populates="source")
    repo: Mapped[Repo] = relationship("Repo")


class PullRequestSettingsMixin:
    pr_labels: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    pr_assignees: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    pr_reviewers: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    pr_team_reviewers: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)


class GroupGlobal(Base, EntityMixin, PullRequestSettingsMixin):
    __tablename__ = "group_globals"

    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_groups.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    group: Mapped[Group] = relationship("Group", back_populates="global_settings")


class GroupDefault(Base, EntityMixin, PullRequestSettingsMixin):
    __tablename__ = "group_defaults"

    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_groups.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    branch_prefix: Mapped[str | None] = mapped_column(String(255), nullable=True)

    group: Mapped[Group] = relationship("Group", back_populates="defaults")


class Target(Base, EntityMixin, PullRequestSettingsMixin):
    __tablename__ = "sync_targets"

    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    repo_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repos.id"), nullable=False, index=True
    )
    branch: Mapped[str | None] = mapped_column(String(255), nullable=True)
    blob_size_limit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    security_email: Mapped[str | None] = mapped_column(String(254), nullable=True)
    support_email: Mapped[str | None] = mapped_column(String(254), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    group: Mapped[Group] = relationship("Group", back_populates="targets")
    repo: Mapped[Repo] = relationship("Repo")
    file_list_refs: Mapped[list["TargetFileListRef"]] = relationship(
        "TargetFileListRef",
        back_populates="target",
        order_by="TargetFileListRef.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    directory_list_refs: Mapped[list["TargetDirectoryListRef"]] = relationship(
        "TargetDirectoryListRef",
        back_populates="target",
        order_by="TargetDirectoryListRef.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class FileList(Base, EntityMixin):
    __tablename__ = "file_lists"

    config_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    config: Mapped[SyncConfig] = relationship("SyncConfig", back_populates="file_lists")


class DirectoryList(Base, EntityMixin):
    __tablename__ = "directory_lists"

    config_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    config: Mapped[SyncConfig] = relationship("SyncConfig", back_populates="directory_lists")


class FileMapping(Base, EntityMixin):
    __tablename__ = "file_mappings"
    __table_args__ = (Index("idx_file_mapping_owner", "owner_type", "owner_id"),)

    owner_type: Mapped[str] = mapped_column(String(50), nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    src: Mapped[str | None] = mapped_column(Text, nullable=True)
    dest: Mapped[str] = mapped_column(Text, nullable=False)
    delete_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DirectoryMapping(Base, EntityMixin):
    __tablename__ = "directory_mappings"
    __table_args__ = (Index("idx_dir_mapping_owner", "owner_type", "owner_id"),)

    owner_type: Mapped[str] = mapped_column(String(50), nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    src: Mapped[str | None] = mapped_column(Text, nullable=True)
    dest: Mapped[str] = mapped_column(Text, nullable=False)
    exclude: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    include_only: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    preserve_structure: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    include_hidden: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    delete_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    module_config: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Transform(Base, EntityMixin):
    __tablename__ = "transforms"
    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", name="idx_owner_transform"),
    )

    owner_type: Mapped[str] = mapped_column(String(50), nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    repo_name: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    variables: Mapped[Optional[dict[str, str]]] = mapped_column(JSON, nullable=True)


class TargetFileListRef(Base, TimestampMixin, MetadataMixin):
    __tablename__ = "target_file_list_refs"
    __table_args__ = (
        UniqueConstraint("target_id", "file_list_id", name="idx_target_file_list"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_targets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_list_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("file_lists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    target: Mapped[Target] = relationship("Target", back_populates="file_list_refs")
    file_list: Mapped[FileList] = relationship("FileList")


class TargetDirectoryListRef(Base, TimestampMixin, MetadataMixin):
    __tablename__ = "target_directory_list_refs"
    __table_args__ = (
        UniqueConstraint("target_id", "directory_list_id", name="idx_target_dir_list"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_targets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    directory_list_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("directory_lists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    target: Mapped[Target] = relationship("Target", back_populates="directory_list_refs")
    directory_list: Mapped[DirectoryList] = relationship("DirectoryList")
