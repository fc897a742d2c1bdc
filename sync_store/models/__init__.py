from sync_store.models.entities import (
    Client,
    DirectoryList,
    DirectoryMapping,
    FileList,
    FileMapping,
    Group,
    GroupDefault,
    GroupDependency,
    GroupGlobal,
    Organization,
    OwnerType,
    Repo,
    Source,
    SyncConfig,
    Target,
    TargetDirectoryListRef,
    TargetFileListRef,
    Transform,
)

__all__ = [
    "Client",
    "DirectoryList",
    "DirectoryMapping",
    "FileList",
    "FileMapping",
    "Group",
    "GroupDefault",
    "GroupDependency",
    "GroupGlobal",
    "Organization",
    "OwnerType",
    "Repo",
    "Source",
    "SyncConfig",
    "Target",
    "TargetDirectoryListRef",
    "TargetFileListRef",
    "Transform",
]
