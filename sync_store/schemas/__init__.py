from sync_store.schemas.sync_config import (
    DefaultsDocument,
    DirectoryListDocument,
    DirectoryMappingDocument,
    ExecutionOrderItem,
    FileListDocument,
    FileMappingDocument,
    GlobalSettingsDocument,
    GroupDocument,
    ModuleConfigDocument,
    SourceDocument,
    SyncConfigDocument,
    SyncConfigRead,
    TargetDocument,
    TransformDocument,
    ValidationReport,
)

__all__ = [
    "DefaultsDocument",
    "DirectoryListDocument",
    "DirectoryMappingDocument",
    "ExecutionOrderItem",
    "FileListDocument",
    "FileMappingDocument",
    "GlobalSettingsDocument",
    "GroupDocument",
    "ModuleConfigDocument",
    "SourceDocument",
    "SyncConfigDocument",
    "SyncConfigRead",
    "TargetDocument",
    "TransformDocument",
    "ValidationReport",
]
