from sync_store.services.config_exporter import SyncConfigExporter
from sync_store.services.config_importer import (
    SyncConfigImporter,
    calculate_config_metrics,
    enrich_config_fields,
)
from sync_store.services.converter import SyncConfigConverter
from sync_store.services.dependency_graph import (
    resolve_execution_order,
    validate_document,
    validate_group_dependencies,
)
from sync_store.services.errors import (
    CircularDependencyError,
    ExportFailedError,
    ImportFailedError,
    InvalidRepoFormatError,
    RecordNotFoundError,
    ReferenceKind,
    ReferenceNotFoundError,
    SyncStoreError,
    ValidationFailedError,
)
from sync_store.services.reference_resolver import ReferenceResolver
from sync_store.services.repo_resolver import RepoNameResolver, split_repo_name

__all__ = [
    "SyncConfigConverter",
    "SyncConfigExporter",
    "SyncConfigImporter",
    "calculate_config_metrics",
    "enrich_config_fields",
    "resolve_execution_order",
    "validate_document",
    "validate_group_dependencies",
    "ReferenceResolver",
    "RepoNameResolver",
    "split_repo_name",
    "SyncStoreError",
    "RecordNotFoundError",
    "ReferenceKind",
    "ReferenceNotFoundError",
    "CircularDependencyError",
    "InvalidRepoFormatError",
    "ValidationFailedError",
    "ImportFailedError",
    "ExportFailedError",
]
