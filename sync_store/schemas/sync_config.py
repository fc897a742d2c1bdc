from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Base for the logical document shape: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransformDocument(DocumentModel):
    repo_name: bool = False
    variables: dict[str, str] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.repo_name and not self.variables


class ModuleConfigDocument(DocumentModel):
    type: str = ""
    version: str = ""
    check_tags: Optional[bool] = None
    update_refs: bool = False


class FileMappingDocument(DocumentModel):
    src: str = ""
    dest: str = ""
    delete: bool = False


class DirectoryMappingDocument(DocumentModel):
    src: str = ""
    dest: str = ""
    exclude: list[str] = Field(default_factory=list)
    include_only: list[str] = Field(default_factory=list)
    preserve_structure: Optional[bool] = None
    include_hidden: Optional[bool] = None
    delete: bool = False
    module: Optional[ModuleConfigDocument] = None
    transform: TransformDocument = Field(default_factory=TransformDocument)


class FileListDocument(DocumentModel):
    id: str
    name: str = ""
    description: str = ""
    files: list[FileMappingDocument] = Field(default_factory=list)


class DirectoryListDocument(DocumentModel):
    id: str
    name: str = ""
    description: str = ""
    directories: list[DirectoryMappingDocument] = Field(default_factory=list)


class PullRequestSettingsDocument(DocumentModel):
    pr_labels: list[str] = Field(default_factory=list)
    pr_assignees: list[str] = Field(default_factory=list)
    pr_reviewers: list[str] = Field(default_factory=list)
    pr_team_reviewers: list[str] = Field(default_factory=list)


class SourceDocument(DocumentModel):
    repo: str = ""
    branch: str = ""
    blob_size_limit: str = ""
    security_email: str = ""
    support_email: str = ""


class GlobalSettingsDocument(PullRequestSettingsDocument):
    pass


class DefaultsDocument(PullRequestSettingsDocument):
    branch_prefix: str = ""


class TargetDocument(PullRequestSettingsDocument):
    repo: str
    branch: str = ""
    blob_size_limit: str = ""
    security_email: str = ""
    support_email: str = ""
    files: list[FileMappingDocument] = Field(default_factory=list)
    directories: list[DirectoryMappingDocument] = Field(default_factory=list)
    file_list_refs: list[str] = Field(default_factory=list)
    directory_list_refs: list[str] = Field(default_factory=list)
    transform: TransformDocument = Field(default_factory=TransformDocument)


class GroupDocument(DocumentModel):
    id: str
    name: str = ""
    description: str = ""
    priority: int = 0
    enabled: Optional[bool] = None
    depends_on: list[str] = Field(default_factory=list)
    source: SourceDocument = Field(default_factory=SourceDocument)
    global_settings: GlobalSettingsDocument = Field(
        default_factory=GlobalSettingsDocument, alias="global"
    )
    defaults: DefaultsDocument = Field(default_factory=DefaultsDocument)
    targets: list[TargetDocument] = Field(default_factory=list)


class SyncConfigDocument(DocumentModel):
    version: int = 1
    id: str = ""
    name: str = ""
    file_lists: list[FileListDocument] = Field(default_factory=list)
    directory_lists: list[DirectoryListDocument] = Field(default_factory=list)
    groups: list[GroupDocument] = Field(default_factory=list)


class SyncConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    name: str
    version: int
    created_at: datetime
    updated_at: datetime


class ExecutionOrderItem(BaseModel):
    id: str
    name: str
    priority: int
    order: int


class ValidationReport(BaseModel):
    valid: bool
    execution_order: list[ExecutionOrderItem] = Field(default_factory=list)
