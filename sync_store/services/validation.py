"""Field level validation invoked by the import pipeline before rows are written.

Each ``validate_*`` function raises :class:`ValidationFailedError` on failure.
The row validators at the bottom combine them per entity.
"""
from __future__ import annotations

import posixpath
import re

from email_validator import EmailNotValidError, validate_email as _validate_email_address

from sync_store.models import (
    DirectoryList,
    DirectoryMapping,
    FileList,
    FileMapping,
    Group,
    GroupDefault,
    Organization,
    Repo,
    Source,
    Target,
)
from sync_store.services.errors import ValidationFailedError

MAX_ORG_NAME_LENGTH = 100
MAX_REPO_SHORT_NAME_LENGTH = 100
MAX_BRANCH_NAME_LENGTH = 255
MAX_EMAIL_LENGTH = 254
MAX_FILE_PATH_LENGTH = 4096

_NAME_SEGMENT_PATTERN = re.compile(r"^[a-zA-Z0-9][\w.-]*$")
_BRANCH_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][\w./\-]*$")


def validate_non_empty(field: str, value: str | None) -> None:
    if value is None or not value.strip():
        raise ValidationFailedError(f"{field} cannot be empty")


def _validate_name_segment(label: str, name: str | None, max_length: int) -> None:
    validate_non_empty(label, name)
    if len(name) > max_length:
        raise ValidationFailedError(f"{label} exceeds maximum length of {max_length} characters")
    if "/" in name:
        raise ValidationFailedError(f"invalid {label}: {name} (contains '/')")
    if ".." in name:
        raise ValidationFailedError(f"invalid {label}: {name} (path traversal)")
    if not _NAME_SEGMENT_PATTERN.match(name):
        raise ValidationFailedError(
            f"invalid {label}: {name} (expected alphanumeric with hyphens, dots, underscores)"
        )
    if name.endswith("."):
        raise ValidationFailedError(f"invalid {label}: {name} (ends with '.')")


def validate_org_name(name: str | None) -> None:
    _validate_name_segment("organization name", name, MAX_ORG_NAME_LENGTH)


def validate_repo_short_name(name: str | None) -> None:
    _validate_name_segment("repository name", name, MAX_REPO_SHORT_NAME_LENGTH)


def _validate_ref_name(label: str, name: str) -> None:
    if len(name) > MAX_BRANCH_NAME_LENGTH:
        raise ValidationFailedError(
            f"{label} exceeds maximum length of {MAX_BRANCH_NAME_LENGTH} characters"
        )
    if not _BRANCH_NAME_PATTERN.match(name):
        raise ValidationFailedError(f"invalid {label}: {name}")
    if ".." in name:
        raise ValidationFailedError(f"invalid {label}: {name} (contains '..')")
    if name.endswith("/"):
        raise ValidationFailedError(f"invalid {label}: {name} (ends with '/')")
    if "//" in name:
        raise ValidationFailedError(f"invalid {label}: {name} (contains '//')")
    if name.endswith(".lock"):
        raise ValidationFailedError(f"invalid {label}: {name} (ends with '.lock')")


def validate_branch_name(name: str | None) -> None:
    validate_non_empty("branch name", name)
    _validate_ref_name("branch name", name)


def validate_branch_prefix(prefix: str | None) -> None:
    # An empty prefix falls back to the sync engine default.
    if not prefix:
        return
    _validate_ref_name("branch prefix", prefix)


def validate_email(email: str | None, field: str) -> None:
    if not email:
        return
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationFailedError(f"{field} exceeds maximum length of {MAX_EMAIL_LENGTH} characters")
    try:
        _validate_email_address(email, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationFailedError(f"invalid {field}: {email} ({exc})") from exc


def validate_file_path(path: str | None, field: str) -> None:
    label = f"{field} path"
    if not path:
        raise ValidationFailedError(f"{label} is required")
    if len(path) > MAX_FILE_PATH_LENGTH:
        raise ValidationFailedError(f"{label} exceeds maximum length of {MAX_FILE_PATH_LENGTH} characters")
    if any(ord(char) < 0x20 for char in path):
        raise ValidationFailedError(f"{label} contains invalid control characters")

    clean_path = posixpath.normpath(path.replace("\\", "/"))
    if posixpath.isabs(clean_path):
        raise ValidationFailedError(f"{label} must be relative, not absolute")
    if clean_path == ".." or clean_path.startswith("../"):
        raise ValidationFailedError(f"{label} attempts path traversal: {path}")


# Row validators


def validate_organization_row(organization: Organization) -> None:
    if not organization.client_id:
        raise ValidationFailedError("client_id is required")
    validate_org_name(organization.name)


def validate_repo_row(repo: Repo) -> None:
    if not repo.organization_id:
        raise ValidationFailedError("organization_id is required")
    validate_repo_short_name(repo.name)


def validate_group_row(group: Group) -> None:
    validate_non_empty("name", group.name)
    validate_non_empty("external_id", group.external_id)


def validate_list_row(row: FileList | DirectoryList) -> None:
    validate_non_empty("name", row.name)
    validate_non_empty("external_id", row.external_id)


def validate_source_row(source: Source) -> None:
    if not source.repo_id:
        raise ValidationFailedError("repo_id is required")
    validate_branch_name(source.branch)
    validate_email(source.security_email, "security_email")
    validate_email(source.support_email, "support_email")


def validate_group_default_row(defaults: GroupDefault) -> None:
    validate_branch_prefix(defaults.branch_prefix)


def validate_target_row(target: Target) -> None:
    if not target.repo_id:
        raise ValidationFailedError("repo_id is required")
    if target.branch:
        validate_branch_name(target.branch)
    validate_email(target.security_email, "security_email")
    validate_email(target.support_email, "support_email")


def validate_mapping_row(mapping: FileMapping | DirectoryMapping) -> None:
    # Deletions only name the destination.
    if not mapping.delete_flag:
        validate_file_path(mapping.src, "source")
    validate_file_path(mapping.dest, "destination")
