from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from sync_store.models import Client, Organization, Repo
from sync_store.services.errors import InvalidRepoFormatError
from sync_store.services.reference_resolver import ReferenceResolver
from sync_store.services.validation import (
    validate_non_empty,
    validate_organization_row,
    validate_repo_row,
)

logger = logging.getLogger(__name__)


def split_repo_name(full_name: str) -> tuple[str, str]:
    org_name, separator, repo_name = (full_name or "").partition("/")
    if not separator or not org_name or not repo_name:
        raise InvalidRepoFormatError(f"expected org/repo, got {full_name!r}")
    return org_name, repo_name


class RepoNameResolver:
    """Turns ``"org/repo"`` strings into ``repos.id`` keys, creating rows on first use."""

    def __init__(self, db: Session, refs: ReferenceResolver):
        self.db = db
        self.refs = refs

    def resolve(self, full_name: str) -> int:
        cached = self.refs.repos.get(full_name)
        if cached is not None:
            return cached

        org_name, repo_name = split_repo_name(full_name)
        organization_id = self._resolve_organization(org_name)

        repo = self.db.execute(
            select(Repo).where(Repo.organization_id == organization_id, Repo.name == repo_name)
        ).scalar_one_or_none()
        if repo is None:
            repo = Repo(organization_id=organization_id, name=repo_name, full_name=full_name)
            validate_repo_row(repo)
            self.db.add(repo)
            self.db.flush()
            logger.debug("Provisioned repository %s (id=%s)", full_name, repo.id)

        self.refs.repos[full_name] = repo.id
        return repo.id

    def _resolve_organization(self, org_name: str) -> int:
        cached = self.refs.organizations.get(org_name)
        if cached is not None:
            return cached

        organization = self.db.execute(
            select(Organization).where(Organization.name == org_name)
        ).scalar_one_or_none()
        if organization is None:
            client = self._get_or_create_client(org_name)
            organization = Organization(client_id=client.id, name=org_name)
            validate_organization_row(organization)
            self.db.add(organization)
            self.db.flush()
            logger.debug("Provisioned organization %s (id=%s)", org_name, organization.id)

        self.refs.organizations[org_name] = organization.id
        return organization.id

    def _get_or_create_client(self, name: str) -> Client:
        client = self.db.execute(select(Client).where(Client.name == name)).scalar_one_or_none()
        if client is None:
            validate_non_empty("name", name)
            client = Client(name=name)
            self.db.add(client)
            self.db.flush()
        return client
