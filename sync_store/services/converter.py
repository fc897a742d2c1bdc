from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sync_store.config import Settings, get_settings
from sync_store.models import DirectoryList, FileList, Group, SyncConfig
from sync_store.schemas import GroupDocument, SyncConfigDocument
from sync_store.services import ownership
from sync_store.services.config_exporter import SyncConfigExporter
from sync_store.services.config_importer import SyncConfigImporter
from sync_store.services.dependency_graph import resolve_execution_order, validate_document
from sync_store.services.errors import ImportFailedError, RecordNotFoundError

logger = logging.getLogger(__name__)


class SyncConfigConverter:
    """Entry point for storing and rebuilding sync configuration documents."""

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    def import_config(
        self, document: SyncConfigDocument, source_path: str | None = None
    ) -> SyncConfig:
        return SyncConfigImporter(self.db).import_config(document, source_path=source_path)

    def export_config(self, external_id: str) -> SyncConfigDocument:
        return SyncConfigExporter(self.db, self.settings).export_config(external_id)

    def export_group(self, config_id: int, group_external_id: str) -> GroupDocument:
        return SyncConfigExporter(self.db, self.settings).export_group(config_id, group_external_id)

    def validate(self, document: SyncConfigDocument) -> list[GroupDocument]:
        """Check a document without touching storage and return its group execution order."""
        validate_document(document)
        return resolve_execution_order(document.groups)

    def delete_config(self, external_id: str, hard: bool = False) -> None:
        config = self.db.execute(
            select(SyncConfig).where(SyncConfig.external_id == external_id)
        ).scalar_one_or_none()
        if config is None or (config.deleted_at is not None and not hard):
            raise RecordNotFoundError(f"sync config {external_id!r} not found")

        try:
            if hard:
                ownership.delete_sync_config(self.db, config.id)
            else:
                self._mark_deleted(config.id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Deleting sync config %s failed: %s", external_id, exc)
            raise ImportFailedError("delete", "sync config", external_id) from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info("%s sync config %s", "Purged" if hard else "Soft deleted", external_id)

    def _mark_deleted(self, config_id: int) -> None:
        now = datetime.now(timezone.utc)
        for model in (Group, FileList, DirectoryList):
            self.db.execute(
                update(model)
                .where(model.config_id == config_id, model.deleted_at.is_(None))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
        self.db.execute(
            update(SyncConfig)
            .where(SyncConfig.id == config_id)
            .values(deleted_at=now)
            .execution_options(synchronize_session=False)
        )
