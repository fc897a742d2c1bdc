from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from sync_store.database import get_db
from sync_store.schemas import (
    ExecutionOrderItem,
    GroupDocument,
    SyncConfigDocument,
    SyncConfigRead,
    ValidationReport,
)
from sync_store.services import (
    CircularDependencyError,
    InvalidRepoFormatError,
    RecordNotFoundError,
    ReferenceNotFoundError,
    SyncConfigConverter,
    SyncStoreError,
    ValidationFailedError,
)

router = APIRouter(prefix="/sync-configs", tags=["Sync Configs"])

_BAD_REQUEST_ERRORS = (
    ReferenceNotFoundError,
    CircularDependencyError,
    InvalidRepoFormatError,
    ValidationFailedError,
)


def _to_http_error(exc: SyncStoreError) -> HTTPException:
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, _BAD_REQUEST_ERRORS):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("/import", response_model=SyncConfigRead, status_code=status.HTTP_201_CREATED)
def import_sync_config(
    payload: SyncConfigDocument,
    source_path: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> SyncConfigRead:
    converter = SyncConfigConverter(db)
    try:
        config = converter.import_config(payload, source_path=source_path)
    except SyncStoreError as exc:
        raise _to_http_error(exc) from exc
    db.refresh(config)
    return SyncConfigRead.model_validate(config)


@router.post("/validate", response_model=ValidationReport)
def validate_sync_config(
    payload: SyncConfigDocument, db: Session = Depends(get_db)
) -> ValidationReport:
    converter = SyncConfigConverter(db)
    try:
        order = converter.validate(payload)
    except SyncStoreError as exc:
        raise _to_http_error(exc) from exc
    return ValidationReport(
        valid=True,
        execution_order=[
            ExecutionOrderItem(id=group.id, name=group.name, priority=group.priority, order=index)
            for index, group in enumerate(order, start=1)
        ],
    )


@router.get("/{external_id}", response_model=SyncConfigDocument)
def export_sync_config(external_id: str, db: Session = Depends(get_db)) -> SyncConfigDocument:
    converter = SyncConfigConverter(db)
    try:
        return converter.export_config(external_id)
    except SyncStoreError as exc:
        raise _to_http_error(exc) from exc


@router.get("/{config_id}/groups/{group_external_id}", response_model=GroupDocument)
def export_sync_group(
    config_id: int, group_external_id: str, db: Session = Depends(get_db)
) -> GroupDocument:
    converter = SyncConfigConverter(db)
    try:
        return converter.export_group(config_id, group_external_id)
    except SyncStoreError as exc:
        raise _to_http_error(exc) from exc


@router.delete("/{external_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_sync_config(
    external_id: str,
    hard: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> None:
    converter = SyncConfigConverter(db)
    try:
        converter.delete_config(external_id, hard=hard)
    except SyncStoreError as exc:
        raise _to_http_error(exc) from exc
