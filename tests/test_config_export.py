from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from sync_store.config import get_settings
from sync_store.models import (
    Client,
    FileList,
    FileMapping,
    Group,
    OwnerType,
    Repo,
    Source,
    SyncConfig,
    Target,
    Transform,
)
from sync_store.schemas import SyncConfigDocument
from sync_store.services import (
    ExportFailedError,
    RecordNotFoundError,
    SyncConfigConverter,
    SyncConfigExporter,
)


def _count(db_session, model) -> int:
    return db_session.execute(select(func.count()).select_from(model)).scalar_one()


def test_export_unknown_config_raises(db_session):
    with pytest.raises(RecordNotFoundError):
        SyncConfigConverter(db_session).export_config("missing")


def test_export_sorts_children_by_position(db_session):
    config = SyncConfig(external_id="ordered", name="Ordered", version=1)
    db_session.add(config)
    db_session.flush()
    file_list = FileList(config_id=config.id, external_id="docs", name="Docs")
    db_session.add(file_list)
    db_session.flush()
    for position, dest in ((2, "c.md"), (0, "a.md"), (1, "b.md")):
        db_session.add(
            FileMapping(
                owner_type=OwnerType.FILE_LIST.value,
                owner_id=file_list.id,
                src=f"src/{dest}",
                dest=dest,
                position=position,
            )
        )
    db_session.commit()

    exported = SyncConfigConverter(db_session).export_config("ordered")

    assert [mapping.dest for mapping in exported.file_lists[0].files] == ["a.md", "b.md", "c.md"]


def test_shared_list_scenario(db_session):
    document = SyncConfigDocument.model_validate(
        {
            "id": "shared-example",
            "name": "Shared example",
            "fileLists": [
                {"id": "shared", "name": "Shared", "files": [{"src": "x", "dest": "x"}]}
            ],
            "groups": [
                {
                    "id": "g",
                    "name": "G",
                    "source": {"repo": "acme/templates", "branch": "main"},
                    "targets": [
                        {
                            "repo": "acme/service",
                            "files": [{"src": "y", "dest": "y"}],
                            "fileListRefs": ["shared"],
                        }
                    ],
                }
            ],
        }
    )
    converter = SyncConfigConverter(db_session)
    converter.import_config(document)

    exported = converter.export_config("shared-example")

    target = exported.groups[0].targets[0]
    assert target.file_list_refs == ["shared"]
    assert [(mapping.src, mapping.dest) for mapping in target.files] == [("y", "y")]
    assert [(mapping.src, mapping.dest) for mapping in exported.file_lists[0].files] == [("x", "x")]


def test_depends_on_order_is_preserved(db_session, config_document):
    converter = SyncConfigConverter(db_session)
    converter.import_config(config_document)

    exported = converter.export_config("platform-sync")

    depends_on = {group.id: group.depends_on for group in exported.groups}
    assert depends_on == {"A": [], "B": ["A"], "C": ["A", "B"]}


def test_export_group(db_session, config_document):
    converter = SyncConfigConverter(db_session)
    config = converter.import_config(config_document)

    group = converter.export_group(config.id, "B")

    assert group == config_document.groups[1]
    with pytest.raises(RecordNotFoundError):
        converter.export_group(config.id, "missing")


def test_unresolved_list_reference_exports_placeholder(db_session, config_document):
    converter = SyncConfigConverter(db_session)
    converter.import_config(config_document)
    shared_id = db_session.execute(
        select(FileList.id).where(FileList.external_id == "shared")
    ).scalar_one()
    db_session.execute(
        update(FileList)
        .where(FileList.id == shared_id)
        .values(deleted_at=datetime.now(timezone.utc))
    )
    db_session.commit()

    exported = converter.export_config("platform-sync")

    assert exported.file_lists == []
    assert exported.groups[0].targets[0].file_list_refs == [f"unknown-file-list-{shared_id}"]


def test_strict_reference_export_fails(db_session, config_document):
    SyncConfigConverter(db_session).import_config(config_document)
    db_session.execute(
        update(FileList)
        .where(FileList.external_id == "shared")
        .values(deleted_at=datetime.now(timezone.utc))
    )
    db_session.commit()
    settings = get_settings().model_copy(update={"strict_reference_export": True})

    with pytest.raises(ExportFailedError):
        SyncConfigExporter(db_session, settings).export_config("platform-sync")


def test_soft_delete_hides_config_until_reimport(db_session, config_document):
    converter = SyncConfigConverter(db_session)
    converter.import_config(config_document)

    converter.delete_config("platform-sync")

    with pytest.raises(RecordNotFoundError):
        converter.export_config("platform-sync")
    with pytest.raises(RecordNotFoundError):
        converter.delete_config("platform-sync")
    assert _count(db_session, Group) == 3

    converter.import_config(config_document)
    assert converter.export_config("platform-sync") == config_document


def test_hard_delete_removes_owned_rows(db_session, config_document):
    converter = SyncConfigConverter(db_session)
    converter.import_config(config_document)

    converter.delete_config("platform-sync", hard=True)

    for model in (SyncConfig, Group, Source, Target, FileList, FileMapping, Transform):
        assert _count(db_session, model) == 0, model.__tablename__
    # Repositories are shared between configs and survive.
    assert _count(db_session, Repo) == 3
    assert _count(db_session, Client) == 1


def test_storage_failure_during_export_is_wrapped(db_session, config_document, monkeypatch):
    converter = SyncConfigConverter(db_session)
    config_id = converter.import_config(config_document).id

    def _fail(*_, **__):
        raise OperationalError("SELECT", {}, Exception("simulated failure"))

    monkeypatch.setattr(db_session, "execute", _fail)

    with pytest.raises(ExportFailedError) as excinfo:
        converter.export_config("platform-sync")
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert "platform-sync" in str(excinfo.value)

    with pytest.raises(ExportFailedError) as excinfo:
        converter.export_group(config_id, "A")
    assert "'A'" in str(excinfo.value)
