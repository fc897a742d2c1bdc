import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import OperationalError

from sync_store.models import (
    DirectoryMapping,
    FileList,
    FileMapping,
    Group,
    GroupDependency,
    OwnerType,
    SyncConfig,
    Target,
    TargetFileListRef,
    Transform,
)
from sync_store.schemas import SyncConfigDocument
from sync_store.services import (
    CircularDependencyError,
    ImportFailedError,
    InvalidRepoFormatError,
    ReferenceKind,
    ReferenceNotFoundError,
    SyncConfigConverter,
    SyncConfigImporter,
    ValidationFailedError,
    calculate_config_metrics,
    enrich_config_fields,
)


def _count(db_session, model) -> int:
    return db_session.execute(select(func.count()).select_from(model)).scalar_one()


def _assert_nothing_persisted(db_session) -> None:
    for model in (SyncConfig, FileList, Group, Target, FileMapping, DirectoryMapping):
        assert _count(db_session, model) == 0, model.__tablename__


def test_import_persists_the_whole_tree(db_session, config_document):
    config = SyncConfigConverter(db_session).import_config(config_document)

    assert config.external_id == "platform-sync"
    assert config.version == 1
    assert _count(db_session, Group) == 3
    assert _count(db_session, Target) == 2
    assert _count(db_session, GroupDependency) == 3
    # Two list files plus one inline file on each target.
    assert _count(db_session, FileMapping) == 4
    assert _count(db_session, TargetFileListRef) == 2
    # Target transform plus two directory mapping transforms.
    assert _count(db_session, Transform) == 3


def test_round_trip_reproduces_the_document(db_session, config_document):
    converter = SyncConfigConverter(db_session)
    config = converter.import_config(config_document)

    exported = converter.export_config(config.external_id)

    assert exported == config_document
    assert exported.model_dump(by_alias=True) == config_document.model_dump(by_alias=True)


def test_import_rejects_cycles_without_writing(db_session, config_payload):
    config_payload["groups"][0]["dependsOn"] = ["C"]
    document = SyncConfigDocument.model_validate(config_payload)

    with pytest.raises(CircularDependencyError):
        SyncConfigConverter(db_session).import_config(document)

    _assert_nothing_persisted(db_session)


def test_import_rejects_missing_group_dependency(db_session, config_payload):
    config_payload["groups"][1]["dependsOn"] = ["ghost"]
    document = SyncConfigDocument.model_validate(config_payload)

    try:
        SyncConfigConverter(db_session).import_config(document)
    except ReferenceNotFoundError as exc:
        assert exc.kind is ReferenceKind.GROUP
    else:
        raise AssertionError("ReferenceNotFoundError was not raised")
    _assert_nothing_persisted(db_session)


def test_import_rejects_dangling_directory_list_reference(db_session, config_payload):
    config_payload["groups"][0]["targets"][0]["directoryListRefs"] = ["nope"]
    document = SyncConfigDocument.model_validate(config_payload)

    with pytest.raises(ReferenceNotFoundError):
        SyncConfigConverter(db_session).import_config(document)
    _assert_nothing_persisted(db_session)


def test_delete_flag_allows_empty_source(db_session, config_document):
    converter = SyncConfigConverter(db_session)
    converter.import_config(config_document)

    exported = converter.export_config("platform-sync")

    deletion = exported.file_lists[0].files[1]
    assert deletion.delete is True
    assert deletion.src == ""
    assert deletion.dest == "OLD_NOTICE.md"


def test_empty_source_without_delete_flag_rolls_back(db_session, config_payload):
    config_payload["groups"][1]["targets"][0]["files"].append({"src": "", "dest": "X.md"})
    document = SyncConfigDocument.model_validate(config_payload)

    with pytest.raises(ValidationFailedError):
        SyncConfigConverter(db_session).import_config(document)
    _assert_nothing_persisted(db_session)


def test_missing_source_branch_rolls_back(db_session, config_payload):
    config_payload["groups"][2]["source"]["branch"] = ""
    document = SyncConfigDocument.model_validate(config_payload)

    with pytest.raises(ValidationFailedError):
        SyncConfigConverter(db_session).import_config(document)
    _assert_nothing_persisted(db_session)


def test_malformed_repo_rolls_back(db_session, config_payload):
    config_payload["groups"][0]["targets"][0]["repo"] = "no-slash"
    document = SyncConfigDocument.model_validate(config_payload)

    with pytest.raises(InvalidRepoFormatError):
        SyncConfigConverter(db_session).import_config(document)
    _assert_nothing_persisted(db_session)


def test_reimport_is_idempotent(db_session, config_document):
    converter = SyncConfigConverter(db_session)
    converter.import_config(config_document)
    first = converter.export_config("platform-sync")
    counts = {model: _count(db_session, model) for model in (Group, Target, FileMapping, Transform)}

    converter.import_config(config_document)

    assert converter.export_config("platform-sync") == first
    assert {model: _count(db_session, model) for model in counts} == counts


def test_modified_reimport_replaces_changed_parts(db_session, config_payload):
    converter = SyncConfigConverter(db_session)
    converter.import_config(SyncConfigDocument.model_validate(config_payload))

    config_payload["groups"].pop()
    config_payload["groups"][1]["name"] = "Documentation"
    config_payload["groups"][1]["targets"][0]["files"] = [
        {"src": "docs/SECURITY.md", "dest": "SECURITY.md"},
        {"src": "docs/CONTRIBUTING.md", "dest": "CONTRIBUTING.md"},
    ]
    config_payload["fileLists"][0]["files"].pop()
    modified = SyncConfigDocument.model_validate(config_payload)

    converter.import_config(modified)

    assert converter.export_config("platform-sync") == modified
    assert db_session.execute(select(Group.external_id).order_by(Group.position)).scalars().all() == [
        "A",
        "B",
    ]
    assert _count(db_session, GroupDependency) == 1


def test_reimport_prunes_stale_lists(db_session, config_payload):
    converter = SyncConfigConverter(db_session)
    converter.import_config(SyncConfigDocument.model_validate(config_payload))

    config_payload["directoryLists"] = []
    config_payload["groups"][0]["targets"][0]["directoryListRefs"] = []
    converter.import_config(SyncConfigDocument.model_validate(config_payload))

    owned = db_session.execute(
        select(func.count())
        .select_from(DirectoryMapping)
        .where(DirectoryMapping.owner_type == OwnerType.DIRECTORY_LIST.value)
    ).scalar_one()
    assert owned == 0
    assert converter.export_config("platform-sync").directory_lists == []


def test_enrich_config_fields_derives_name_from_path():
    document = SyncConfigDocument()

    assert enrich_config_fields(document, "configs/team-sync.yaml") == ("team-sync", "team-sync")
    assert enrich_config_fields(document, "-") == ("stdin", "stdin")
    assert enrich_config_fields(document) == ("", "")

    named = SyncConfigDocument(id="given", name="Given")
    assert enrich_config_fields(named, "other.yaml") == ("Given", "given")


def test_import_uses_source_path_for_missing_id(db_session, config_payload):
    del config_payload["id"]
    del config_payload["name"]
    document = SyncConfigDocument.model_validate(config_payload)

    config = SyncConfigConverter(db_session).import_config(document, source_path="sync/platform.yml")

    assert config.external_id == "platform"
    assert config.name == "platform"
    assert config.extra_metadata["import"]["source_path"] == "sync/platform.yml"


def test_import_without_any_id_fails(db_session, config_payload):
    del config_payload["id"]
    document = SyncConfigDocument.model_validate(config_payload)

    with pytest.raises(ValidationFailedError):
        SyncConfigConverter(db_session).import_config(document)


def test_config_metrics(config_document):
    summary = calculate_config_metrics(config_document)

    assert summary["metrics"] == {
        "groups_count": 3,
        "file_lists_count": 1,
        "directory_lists_count": 1,
        "total_targets": 2,
        "total_files": 4,
        "total_directories": 2,
        "enabled_groups": 2,
        "disabled_groups": 1,
    }
    analysis = summary["config_analysis"]
    assert analysis["has_dependencies"] is True
    assert analysis["has_transforms"] is True
    assert analysis["has_module_configs"] is True
    assert analysis["source_repos"] == ["acme/templates"]
    assert analysis["target_repos_count"] == 2


def test_metrics_are_stored_with_the_config(db_session, config_document):
    config = SyncConfigConverter(db_session).import_config(config_document)

    assert config.extra_metadata["metrics"]["groups_count"] == 3
    assert config.extra_metadata["config_analysis"]["target_repos_count"] == 2


@pytest.fixture()
def fail_target_inserts():
    def _raise(mapper, connection, target):
        raise OperationalError("INSERT INTO sync_targets", {}, Exception("simulated failure"))

    def enable():
        event.listen(Target, "before_insert", _raise)

    yield enable
    if event.contains(Target, "before_insert", _raise):
        event.remove(Target, "before_insert", _raise)


def test_storage_failure_during_reimport_keeps_previous_state(
    db_session, config_payload, fail_target_inserts
):
    converter = SyncConfigConverter(db_session)
    converter.import_config(SyncConfigDocument.model_validate(config_payload))
    before = converter.export_config("platform-sync")

    config_payload["groups"][0]["name"] = "Renamed"
    fail_target_inserts()
    try:
        converter.import_config(SyncConfigDocument.model_validate(config_payload))
    except ImportFailedError as exc:
        assert exc.operation == "create"
        assert exc.entity == "target 'acme/service-one' of group"
        assert exc.external_id == "A"
        assert isinstance(exc.__cause__, OperationalError)
    else:
        raise AssertionError("ImportFailedError was not raised")

    assert converter.export_config("platform-sync") == before


def test_unexpected_error_rolls_back_partial_import(db_session, config_document, monkeypatch):
    def _explode(*_, **__):
        raise RuntimeError("simulated failure")

    monkeypatch.setattr(SyncConfigImporter, "_prune_stale_entries", _explode)

    with pytest.raises(RuntimeError):
        SyncConfigConverter(db_session).import_config(config_document)
    _assert_nothing_persisted(db_session)


def test_reimport_with_target_inserted_first(db_session, config_payload):
    converter = SyncConfigConverter(db_session)
    converter.import_config(SyncConfigDocument.model_validate(config_payload))

    config_payload["groups"][0]["targets"].insert(
        0,
        {
            "repo": "acme/service-zero",
            "branch": "main",
            "files": [{"src": "Makefile", "dest": "Makefile"}],
        },
    )
    modified = SyncConfigDocument.model_validate(config_payload)
    converter.import_config(modified)

    exported = converter.export_config("platform-sync")
    assert exported == modified
    assert [target.repo for target in exported.groups[0].targets] == [
        "acme/service-zero",
        "acme/service-one",
    ]
    positions = db_session.execute(
        select(Target.position)
        .join(Group, Target.group_id == Group.id)
        .where(Group.external_id == "A")
        .order_by(Target.position)
    ).scalars().all()
    assert positions == [0, 1]
