import pytest

from sync_store.schemas import GroupDocument, SyncConfigDocument
from sync_store.services import (
    CircularDependencyError,
    ReferenceKind,
    ReferenceNotFoundError,
    ValidationFailedError,
    resolve_execution_order,
    validate_document,
    validate_group_dependencies,
)


def _group(group_id: str, depends_on=None, priority: int = 0) -> GroupDocument:
    return GroupDocument(id=group_id, name=group_id, priority=priority, depends_on=depends_on or [])


def test_acyclic_dependencies_pass():
    validate_group_dependencies([_group("A"), _group("B", ["A"]), _group("C", ["A", "B"])])


def test_self_dependency_is_a_cycle():
    with pytest.raises(CircularDependencyError):
        validate_group_dependencies([_group("A", ["A"])])


def test_mutual_dependency_is_a_cycle():
    with pytest.raises(CircularDependencyError):
        validate_group_dependencies([_group("A", ["B"]), _group("B", ["A"])])


def test_long_cycle_is_detected():
    groups = [_group(f"g{index}", [f"g{index + 1}"]) for index in range(50)]
    groups.append(_group("g50", ["g0"]))
    with pytest.raises(CircularDependencyError):
        validate_group_dependencies(groups)


def test_deep_chain_does_not_recurse():
    groups = [_group("g0")] + [_group(f"g{index}", [f"g{index - 1}"]) for index in range(1, 5000)]
    validate_group_dependencies(groups)


def test_missing_dependency_raises_reference_error():
    try:
        validate_group_dependencies([_group("A", ["ghost"])])
    except ReferenceNotFoundError as exc:
        assert exc.kind is ReferenceKind.GROUP
        assert exc.external_id == "ghost"
        assert "'A'" in str(exc)
    else:
        raise AssertionError("ReferenceNotFoundError was not raised")


def test_execution_order_respects_dependencies():
    order = resolve_execution_order([_group("C", ["A", "B"]), _group("B", ["A"]), _group("A")])
    assert [group.id for group in order] == ["A", "B", "C"]


def test_execution_order_prefers_higher_priority_then_id():
    order = resolve_execution_order(
        [
            _group("low", priority=1),
            _group("high", priority=9),
            _group("also-low", priority=1),
            _group("after-high", ["high"], priority=5),
        ]
    )
    assert [group.id for group in order] == ["high", "after-high", "also-low", "low"]


def test_execution_order_rejects_cycles():
    with pytest.raises(CircularDependencyError):
        resolve_execution_order([_group("A", ["B"]), _group("B", ["A"])])


def test_validate_document_rejects_duplicate_group_ids():
    document = SyncConfigDocument(id="cfg", groups=[_group("A"), _group("A")])
    with pytest.raises(ValidationFailedError):
        validate_document(document)


def test_validate_document_rejects_unknown_list_reference(config_document):
    config_document.groups[0].targets[0].file_list_refs.append("missing")
    try:
        validate_document(config_document)
    except ReferenceNotFoundError as exc:
        assert exc.kind is ReferenceKind.FILE_LIST
        assert exc.external_id == "missing"
    else:
        raise AssertionError("ReferenceNotFoundError was not raised")


def test_validate_document_rejects_duplicate_refs_on_a_target(config_document):
    config_document.groups[0].targets[0].directory_list_refs.append("ci")
    with pytest.raises(ValidationFailedError):
        validate_document(config_document)
