from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Iterable, List

from sync_store.schemas import GroupDocument, SyncConfigDocument
from sync_store.services.errors import (
    CircularDependencyError,
    ReferenceKind,
    ReferenceNotFoundError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)


class _Color(Enum):
    UNVISITED = 0
    ON_STACK = 1
    FINISHED = 2


def build_adjacency(groups: Iterable[GroupDocument]) -> dict[str, list[str]]:
    return {group.id: list(group.depends_on) for group in groups}


def validate_group_dependencies(groups: Iterable[GroupDocument]) -> None:
    """Check that every dependency exists and that the dependency graph is acyclic.

    Works on the candidate groups only and never touches storage, so it is safe
    to run before a transaction is opened or as often as needed.
    """
    adjacency = build_adjacency(groups)

    for group_id, depends_on in adjacency.items():
        for dependency_id in depends_on:
            if dependency_id not in adjacency:
                raise ReferenceNotFoundError(
                    ReferenceKind.GROUP,
                    dependency_id,
                    detail=f"group {group_id!r} depends on a missing group",
                )

    colors = {group_id: _Color.UNVISITED for group_id in adjacency}

    for root in adjacency:
        if colors[root] is not _Color.UNVISITED:
            continue
        # Iterative DFS: each frame is (node, iterator over its neighbours).
        colors[root] = _Color.ON_STACK
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node, neighbours = stack[-1]
            advanced = False
            for neighbour in neighbours:
                color = colors[neighbour]
                if color is _Color.ON_STACK:
                    raise CircularDependencyError(
                        f"circular dependency detected in group dependencies (via {neighbour!r})"
                    )
                if color is _Color.UNVISITED:
                    colors[neighbour] = _Color.ON_STACK
                    stack.append((neighbour, iter(adjacency[neighbour])))
                    advanced = True
                    break
            if not advanced:
                colors[node] = _Color.FINISHED
                stack.pop()


def _ensure_unique(label: str, values: Iterable[str]) -> None:
    seen: set[str] = set()
    for value in values:
        if value in seen:
            raise ValidationFailedError(f"duplicate {label} {value!r}")
        seen.add(value)


def validate_document(document: SyncConfigDocument) -> None:
    """Run every structural check that does not need the database."""
    _ensure_unique("group id", (group.id for group in document.groups))
    _ensure_unique("file list id", (file_list.id for file_list in document.file_lists))
    _ensure_unique(
        "directory list id",
        (directory_list.id for directory_list in document.directory_lists),
    )
    validate_group_dependencies(document.groups)

    file_list_ids = {file_list.id for file_list in document.file_lists}
    directory_list_ids = {directory_list.id for directory_list in document.directory_lists}
    for group in document.groups:
        for target in group.targets:
            for ref in target.file_list_refs:
                if ref not in file_list_ids:
                    raise ReferenceNotFoundError(
                        ReferenceKind.FILE_LIST,
                        ref,
                        detail=f"target {target.repo!r} in group {group.id!r}",
                    )
            for ref in target.directory_list_refs:
                if ref not in directory_list_ids:
                    raise ReferenceNotFoundError(
                        ReferenceKind.DIRECTORY_LIST,
                        ref,
                        detail=f"target {target.repo!r} in group {group.id!r}",
                    )
            _ensure_unique(f"file list reference on target {target.repo!r}", target.file_list_refs)
            _ensure_unique(
                f"directory list reference on target {target.repo!r}", target.directory_list_refs
            )


def resolve_execution_order(groups: Iterable[GroupDocument]) -> List[GroupDocument]:
    """Order groups so that every group comes after the groups it depends on.

    Among groups that are ready at the same time, higher priority runs first,
    then the external id breaks ties.
    """
    groups = list(groups)
    validate_group_dependencies(groups)

    by_id = {group.id: group for group in groups}
    indegree: dict[str, int] = {group.id: len(set(group.depends_on)) for group in groups}
    dependents: dict[str, list[str]] = {group.id: [] for group in groups}
    for group in groups:
        for dependency_id in set(group.depends_on):
            dependents[dependency_id].append(group.id)

    def _sort_key(group_id: str) -> tuple[int, str]:
        return (-by_id[group_id].priority, group_id)

    queue: deque[str] = deque(
        sorted((group_id for group_id, degree in indegree.items() if degree == 0), key=_sort_key)
    )
    order: List[GroupDocument] = []

    while queue:
        current = queue.popleft()
        order.append(by_id[current])
        ready = []
        for successor in dependents[current]:
            indegree[successor] -= 1
            if indegree[successor] == 0:
                ready.append(successor)
        if ready:
            queue = deque(sorted([*queue, *ready], key=_sort_key))

    if len(order) != len(by_id):
        raise CircularDependencyError("dependency graph contains a cycle")

    for index, group in enumerate(order, start=1):
        logger.debug(
            "Group execution order %d: %s (priority=%d, depends_on=%s)",
            index,
            group.id,
            group.priority,
            group.depends_on,
        )
    return order
