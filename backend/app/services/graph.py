"""
Dependency graph operations using NetworkX.

This module handles:
- Cycle detection for dependency validation
- Blocked/ready status of a task
- Topological order, critical path and depth statistics of a project
- The dependent_task_ids mirror kept alongside `dependencies`

Every function takes the full task list of the validation scope and
rebuilds the graph from the tasks' current `dependencies`. No graph is
cached between calls. IDs that do not resolve to a task in the list
(e.g. a deleted blocker) are skipped, never raised on.
"""

import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Literal, Sequence, TypeVar

import networkx as nx

from app.schemas.task import TaskRead
from app.logging_config import get_logger

logger = get_logger(__name__)

SELF_DEPENDENCY_ERROR = "A task cannot depend on itself"
CIRCULAR_DEPENDENCY_ERROR = "This dependency would create a circular reference"

MirrorAction = Literal["add", "remove"]
IdT = TypeVar("IdT", uuid.UUID, str)


@dataclass
class DependencyValidationResult:
    """Outcome of checking a proposed edge. Never raised, always returned."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    circular_dependencies: list[list[uuid.UUID]] | None = None


@dataclass
class DependencyStatus:
    """Resolved blocked/ready state of a single task."""
    is_blocked: bool
    blocking_tasks: list[TaskRead]
    dependent_tasks: list[TaskRead]
    can_start: bool


@dataclass
class DependencyStats:
    total_tasks: int
    tasks_with_dependencies: int
    blocked_tasks: int
    average_dependencies_per_task: float
    max_dependency_depth: int


def build_dependency_graph(tasks: Iterable[TaskRead]) -> nx.DiGraph:
    """
    Build a NetworkX DiGraph from the tasks' `dependencies`.

    Returns a graph where:
    - Nodes are task IDs (tasks with at least one dependency, plus their blockers)
    - Edges go from dependent -> blocking
    """
    graph = nx.DiGraph()

    for task in tasks:
        if not task.dependencies:
            continue
        graph.add_node(task.id)
        for blocking_id in task.dependencies:
            graph.add_edge(task.id, blocking_id)

    return graph


def find_cycles(
    graph: nx.DiGraph,
    roots: Sequence[uuid.UUID] = (),
) -> list[list[uuid.UUID]]:
    """
    Find cycles with a depth-first search.

    `visited` holds every node reached so far and `recursion_stack` only the
    nodes on the current path. Reaching a neighbor that is on the stack
    closes a cycle, reported as the current path from that neighbor to the
    current node with the neighbor repeated at the end.

    `roots` are searched first, in order, before the remaining nodes.

    The search keeps an explicit stack of (node, successor iterator)
    frames, one per entry of `current_path`, so chain length is not
    limited by the interpreter's recursion depth.
    """
    cycles: list[list[uuid.UUID]] = []
    visited: set[uuid.UUID] = set()
    recursion_stack: set[uuid.UUID] = set()
    current_path: list[uuid.UUID] = []

    def enter(node: uuid.UUID) -> tuple[uuid.UUID, Iterator[uuid.UUID]]:
        visited.add(node)
        recursion_stack.add(node)
        current_path.append(node)
        return node, iter(graph.successors(node))

    for root in [*roots, *graph.nodes]:
        if root not in graph or root in visited:
            continue

        stack = [enter(root)]
        while stack:
            node, successors = stack[-1]
            for neighbor in successors:
                if neighbor not in visited:
                    stack.append(enter(neighbor))
                    break
                if neighbor in recursion_stack:
                    cycle_start = current_path.index(neighbor)
                    cycles.append(current_path[cycle_start:] + [neighbor])
            else:
                stack.pop()
                current_path.pop()
                recursion_stack.discard(node)

    return cycles


def validate_dependency(
    dependent_task_id: uuid.UUID,
    blocking_task_id: uuid.UUID,
    all_tasks: Iterable[TaskRead],
) -> DependencyValidationResult:
    """
    Check whether `dependent_task_id` may depend on `blocking_task_id`.

    Algorithm:
    1. Reject a self-dependency without building a graph
    2. Build the graph for the scope and add the proposed edge
    3. Search for cycles, starting from the dependent task so a cycle
       closed by the new edge is reported as [dependent, blocking, ..., dependent]

    Pure: nothing is persisted or mutated.
    """
    if dependent_task_id == blocking_task_id:
        return DependencyValidationResult(valid=False, errors=[SELF_DEPENDENCY_ERROR])

    graph = build_dependency_graph(all_tasks)
    graph.add_edge(dependent_task_id, blocking_task_id)

    cycles = find_cycles(graph, roots=[dependent_task_id])
    if cycles:
        logger.debug(
            f"Edge {dependent_task_id} -> {blocking_task_id} closes {len(cycles)} cycle(s)"
        )
        return DependencyValidationResult(
            valid=False,
            errors=[CIRCULAR_DEPENDENCY_ERROR],
            circular_dependencies=cycles,
        )

    return DependencyValidationResult(valid=True)


def _task_map(tasks: Iterable[TaskRead]) -> dict[uuid.UUID, TaskRead]:
    return {task.id: task for task in tasks}


def get_dependency_status(task: TaskRead, all_tasks: Iterable[TaskRead]) -> DependencyStatus:
    """
    Resolve a task's blockers and dependents and derive whether it can start.

    A task is blocked iff at least one resolved blocker is not completed.
    """
    task_map = _task_map(all_tasks)

    blocking_tasks = [task_map[i] for i in task.dependencies if i in task_map]
    dependent_tasks = [task_map[i] for i in task.dependent_task_ids if i in task_map]
    is_blocked = any(not blocker.completed for blocker in blocking_tasks)

    return DependencyStatus(
        is_blocked=is_blocked,
        blocking_tasks=blocking_tasks,
        dependent_tasks=dependent_tasks,
        can_start=not is_blocked,
    )


def calculate_blocked_status(task: TaskRead, all_tasks: Iterable[TaskRead]) -> bool:
    """True if any resolvable dependency of `task` is incomplete."""
    if not task.dependencies:
        return False
    task_map = _task_map(all_tasks)
    return any(
        not task_map[dep_id].completed
        for dep_id in task.dependencies
        if dep_id in task_map
    )


def are_all_dependencies_complete(task: TaskRead, all_tasks: Iterable[TaskRead]) -> bool:
    """
    Strict variant of the blocked check: a dependency that no longer
    resolves counts as incomplete.
    """
    task_map = _task_map(all_tasks)
    return all(
        dep_id in task_map and task_map[dep_id].completed
        for dep_id in task.dependencies
    )


def get_blocked_tasks(task_id: uuid.UUID, all_tasks: Iterable[TaskRead]) -> list[TaskRead]:
    """Incomplete tasks that list `task_id` among their dependencies."""
    return [
        task for task in all_tasks
        if task_id in task.dependencies and not task.completed
    ]


def get_tasks_unblocked_by(task_id: uuid.UUID, all_tasks: Iterable[TaskRead]) -> list[TaskRead]:
    """
    Tasks that would become unblocked once `task_id` is completed: those
    that depend on it and whose other dependencies all resolve to
    completed tasks.
    """
    all_tasks = list(all_tasks)
    task_map = _task_map(all_tasks)
    return [
        task for task in all_tasks
        if task_id in task.dependencies
        and all(
            dep_id in task_map and task_map[dep_id].completed
            for dep_id in task.dependencies
            if dep_id != task_id
        )
    ]


def get_dependency_chain(task: TaskRead, all_tasks: Iterable[TaskRead]) -> list[TaskRead]:
    """All transitive blockers of `task`, depth-first, each listed once."""
    task_map = _task_map(all_tasks)
    chain: list[TaskRead] = []
    seen: set[uuid.UUID] = {task.id}

    stack = [iter(task.dependencies)]
    while stack:
        for dep_id in stack[-1]:
            blocker = task_map.get(dep_id)
            if blocker is None or blocker.id in seen:
                continue
            seen.add(blocker.id)
            chain.append(blocker)
            stack.append(iter(blocker.dependencies))
            break
        else:
            stack.pop()

    return chain


def get_topological_order(tasks: Sequence[TaskRead]) -> list[TaskRead]:
    """
    Order tasks so every task comes after all of its resolved dependencies.

    Edges run blocking -> dependent, so a task's in-degree is the number of
    its unresolved-by-order blockers and Kahn's algorithm emits blockers
    first. If a cycle slipped into stored data, the input order is returned
    unchanged: no exception, no dropped tasks.
    """
    task_map = _task_map(tasks)

    graph = nx.DiGraph()
    graph.add_nodes_from(task_map)
    for task in tasks:
        for blocking_id in task.dependencies:
            if blocking_id in task_map:
                graph.add_edge(blocking_id, task.id)

    try:
        order = list(nx.topological_sort(graph))
    except nx.NetworkXUnfeasible:
        logger.warning("Circular dependency detected in topological sort; keeping input order")
        return list(tasks)

    if len(order) != len(tasks):
        # Duplicate IDs in the input
        logger.warning("Task list contains duplicate IDs; keeping input order")
        return list(tasks)

    return [task_map[task_id] for task_id in order]


def get_critical_path(tasks: Sequence[TaskRead]) -> list[TaskRead]:
    """
    Longest chain of blocking dependencies in the scope.

    The chain is listed from the task that ends it back to its root
    blocker: [task, its blocker, that blocker's blocker, ...]. A task may
    appear in chains from different roots but never twice in one chain.
    On ties the first chain found (input order, then dependency order) wins.
    """
    chain_from = _longest_chain_finder(tasks)

    longest: list[TaskRead] = []
    for task in tasks:
        chain = chain_from(task)
        if len(chain) > len(longest):
            longest = chain

    return longest


def get_dependency_depth(task: TaskRead, all_tasks: Iterable[TaskRead]) -> int:
    """
    Number of blocking levels below `task`: 0 with no resolved
    dependencies, otherwise one more than its deepest blocker.
    """
    chain_from = _longest_chain_finder([*all_tasks, task])
    return len(chain_from(task)) - 1


def get_dependency_stats(tasks: Sequence[TaskRead]) -> DependencyStats:
    """Summary counts of a project's dependency graph."""
    chain_from = _longest_chain_finder(tasks)
    total_dependencies = sum(len(task.dependencies) for task in tasks)

    return DependencyStats(
        total_tasks=len(tasks),
        tasks_with_dependencies=sum(1 for task in tasks if task.dependencies),
        blocked_tasks=sum(1 for task in tasks if task.is_blocked),
        average_dependencies_per_task=total_dependencies / len(tasks) if tasks else 0.0,
        max_dependency_depth=max((len(chain_from(task)) - 1 for task in tasks), default=0),
    )


def _longest_chain_finder(tasks: Iterable[TaskRead]) -> Callable[[TaskRead], list[TaskRead]]:
    """
    Return a function giving the longest chain of resolved blockers that
    starts at a task of `tasks`, the task itself first.
    """
    task_map = _task_map(tasks)

    graph = nx.DiGraph()
    graph.add_nodes_from(task_map)
    for task in task_map.values():
        for blocking_id in task.dependencies:
            if blocking_id in task_map:
                graph.add_edge(blocking_id, task.id)

    if nx.is_directed_acyclic_graph(graph):
        return _longest_chains_acyclic(graph, task_map)

    logger.warning("Circular dependency detected in stored data; searching chains per path")

    def chain_from(task: TaskRead) -> list[TaskRead]:
        return _longest_chain_cyclic(task, task_map)

    return chain_from


def _longest_chains_acyclic(graph: nx.DiGraph, task_map: dict[uuid.UUID, TaskRead]):
    """
    In a DAG the longest chain below a task does not depend on the path
    taken to reach it. Blockers come first in topological order, so each
    task's chain length is known once all of its blockers have one.
    """
    length: dict[uuid.UUID, int] = {}
    next_id: dict[uuid.UUID, uuid.UUID | None] = {}

    for task_id in nx.topological_sort(graph):
        length[task_id], next_id[task_id] = 1, None
        for dep_id in task_map[task_id].dependencies:
            if dep_id in length and length[dep_id] + 1 > length[task_id]:
                length[task_id], next_id[task_id] = length[dep_id] + 1, dep_id

    def chain_from(task: TaskRead) -> list[TaskRead]:
        chain = []
        task_id = task.id
        while task_id is not None:
            chain.append(task_map[task_id])
            task_id = next_id[task_id]
        return chain

    return chain_from


def _longest_chain_cyclic(start: TaskRead, task_map: dict[uuid.UUID, TaskRead]) -> list[TaskRead]:
    """
    Exhaustive search that never revisits a task on the current path.
    Only reached when stored data already contains a cycle.

    Chains are built as nested (task, rest) pairs so extending one by a
    task does not copy it.
    """
    on_path = {start.id}
    # Frames are [task, dependency iterator, best length, best chain]
    stack = [[start, iter(start.dependencies), 1, (start, None)]]

    while True:
        task, dependencies, length, best = stack[-1]
        for dep_id in dependencies:
            blocker = task_map.get(dep_id)
            if blocker is None or blocker.id in on_path:
                continue
            on_path.add(blocker.id)
            stack.append([blocker, iter(blocker.dependencies), 1, (blocker, None)])
            break
        else:
            stack.pop()
            on_path.discard(task.id)
            if stack:
                parent = stack[-1]
                if length + 1 > parent[2]:
                    parent[2], parent[3] = length + 1, (parent[0], best)
                continue

            chain = []
            while best is not None:
                task, best = best
                chain.append(task)
            return chain


def update_dependent_task_ids(
    tasks: Sequence[TaskRead],
    dependent_task_id: uuid.UUID,
    blocking_task_id: uuid.UUID,
    action: MirrorAction,
) -> list[TaskRead]:
    """
    Return a copy of `tasks` where the blocking task's `dependent_task_ids`
    has `dependent_task_id` added or removed (set semantics).
    """
    updated = []
    for task in tasks:
        if task.id == blocking_task_id:
            dependent_ids = apply_mirror_change(task.dependent_task_ids, dependent_task_id, action)
            task = task.model_copy(update={"dependent_task_ids": dependent_ids})
        updated.append(task)
    return updated


def link_tasks(
    tasks: Sequence[TaskRead],
    dependent_task_id: uuid.UUID,
    blocking_task_id: uuid.UUID,
    action: MirrorAction,
) -> list[TaskRead]:
    """Apply an edge change to both sides: `dependencies` and its mirror."""
    updated = []
    for task in tasks:
        if task.id == dependent_task_id:
            dependencies = apply_mirror_change(task.dependencies, blocking_task_id, action)
            task = task.model_copy(update={"dependencies": dependencies})
        updated.append(task)
    return update_dependent_task_ids(updated, dependent_task_id, blocking_task_id, action)


def apply_mirror_change(ids: Iterable[IdT], task_id: IdT, action: MirrorAction) -> list[IdT]:
    """
    Add or remove one ID in a `dependencies` or `dependent_task_ids` list
    with set semantics, keeping first-seen order. Works on UUIDs in
    snapshots and on the string IDs stored in task rows.
    """
    result = list(dict.fromkeys(ids))
    if action == "add":
        if task_id not in result:
            result.append(task_id)
    else:
        result = [i for i in result if i != task_id]
    return result
