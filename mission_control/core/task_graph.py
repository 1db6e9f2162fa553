"""
Task Dependency Graph
=====================

Resolves task readiness for one mission using a NetworkX DAG.

Edges point from a dependency to the task that waits on it. Cycles are
rejected when tasks are created; at runtime the graph only answers which
pending tasks may advance to `ready`. Ordering always follows the mission's
task-list insertion order; resolution never reorders tasks.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import networkx as nx  # type: ignore

from mission_control.models.entities import Task, TaskStatus


class TaskGraph:
    """
    Dependency graph for the tasks of a single mission.

    Enables:
    - Cycle detection before tasks are persisted
    - Readiness checks (all deps complete)
    - Deterministic topological ordering with insertion-order tie-break
    """

    def __init__(self) -> None:
        """Initialize empty DAG."""
        self.graph = nx.DiGraph()
        self._order: dict[str, int] = {}

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> "TaskGraph":
        """Build a graph from tasks given in mission insertion order."""
        graph = cls()
        for task in tasks:
            graph.add_task(task)
        return graph

    def add_task(self, task: Task) -> None:
        """Add task to graph, replacing any previous version of it."""
        if task.id not in self._order:
            self._order[task.id] = len(self._order)
        self.graph.add_node(task.id, task=task)

        for dep_id in task.deps:
            if dep_id not in self.graph:
                # Placeholder until the dependency itself is added
                self.graph.add_node(dep_id)
            self.graph.add_edge(dep_id, task.id)

    def is_cyclic(self) -> bool:
        """Check for circular dependencies."""
        return not nx.is_directed_acyclic_graph(self.graph)

    def find_cycle(self) -> Optional[List[str]]:
        """Return the task ids along one cycle, or None if the graph is a DAG."""
        try:
            edges = nx.find_cycle(self.graph, orientation="original")
        except nx.NetworkXNoCycle:
            return None
        return [edge[0] for edge in edges] + [edges[0][0]]

    def get_task(self, task_id: str) -> Optional[Task]:
        """Get a specific task by ID."""
        if task_id in self.graph:
            return self.graph.nodes[task_id].get("task")
        return None

    def get_all_tasks(self) -> List[Task]:
        """All tasks in insertion order."""
        return [
            self.graph.nodes[task_id]["task"]
            for task_id in sorted(self._order, key=self._order.__getitem__)
        ]

    def missing_dependencies(self) -> List[str]:
        """Dependency ids referenced by some task but absent from the graph."""
        return [
            node_id
            for node_id in self.graph.nodes()
            if "task" not in self.graph.nodes[node_id]
        ]

    def unmet_dependencies(self, task_id: str) -> List[str]:
        """Deps of `task_id` that are missing or not `complete`, in declared order."""
        task = self.get_task(task_id)
        if task is None:
            raise KeyError(task_id)
        unmet = []
        for dep_id in task.deps:
            dep = self.get_task(dep_id)
            if dep is None or dep.status != TaskStatus.COMPLETE:
                unmet.append(dep_id)
        return unmet

    def is_satisfied(self, task_id: str) -> bool:
        return not self.unmet_dependencies(task_id)

    def ready_candidates(self) -> List[Task]:
        """
        Pending tasks whose dependencies are all complete.

        Returned in insertion order; the caller promotes them to `ready`.
        """
        return [
            task
            for task in self.get_all_tasks()
            if task.status == TaskStatus.PENDING and self.is_satisfied(task.id)
        ]

    def downstream_of(self, task_id: str) -> List[str]:
        """Ids of tasks that directly depend on `task_id`, in insertion order."""
        if task_id not in self.graph:
            return []
        successors = set(self.graph.successors(task_id))
        return [tid for tid in sorted(self._order, key=self._order.__getitem__) if tid in successors]

    def execution_order(self) -> List[str]:
        """
        Topological order; ties broken by insertion order.

        Raises:
            ValueError: If the graph contains a cycle
        """
        if self.is_cyclic():
            raise ValueError("task graph contains a cycle")
        position = self._order.get
        return [
            node_id
            for node_id in nx.lexicographical_topological_sort(
                self.graph, key=lambda n: position(n, len(self._order))
            )
            if node_id in self._order
        ]


def check_acyclic(existing: Iterable[Task], candidates: Iterable[Task]) -> Optional[List[str]]:
    """
    Check that adding `candidates` to a mission keeps its graph acyclic.

    Returns:
        The offending cycle as a list of task ids, or None
    """
    graph = TaskGraph.from_tasks(existing)
    for task in candidates:
        graph.add_task(task)
    return graph.find_cycle()
