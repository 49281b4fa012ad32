"""Graph — subtask dependency graph with topological ordering and ready frontiers."""

from collections.abc import Iterable
from typing import Self

from taskteam.core.types import Subtask
from taskteam.errors import CyclicDependencyError


class Graph:
    """Directed graph of subtasks keyed by id, in declaration order.

    Subtasks are added with ``add_subtask``, edges with ``add_edge(source, target)``
    meaning *source must complete before target starts*.
    """

    def __init__(self) -> None:
        self._subtasks: dict[str, Subtask] = {}
        # subtask_id -> predecessor ids, in insertion order
        self._reverse: dict[str, dict[str, None]] = {}

    @classmethod
    def from_subtasks(cls, subtasks: Iterable[Subtask]) -> "Graph":
        """Build a graph from subtasks and their declared dependencies.

        Raises ``ValueError`` for duplicate ids or dependencies on unknown subtasks.
        """
        graph = cls()
        subtasks = list(subtasks)
        for subtask in subtasks:
            if subtask.id in graph:
                raise ValueError(f"Duplicate subtask id: {subtask.id!r}")
            graph.add_subtask(subtask)
        for subtask in subtasks:
            for dep in subtask.dependencies:
                graph.add_edge(dep, subtask.id)
        return graph

    def add_subtask(self, subtask: Subtask) -> Self:
        self._subtasks[subtask.id] = subtask
        self._reverse.setdefault(subtask.id, {})
        return self

    def add_edge(self, source: str, target: str) -> Self:
        """Add a dependency edge: *source* must finish before *target* starts."""
        if source not in self._subtasks:
            raise ValueError(f"Unknown source subtask: {source!r}")
        if target not in self._subtasks:
            raise ValueError(f"Unknown target subtask: {target!r}")
        self._reverse[target][source] = None
        return self

    def predecessors(self, subtask_id: str) -> list[str]:
        return list(self._reverse.get(subtask_id, {}))

    def topological_order(self) -> list[Subtask]:
        """Depth-first topological sort.

        Dependencies come before dependents; ties keep declaration order.
        Subtasks on a cycle are emitted once, in the order the walk reaches them,
        so callers must still check dependencies before running each one.
        """
        ordered: list[Subtask] = []
        visited: set[str] = set()

        def visit(subtask_id: str) -> None:
            if subtask_id in visited:
                return
            visited.add(subtask_id)
            for dep in self.predecessors(subtask_id):
                visit(dep)
            ordered.append(self._subtasks[subtask_id])

        for subtask_id in self._subtasks:
            visit(subtask_id)
        return ordered

    def ready(self, settled: set[str]) -> list[Subtask]:
        """Return unsettled subtasks whose predecessors are all settled.

        Raises ``CyclicDependencyError`` when work remains but nothing is ready.
        """
        pending = [sid for sid in self._subtasks if sid not in settled]
        ready = [sid for sid in pending if all(dep in settled for dep in self.predecessors(sid))]
        if pending and not ready:
            raise CyclicDependencyError(pending)
        return [self._subtasks[sid] for sid in ready]

    def __contains__(self, subtask_id: object) -> bool:
        return subtask_id in self._subtasks

    def __len__(self) -> int:
        return len(self._subtasks)

    def __repr__(self) -> str:
        edges = sum(len(preds) for preds in self._reverse.values())
        return f"Graph(subtasks={len(self._subtasks)}, edges={edges})"
