"""Tests for Graph."""

import pytest

from taskteam.core.graph import Graph
from taskteam.core.types import Subtask
from taskteam.errors import CyclicDependencyError


def st(sid: str, *deps: str) -> Subtask:
    return Subtask(id=sid, description=f"do {sid}", worker_id="w1", dependencies=deps)


def ids(subtasks) -> list[str]:
    return [s.id for s in subtasks]


class TestGraphAddSubtask:
    def test_add_single_subtask(self):
        g = Graph()
        g.add_subtask(st("a"))
        assert len(g) == 1
        assert "a" in g

    def test_chaining(self):
        g = Graph()
        g.add_subtask(st("a")).add_subtask(st("b"))
        assert len(g) == 2
        assert "b" in g

    def test_repr_counts_edges(self):
        g = Graph.from_subtasks([st("a"), st("b", "a"), st("c", "a", "b")])
        assert repr(g) == "Graph(subtasks=3, edges=3)"


class TestGraphAddEdge:
    def test_add_edge(self):
        g = Graph().add_subtask(st("a")).add_subtask(st("b"))
        g.add_edge("a", "b")
        assert g.predecessors("b") == ["a"]

    def test_duplicate_edge_is_kept_once(self):
        g = Graph().add_subtask(st("a")).add_subtask(st("b"))
        g.add_edge("a", "b").add_edge("a", "b")
        assert g.predecessors("b") == ["a"]

    def test_manual_edge_gates_ready(self):
        g = Graph().add_subtask(st("a")).add_subtask(st("b"))
        g.add_edge("b", "a")
        assert ids(g.ready(set())) == ["b"]
        assert ids(g.topological_order()) == ["b", "a"]

    def test_edge_unknown_source_raises(self):
        g = Graph().add_subtask(st("b"))
        with pytest.raises(ValueError, match="Unknown source"):
            g.add_edge("missing", "b")

    def test_edge_unknown_target_raises(self):
        g = Graph().add_subtask(st("a"))
        with pytest.raises(ValueError, match="Unknown target"):
            g.add_edge("a", "missing")


class TestFromSubtasks:
    def test_edges_follow_dependencies(self):
        g = Graph.from_subtasks([st("a"), st("b", "a"), st("c", "a", "b")])
        assert g.predecessors("c") == ["a", "b"]
        assert g.predecessors("a") == []

    def test_duplicate_id_raises(self):
        with pytest.raises(ValueError, match="Duplicate"):
            Graph.from_subtasks([st("a"), st("a")])

    def test_unknown_dependency_raises(self):
        with pytest.raises(ValueError):
            Graph.from_subtasks([st("a", "ghost")])


class TestTopologicalOrder:
    def test_no_edges_keeps_declaration_order(self):
        g = Graph.from_subtasks([st("c"), st("a"), st("b")])
        assert ids(g.topological_order()) == ["c", "a", "b"]

    def test_dependencies_first(self):
        g = Graph.from_subtasks([st("c", "b"), st("b", "a"), st("a")])
        assert ids(g.topological_order()) == ["a", "b", "c"]

    def test_diamond(self):
        g = Graph.from_subtasks([st("a"), st("b", "a"), st("c", "a"), st("d", "b", "c")])
        order = ids(g.topological_order())
        assert order == ["a", "b", "c", "d"]

    def test_cycle_emits_each_subtask_once(self):
        g = Graph.from_subtasks([st("a", "b"), st("b", "a")])
        order = ids(g.topological_order())
        assert sorted(order) == ["a", "b"]

    def test_empty_graph(self):
        assert Graph().topological_order() == []


class TestReady:
    def test_initial_frontier(self):
        g = Graph.from_subtasks([st("a"), st("b"), st("c", "a", "b")])
        assert ids(g.ready(set())) == ["a", "b"]

    def test_frontier_advances(self):
        g = Graph.from_subtasks([st("a"), st("b"), st("c", "a", "b")])
        assert ids(g.ready({"a"})) == ["b"]
        assert ids(g.ready({"a", "b"})) == ["c"]
        assert g.ready({"a", "b", "c"}) == []

    def test_cycle_raises(self):
        g = Graph.from_subtasks([st("a"), st("b", "a", "c"), st("c", "b")])
        assert ids(g.ready(set())) == ["a"]
        with pytest.raises(CyclicDependencyError) as exc_info:
            g.ready({"a"})
        assert set(exc_info.value.pending) == {"b", "c"}
