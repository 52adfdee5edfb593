"""Tests for GraphTraverser over the in-memory executor."""

import pytest

from hybrid_graph_rag.errors import InvalidArgumentError, TransientDependencyError
from hybrid_graph_rag.graph_traverser import GraphTraverser, relations_from_paths
from hybrid_graph_rag.schemas import Relation


class FailingExecutor:
    def run(self, pattern, parameters):
        raise TransientDependencyError("graph database unavailable")


@pytest.fixture
def traverser(graph_store) -> GraphTraverser:
    return GraphTraverser(graph_store)


class TestMultiHop:
    def test_ordered_by_path_length_then_name(self, traverser) -> None:
        rows = traverser.multi_hop("Python", max_hops=2, max_results=3)
        assert [r["entity_name"] for r in rows] == ["Guido", "NumPy", "Pandas"]

    def test_invalid_hops_fail_fast(self, traverser) -> None:
        with pytest.raises(InvalidArgumentError):
            traverser.multi_hop("Python", max_hops=0, max_results=5)

    def test_executor_failure_degrades_to_empty(self) -> None:
        """Traversal errors are a degraded result, not an exception."""
        assert GraphTraverser(FailingExecutor()).multi_hop("Python", 2, 10) == []

    def test_dynamic_traversal(self, traverser) -> None:
        rows = traverser.dynamic_traversal("Python", ["created_by"], max_depth=3, max_results=10)
        assert [r["entity_name"] for r in rows] == ["Guido"]


class TestPathsAndCommunities:
    def test_find_paths(self, traverser) -> None:
        rows = traverser.find_paths("Guido", "NumPy", max_path_length=2)
        assert len(rows) == 1
        assert [n["name"] for n in rows[0]["nodes"]] == ["Guido", "Python", "NumPy"]

    def test_find_paths_out_of_reach(self, traverser) -> None:
        assert traverser.find_paths("Guido", "Pandas", max_path_length=2) == []

    def test_detect_communities_is_an_edge_filter(self, traverser) -> None:
        """Returns the weighted edge list above threshold, heaviest first, with no grouping."""
        rows = traverser.detect_communities(["Python", "NumPy", "Pandas", "Guido"], threshold=0.7)
        assert [(r["entity1"], r["entity2"], r["weight"]) for r in rows] == [
            ("Python", "NumPy", 0.9),
            ("Pandas", "NumPy", 0.8),
        ]

    def test_detect_communities_degrades(self) -> None:
        assert GraphTraverser(FailingExecutor()).detect_communities(["Python"], 0.5) == []


class TestCentrality:
    names = ["Python", "NumPy", "Pandas", "Guido"]

    def test_degree(self, traverser) -> None:
        scores = {r["entity_name"]: r["degree"] for r in traverser.centrality(self.names, "degree")}
        assert scores == {"Python": 2.0, "NumPy": 2.0, "Pandas": 1.0, "Guido": 1.0}

    def test_betweenness(self, traverser) -> None:
        rows = traverser.centrality(self.names, "betweenness")
        scores = {r["entity_name"]: r["betweenness"] for r in rows}
        assert scores == {"Python": 2.0, "NumPy": 2.0, "Pandas": 0.0, "Guido": 0.0}
        assert rows[-1]["betweenness"] == 0.0

    def test_closeness(self, traverser) -> None:
        scores = {r["entity_name"]: r["closeness"] for r in traverser.centrality(self.names, "closeness")}
        assert scores["Pandas"] == pytest.approx(0.5)
        assert scores["Python"] == pytest.approx(0.75)

    def test_entity_types_are_attached(self, traverser) -> None:
        rows = traverser.centrality(["Python"], "degree")
        assert rows == [{"entity_name": "Python", "entity_type": "LANGUAGE", "degree": 0.0}]

    def test_unsupported_kind(self, traverser) -> None:
        with pytest.raises(InvalidArgumentError, match="unsupported centrality type: pagerank"):
            traverser.centrality(self.names, "pagerank")


class TestClusterAndSubgraph:
    def test_cluster_similar_entities(self, traverser) -> None:
        """Python and NumPy are near-parallel; Pandas alone is dropped; Guido has no embedding."""
        clusters = traverser.cluster_similar_entities(["Python", "NumPy", "Pandas", "Guido"], threshold=0.9)
        assert clusters == [["Python", "NumPy"]]

    def test_extract_subgraph(self, traverser) -> None:
        subgraph = traverser.extract_subgraph(["Pandas"], max_depth=1)
        assert {n["name"] for n in subgraph["nodes"]} == {"Pandas", "NumPy"}
        assert subgraph["node_count"] == 2
        assert subgraph["relationship_count"] == 1
        assert subgraph["relationships"][0]["relationship"] == "uses"

    def test_pattern_matching_degrades_on_error(self, traverser) -> None:
        assert traverser.pattern_matching("not a pattern", {}) == []
        assert len(traverser.pattern_matching("entity_lookup", {"names": ["NumPy"]})) == 1


class TestRelationsFromPaths:
    def test_converts_and_deduplicates(self, traverser) -> None:
        rows = traverser.multi_hop("Python", max_hops=2, max_results=10)
        relations = relations_from_paths(rows)
        assert Relation("Python", "NumPy", "uses") in relations
        assert Relation("NumPy", "SciPy Stack", "part_of") in relations
        assert Relation("NumPy", "Pandas", "uses") in relations
        assert len(relations) == len(set(relations))
        assert len(relations) == 4
