from __future__ import annotations
from itertools import combinations
from typing import Any, Dict, List, Mapping, Sequence, Union
import logging

import networkx as nx

from .embeddings import EmbeddingGateway
from .errors import InvalidArgumentError, Result
from .graph_store import GraphPattern, GraphQueryExecutor, Row, require_hops
from .schemas import Relation

logger = logging.getLogger(__name__)

MAX_PATHS = 10
CENTRALITY_KINDS = ("degree", "betweenness", "closeness")


def relations_from_paths(rows: Sequence[Row]) -> List[Relation]:
    """Flatten multi-hop path rows into distinct (source, type, target) relations."""
    seen: Dict[tuple, Relation] = {}
    for row in rows:
        nodes = row.get("path_nodes") or []
        types = row.get("relationship_types") or []
        for source, target, rel_type in zip(nodes, nodes[1:], types):
            relation = Relation(source=str(source), target=str(target), type=str(rel_type or "related_to"))
            seen.setdefault((relation.source, relation.type, relation.target), relation)
    return list(seen.values())


class GraphTraverser:
    """
    Builds bounded pattern queries for the graph executor and post-processes
    the rows. Executor failures degrade to empty results; bad arguments
    (hop bounds, centrality kind) raise InvalidArgumentError.
    """

    def __init__(self, executor: GraphQueryExecutor):
        self.executor = executor

    def _run(self, pattern: Union[GraphPattern, str], parameters: Mapping[str, Any]) -> Result[List[Row]]:
        try:
            return Result.success(list(self.executor.run(pattern, parameters)))
        except Exception as e:
            logger.debug("Graph pattern %s degraded to empty: %s", getattr(pattern, "value", pattern), e)
            return Result.degraded([], reason=str(e))

    def multi_hop(self, start_entity: str, max_hops: int, max_results: int) -> List[Row]:
        logger.debug("Multi-hop retrieval from %s, max hops: %d", start_entity, max_hops)
        require_hops(max_hops, "max_hops")
        rows = self._run(
            GraphPattern.BOUNDED_PATHS,
            {"start": start_entity, "max_hops": max_hops, "limit": max_results},
        ).unwrap_or([])
        rows.sort(key=lambda r: (r.get("path_length", 0), str(r.get("entity_name", ""))))
        logger.info("Multi-hop retrieval found %d related entities", len(rows))
        return rows[: max(0, max_results)]

    def dynamic_traversal(
        self,
        start_entity: str,
        relation_types: Sequence[str],
        max_depth: int,
        max_results: int,
    ) -> List[Row]:
        logger.debug("Dynamic traversal from %s over %s", start_entity, list(relation_types))
        require_hops(max_depth, "max_depth")
        rows = self._run(
            GraphPattern.TYPED_PATHS,
            {
                "start": start_entity,
                "max_hops": max_depth,
                "limit": max_results,
                "relation_types": list(relation_types),
            },
        ).unwrap_or([])
        rows.sort(key=lambda r: (r.get("path_length", 0), str(r.get("entity_name", ""))))
        return rows[: max(0, max_results)]

    def find_paths(self, entity1: str, entity2: str, max_path_length: int) -> List[Row]:
        logger.debug("Finding paths %s -> %s, max length: %d", entity1, entity2, max_path_length)
        require_hops(max_path_length, "max_path_length")
        rows = self._run(
            GraphPattern.PATHS_BETWEEN,
            {"source": entity1, "target": entity2, "max_length": max_path_length, "limit": MAX_PATHS},
        ).unwrap_or([])
        rows.sort(key=lambda r: r.get("path_length", 0))
        return rows[:MAX_PATHS]

    def detect_communities(self, entity_names: Sequence[str], threshold: float) -> List[Row]:
        """
        Edges among ``entity_names`` with weight >= threshold, heaviest first.

        This is an edge filter, not clustering: no connected-component step is
        applied. Callers that need communities must group the edge list themselves.
        """
        logger.debug("Community detection, entity count: %d, threshold: %.2f", len(entity_names), threshold)
        return self._run(
            GraphPattern.EDGES_AMONG, {"names": list(entity_names), "min_weight": threshold}
        ).unwrap_or([])

    def centrality(self, entity_names: Sequence[str], kind: str) -> List[Row]:
        """
        Centrality within the subgraph induced by ``entity_names``.

        degree       neighbour count inside the set
        betweenness  number of shortest paths between other members passing through the entity
        closeness    1 / mean shortest distance to reachable members, 0 if none are reachable
        """
        kind = (kind or "").lower()
        if kind not in CENTRALITY_KINDS:
            raise InvalidArgumentError(f"unsupported centrality type: {kind}")
        logger.debug("Centrality %s, entity count: %d", kind, len(entity_names))

        names = list(dict.fromkeys(entity_names))
        types = {
            row.get("name"): row.get("type")
            for row in self._run(GraphPattern.ENTITY_LOOKUP, {"names": names}).unwrap_or([])
        }
        edges = self._run(GraphPattern.EDGES_AMONG, {"names": names, "min_weight": None}).unwrap_or([])

        subgraph = nx.Graph()
        subgraph.add_nodes_from(n for n in names if n in types)
        for row in edges:
            a, b = row.get("entity1"), row.get("entity2")
            if a in subgraph and b in subgraph and a != b:
                subgraph.add_edge(a, b)

        if kind == "degree":
            scores = {n: float(subgraph.degree(n)) for n in subgraph}
        elif kind == "betweenness":
            scores = self._betweenness_counts(subgraph)
        else:
            scores = self._closeness(subgraph)

        rows = [
            {"entity_name": name, "entity_type": types.get(name), kind: score}
            for name, score in scores.items()
        ]
        rows.sort(key=lambda r: r[kind], reverse=True)
        return rows

    @staticmethod
    def _betweenness_counts(graph: nx.Graph) -> Dict[str, float]:
        counts = {n: 0.0 for n in graph}
        for source, target in combinations(list(graph), 2):
            if not nx.has_path(graph, source, target):
                continue
            for path in nx.all_shortest_paths(graph, source, target):
                for node in path[1:-1]:
                    counts[node] += 1.0
        return counts

    @staticmethod
    def _closeness(graph: nx.Graph) -> Dict[str, float]:
        scores = {}
        for node in graph:
            distances = [d for other, d in nx.single_source_shortest_path_length(graph, node).items() if other != node]
            scores[node] = 0.0 if not distances else 1.0 / (sum(distances) / len(distances))
        return scores

    def cluster_similar_entities(self, entity_names: Sequence[str], threshold: float) -> List[List[str]]:
        """
        Greedy single pass: each unclustered entity opens a cluster and absorbs
        every later unclustered entity at or above ``threshold``. Singletons are dropped.
        """
        logger.debug("Clustering similar entities, entity count: %d, threshold: %.2f", len(entity_names), threshold)
        rows = self._run(GraphPattern.ENTITY_LOOKUP, {"names": list(entity_names)}).unwrap_or([])
        embedded = [(row["name"], row["embedding"]) for row in rows if row.get("embedding") is not None]

        clusters: List[List[str]] = []
        processed = set()
        for name, vector in embedded:
            if name in processed:
                continue
            cluster = [name]
            processed.add(name)
            for other_name, other_vector in embedded:
                if other_name in processed or len(other_vector) != len(vector):
                    continue
                if EmbeddingGateway.cosine(vector, other_vector) >= threshold:
                    cluster.append(other_name)
                    processed.add(other_name)
            if len(cluster) > 1:
                clusters.append(cluster)

        logger.info("Clustering completed, %d clusters", len(clusters))
        return clusters

    def extract_subgraph(self, entity_names: Sequence[str], max_depth: int) -> Dict[str, Any]:
        logger.debug("Extracting subgraph, entity count: %d, max depth: %d", len(entity_names), max_depth)
        require_hops(max_depth, "max_depth")
        nodes = self._run(
            GraphPattern.NEIGHBORHOOD, {"names": list(entity_names), "max_depth": max_depth}
        ).unwrap_or([])
        node_names = [n.get("name") for n in nodes if n.get("name") is not None]
        relationships = []
        if node_names:
            relationships = self._run(
                GraphPattern.EDGES_AMONG, {"names": node_names, "min_weight": None}
            ).unwrap_or([])
        return {
            "nodes": nodes,
            "relationships": relationships,
            "node_count": len(nodes),
            "relationship_count": len(relationships),
        }

    def pattern_matching(self, pattern: Union[GraphPattern, str], parameters: Mapping[str, Any]) -> List[Row]:
        logger.debug("Executing graph pattern: %s", pattern)
        return self._run(pattern, parameters).unwrap_or([])
