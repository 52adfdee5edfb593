from __future__ import annotations
from enum import Enum
from itertools import islice, takewhile
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union
import json
import logging
from pathlib import Path

import networkx as nx
from networkx.readwrite import json_graph

from .errors import InvalidArgumentError
from .schemas import Entity, Relation

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class GraphPattern(str, Enum):
    """
    Bounded graph patterns the retrieval core knows how to ask for.

    BOUNDED_PATHS   start, max_hops, limit -> one row per distinct endpoint
    TYPED_PATHS     same plus relation_types
    PATHS_BETWEEN   source, target, max_length, limit
    EDGES_AMONG     names, min_weight (None = no weight filter)
    ENTITY_LOOKUP   names
    NEIGHBORHOOD    names, max_depth
    """

    BOUNDED_PATHS = "bounded_paths"
    TYPED_PATHS = "typed_paths"
    PATHS_BETWEEN = "paths_between"
    EDGES_AMONG = "edges_among"
    ENTITY_LOOKUP = "entity_lookup"
    NEIGHBORHOOD = "neighborhood"


class GraphQueryExecutor(Protocol):
    def run(self, pattern: Union[GraphPattern, str], parameters: Mapping[str, Any]) -> List[Row]:
        ...


def require_hops(value: Any, name: str):
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise InvalidArgumentError(f"{name} must be a positive integer, got {value!r}")
    return value


class NetworkXGraphStore:
    """
    In-memory entity graph (directed multigraph) that also answers GraphPattern queries.
    Nodes: entity id with name/type/description/embedding/properties
    Edges: relation type + description + weight
    Pattern matching treats edges as undirected, like `-[]-` in Cypher.
    """

    def __init__(self):
        self.graph = nx.MultiDiGraph()

    # Persistence

    def is_empty(self):
        return (
            self.graph.number_of_nodes() == 0
            and self.graph.number_of_edges() == 0
        )

    def to_dict(self):
        return json_graph.node_link_data(self.graph, edges="links")

    @classmethod
    def from_dict(cls, data: Dict):
        inst = cls()
        inst.graph = json_graph.node_link_graph(
            data, multigraph=True, directed=True, edges="links"
        )
        return inst

    def save(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_dict(), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )

    @classmethod
    def load(cls, path: Path):
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_dict(data)

    # Entity operations

    def upsert_entity(self, entity: Entity):
        self.graph.add_node(
            entity.id,
            name=entity.name,
            type=entity.type,
            description=entity.description,
            embedding=list(entity.embedding) if entity.embedding is not None else None,
            properties=dict(entity.properties),
        )

    def _ids_for_name(self, name: str, entity_type: Optional[str] = None):
        return [
            node_id
            for node_id, data in self.graph.nodes(data=True)
            if data.get("name") == name
            and (entity_type is None or data.get("type") == entity_type)
        ]

    def entities(self):
        return [self.get_entity(node_id) for node_id in self.graph.nodes]

    def get_entity(self, entity_id: str):
        if entity_id not in self.graph:
            return None
        data = self.graph.nodes[entity_id]
        return Entity(
            id=entity_id,
            name=data.get("name", ""),
            type=data.get("type", ""),
            description=data.get("description"),
            embedding=data.get("embedding"),
            properties=data.get("properties", {}),
        )

    # Relation operations

    def _resolve(self, name: str, entity_type: Optional[str]):
        ids = self._ids_for_name(name, entity_type)
        if ids:
            return ids[0]
        placeholder = Entity(id=f"{name}::{entity_type or 'UNKNOWN'}", name=name, type=entity_type or "UNKNOWN")
        self.upsert_entity(placeholder)
        return placeholder.id

    def add_relation(
        self,
        rel: Relation,
        source_type: Optional[str] = None,
        target_type: Optional[str] = None,
    ):
        self.graph.add_edge(
            self._resolve(rel.source, source_type),
            self._resolve(rel.target, target_type),
            type=rel.type,
            description=rel.description,
            weight=rel.weight,
            directed=rel.directed,
        )

    # Pattern execution

    def run(self, pattern: Union[GraphPattern, str], parameters: Mapping[str, Any]):
        try:
            pattern = GraphPattern(pattern)
        except ValueError:
            raise InvalidArgumentError(f"unsupported graph pattern: {pattern!r}") from None
        handler = {
            GraphPattern.BOUNDED_PATHS: self._bounded_paths,
            GraphPattern.TYPED_PATHS: self._bounded_paths,
            GraphPattern.PATHS_BETWEEN: self._paths_between,
            GraphPattern.EDGES_AMONG: self._edges_among,
            GraphPattern.ENTITY_LOOKUP: self._entity_lookup,
            GraphPattern.NEIGHBORHOOD: self._neighborhood,
        }[pattern]
        return handler(dict(parameters))

    def _undirected(self, relation_types: Optional[Iterable[str]] = None):
        allowed = set(relation_types) if relation_types else None
        ug = nx.Graph()
        ug.add_nodes_from(self.graph.nodes(data=True))
        for u, v, data in self.graph.edges(data=True):
            if allowed is not None and data.get("type") not in allowed:
                continue
            # parallel edges collapse onto the first one seen
            if not ug.has_edge(u, v):
                ug.add_edge(u, v, **data)
        return ug

    def _name(self, node_id: str):
        return self.graph.nodes[node_id].get("name", node_id)

    def _bounded_paths(self, params: Dict[str, Any]):
        max_hops = require_hops(params["max_hops"], "max_hops")
        limit = int(params.get("limit", 10))
        ug = self._undirected(params.get("relation_types"))

        best: Dict[str, List[str]] = {}
        for start_id in self._ids_for_name(params["start"]):
            paths = nx.single_source_shortest_path(ug, start_id, cutoff=max_hops)
            for end_id, path in paths.items():
                if end_id == start_id:
                    continue
                if end_id not in best or len(path) < len(best[end_id]):
                    best[end_id] = path

        rows: List[Row] = []
        for end_id, path in best.items():
            data = self.graph.nodes[end_id]
            rows.append(
                {
                    "entity_name": data.get("name"),
                    "entity_type": data.get("type"),
                    "description": data.get("description"),
                    "path_length": len(path) - 1,
                    "path_nodes": [self._name(n) for n in path],
                    "relationship_types": [
                        ug.edges[a, b].get("type") for a, b in zip(path, path[1:])
                    ],
                }
            )
        rows.sort(key=lambda r: (r["path_length"], str(r["entity_name"])))
        return rows[:limit]

    def _paths_between(self, params: Dict[str, Any]):
        max_length = require_hops(params["max_length"], "max_length")
        limit = int(params.get("limit", 10))
        ug = self._undirected()

        found: List[List[str]] = []
        for s in self._ids_for_name(params["source"]):
            for t in self._ids_for_name(params["target"]):
                if s == t:
                    continue
                try:
                    # yielded shortest first, so stop at the length bound
                    paths = takewhile(lambda p: len(p) - 1 <= max_length, nx.shortest_simple_paths(ug, s, t))
                    found.extend(islice(paths, limit))
                except nx.NetworkXNoPath:
                    continue
        found.sort(key=lambda p: (len(p), [self._name(n) for n in p]))

        rows: List[Row] = []
        for path in found[:limit]:
            rows.append(
                {
                    "nodes": [
                        {"name": self._name(n), "type": self.graph.nodes[n].get("type")}
                        for n in path
                    ],
                    "relationships": [
                        {
                            "type": ug.edges[a, b].get("type"),
                            "description": ug.edges[a, b].get("description"),
                        }
                        for a, b in zip(path, path[1:])
                    ],
                    "path_length": len(path) - 1,
                }
            )
        return rows

    def _edges_among(self, params: Dict[str, Any]):
        names = set(params.get("names") or [])
        min_weight = params.get("min_weight")
        rows: List[Row] = []
        for u, v, data in self.graph.edges(data=True):
            if u == v:
                continue
            n1, n2 = self._name(u), self._name(v)
            if n1 not in names or n2 not in names:
                continue
            weight = data.get("weight")
            if min_weight is not None and (weight is None or weight < min_weight):
                continue
            rows.append(
                {
                    "entity1": n1,
                    "entity2": n2,
                    "relationship": data.get("type"),
                    "description": data.get("description"),
                    "weight": weight,
                }
            )
        rows.sort(key=lambda r: r["weight"] if r["weight"] is not None else float("-inf"), reverse=True)
        return rows

    def _entity_lookup(self, params: Dict[str, Any]):
        names = list(params.get("names") or [])
        rows: List[Row] = []
        for name in names:
            for node_id in self._ids_for_name(name):
                data = self.graph.nodes[node_id]
                rows.append(
                    {
                        "name": data.get("name"),
                        "type": data.get("type"),
                        "description": data.get("description"),
                        "embedding": data.get("embedding"),
                    }
                )
        return rows

    def _neighborhood(self, params: Dict[str, Any]):
        max_depth = require_hops(params["max_depth"], "max_depth")
        ug = self._undirected()
        seen: Dict[str, None] = {}
        for name in params.get("names") or []:
            for node_id in self._ids_for_name(name):
                reached = nx.single_source_shortest_path_length(ug, node_id, cutoff=max_depth)
                for n in reached:
                    seen.setdefault(n, None)
        return [
            {
                "name": self._name(n),
                "type": self.graph.nodes[n].get("type"),
                "description": self.graph.nodes[n].get("description"),
            }
            for n in seen
        ]
