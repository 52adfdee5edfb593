"""Neo4j-backed GraphQueryExecutor: renders each GraphPattern as bounded Cypher."""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Mapping, Union

from neo4j import GraphDatabase
from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError

from .config import settings
from .errors import InvalidArgumentError, TransientDependencyError
from .graph_store import GraphPattern, require_hops
from .llm import with_retry

logger = logging.getLogger(__name__)


BOUNDED_PATHS_CYPHER = """
MATCH path = (start:Entity {{name: $start}})-[rels*1..{max_hops}]-(end:Entity)
WHERE start <> end {type_filter}
WITH end, path, length(path) AS pathLength
ORDER BY pathLength
WITH end, collect(path)[0] AS path, min(pathLength) AS pathLength
RETURN end.name AS entity_name, end.type AS entity_type, end.description AS description,
       pathLength AS path_length,
       [node IN nodes(path) | node.name] AS path_nodes,
       [rel IN relationships(path) | type(rel)] AS relationship_types
ORDER BY path_length, entity_name
LIMIT $limit
"""

PATHS_BETWEEN_CYPHER = """
MATCH path = (e1:Entity {{name: $source}})-[*1..{max_length}]-(e2:Entity {{name: $target}})
WHERE e1 <> e2
WITH path, length(path) AS pathLength
ORDER BY pathLength
LIMIT $limit
RETURN [node IN nodes(path) | {{name: node.name, type: node.type}}] AS nodes,
       [rel IN relationships(path) | {{type: type(rel), description: rel.description}}] AS relationships,
       pathLength AS path_length
"""

EDGES_AMONG_CYPHER = """
MATCH (e1:Entity)-[r]->(e2:Entity)
WHERE e1.name IN $names AND e2.name IN $names AND e1 <> e2
  AND ($min_weight IS NULL OR r.weight >= $min_weight)
RETURN e1.name AS entity1, e2.name AS entity2, type(r) AS relationship,
       r.description AS description, r.weight AS weight
ORDER BY weight DESC
"""

ENTITY_LOOKUP_CYPHER = """
MATCH (e:Entity)
WHERE e.name IN $names
RETURN e.name AS name, e.type AS type, e.description AS description, e.embedding AS embedding
"""

NEIGHBORHOOD_CYPHER = """
MATCH (e:Entity)
WHERE e.name IN $names
OPTIONAL MATCH (e)-[*1..{max_depth}]-(connected:Entity)
WITH collect(DISTINCT e) + collect(DISTINCT connected) AS allNodes
UNWIND allNodes AS node
RETURN DISTINCT node.name AS name, node.type AS type, node.description AS description
"""


def render_cypher(pattern: GraphPattern, parameters: Mapping[str, Any]):
    """Hop bounds cannot be Cypher parameters, so they are validated and inlined."""
    if pattern in (GraphPattern.BOUNDED_PATHS, GraphPattern.TYPED_PATHS):
        max_hops = require_hops(parameters["max_hops"], "max_hops")
        type_filter = ""
        if pattern is GraphPattern.TYPED_PATHS and parameters.get("relation_types"):
            type_filter = "AND all(r IN rels WHERE type(r) IN $relation_types)"
        return BOUNDED_PATHS_CYPHER.format(max_hops=max_hops, type_filter=type_filter)
    if pattern is GraphPattern.PATHS_BETWEEN:
        max_length = require_hops(parameters["max_length"], "max_length")
        return PATHS_BETWEEN_CYPHER.format(max_length=max_length)
    if pattern is GraphPattern.EDGES_AMONG:
        return EDGES_AMONG_CYPHER
    if pattern is GraphPattern.ENTITY_LOOKUP:
        return ENTITY_LOOKUP_CYPHER
    if pattern is GraphPattern.NEIGHBORHOOD:
        max_depth = require_hops(parameters["max_depth"], "max_depth")
        return NEIGHBORHOOD_CYPHER.format(max_depth=max_depth)
    raise InvalidArgumentError(f"unsupported graph pattern: {pattern!r}")


class Neo4jGraphExecutor:
    def __init__(
        self,
        uri: str | None = None,
        username: str | None = None,
        password: str | None = None,
        database: str | None = None,
    ):
        self._uri = uri or settings.neo4j_uri
        self._auth = (username or settings.neo4j_username, password or settings.neo4j_password)
        self.database = database or settings.neo4j_database
        self.driver = GraphDatabase.driver(self._uri, auth=self._auth)

    def close(self):
        self.driver.close()

    def run(self, pattern: Union[GraphPattern, str], parameters: Mapping[str, Any]):
        params: Dict[str, Any] = dict(parameters)
        try:
            cypher = render_cypher(GraphPattern(pattern), params)
        except ValueError as e:
            if isinstance(e, InvalidArgumentError):
                raise
            # not a named pattern: raw Cypher supplied by the caller
            cypher = str(pattern)
        params.setdefault("min_weight", None)
        try:
            return self._query(cypher, params)
        except (SessionExpired, ServiceUnavailable, TransientError) as e:
            raise TransientDependencyError(f"graph query failed: {e}") from e

    @with_retry(retry_on=(SessionExpired, ServiceUnavailable, TransientError))
    def _query(self, cypher: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self.driver.session(database=self.database) as session:
            result = session.run(cypher, params)
            return [record.data() for record in result]
