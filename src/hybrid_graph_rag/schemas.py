from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, NamedTuple, Optional, TypeVar

T = TypeVar("T")

Vector = List[float]


class QueryType(str, Enum):
    FACTUAL = "factual"
    CONCEPTUAL = "conceptual"
    COMPARATIVE = "comparative"
    REASONING = "reasoning"
    LIST = "list"
    OTHER = "other"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class AnswerType(str, Enum):
    SHORT = "short"
    DETAILED = "detailed"
    LIST = "list"
    COMPARISON = "comparison"
    OTHER = "other"


class SourceType(str, Enum):
    DOCUMENT = "document"
    ENTITY = "entity"
    RELATION = "relation"


@dataclass(frozen=True)
class Document:
    id: str
    title: str
    content: str
    source: Optional[str] = None
    embedding: Optional[Vector] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Entity:
    id: str
    name: str
    type: str
    description: Optional[str] = None
    embedding: Optional[Vector] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self):
        """(name, type) is the natural key collaborators merge on."""
        return (self.name, self.type)


class Relation(NamedTuple):
    source: str      # entity name
    target: str      # entity name
    type: str
    description: Optional[str] = None
    weight: float = 1.0
    directed: bool = True


@dataclass(frozen=True)
class ScoredResult(Generic[T]):
    item: T
    score: float

    def __repr__(self):
        return f"ScoredResult(item={self.item!r}, score={self.score:.4f})"


def sort_by_score(results: List[ScoredResult[T]]) -> List[ScoredResult[T]]:
    """Descending by score; ties keep their original order."""
    return sorted(results, key=lambda r: r.score, reverse=True)


@dataclass
class QueryAnalysis:
    original_query: str
    query_type: QueryType = QueryType.OTHER
    key_entities: List[str] = field(default_factory=list)
    intent: str = ""
    related_concepts: List[str] = field(default_factory=list)
    complexity: Complexity = Complexity.MEDIUM
    expected_answer_type: AnswerType = AnswerType.DETAILED
    patterns: List[str] = field(default_factory=list)
    temporal_info: Dict[str, str] = field(default_factory=dict)
    comparative: bool = False
    query_vector: Optional[Vector] = None
    expanded_queries: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ContextSegment:
    content: str
    source_type: SourceType
    relevance_score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FusedContext:
    context_text: str
    segments: List[ContextSegment]
    overall_relevance: float
    segments_by_type: Dict[SourceType, List[ContextSegment]]


@dataclass(frozen=True)
class StructuredAnswer:
    main_answer: str
    confidence: float
    source_count: int
    answer_type: str
    key_points: List[str] = field(default_factory=list)
