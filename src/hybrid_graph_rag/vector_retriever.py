"""
Similarity strategies over a caller-supplied candidate pool.

Candidates are any objects exposing an ``embedding`` attribute (Document or
Entity). Candidates without one are skipped: they are treated as not yet indexed.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence, TypeVar, Union
import logging

from .embeddings import EmbeddingGateway
from .schemas import ScoredResult, sort_by_score

logger = logging.getLogger(__name__)

T = TypeVar("T")

QueryInput = Union[str, Sequence[float]]

MAIN_QUERY_WEIGHT = 0.7
CONTEXT_QUERY_WEIGHT = 0.3
LEVEL_WEIGHT_STEP = 0.1
ADAPTIVE_RATIO = 0.8


def _embedding(item: Any) -> Optional[Sequence[float]]:
    return getattr(item, "embedding", None)


def level_weight(index: int) -> float:
    """
    1.0 for the first level, minus 0.1 per level after it. Levels past index 10
    get a non-positive weight and therefore rank at or below zero; this is not
    clamped.
    """
    return 1.0 - LEVEL_WEIGHT_STEP * index


class VectorRetriever:
    def __init__(self, embeddings: EmbeddingGateway):
        self.embeddings = embeddings

    def _query_vector(self, query: QueryInput) -> Sequence[float]:
        if isinstance(query, str):
            return self.embeddings.embed(query)
        return query

    def _similarity(self, query_vector: Sequence[float], item: Any) -> float:
        return self.embeddings.cosine(query_vector, _embedding(item))

    def multi_query(
        self, queries: Sequence[str], candidates: Sequence[T], top_k: int
    ) -> List[ScoredResult[T]]:
        """Score each candidate by its best match against any of the queries."""
        logger.debug(
            "Multi-query vector retrieval, query count: %d, candidate count: %d",
            len(queries), len(candidates),
        )
        query_vectors = self.embeddings.embed_batch(list(queries))
        if not query_vectors:
            return []

        results: List[ScoredResult[T]] = []
        for item in candidates:
            vector = _embedding(item)
            if vector is None:
                continue
            best = max(self.embeddings.cosine(q, vector) for q in query_vectors)
            results.append(ScoredResult(item, best))
        return sort_by_score(results)[: max(0, top_k)]

    def rerank(
        self, candidates: Sequence[T], query: QueryInput, context_queries: Sequence[str]
    ) -> List[ScoredResult[T]]:
        """
        0.7 * sim(query) + 0.3 * mean(sim(context query)).

        With no context queries the context term is 0, so every score is scaled
        by 0.7. That penalty is kept on purpose.
        """
        logger.debug(
            "Reranking, candidate count: %d, context query count: %d",
            len(candidates), len(context_queries),
        )
        query_vector = self._query_vector(query)
        context_vectors = self.embeddings.embed_batch(list(context_queries))

        results: List[ScoredResult[T]] = []
        for item in candidates:
            vector = _embedding(item)
            if vector is None:
                continue
            main = self.embeddings.cosine(query_vector, vector)
            context = 0.0
            if context_vectors:
                context = sum(self.embeddings.cosine(c, vector) for c in context_vectors) / len(context_vectors)
            results.append(ScoredResult(item, MAIN_QUERY_WEIGHT * main + CONTEXT_QUERY_WEIGHT * context))
        return sort_by_score(results)

    def diversity_retrieval(
        self,
        candidates: Sequence[T],
        query: QueryInput,
        top_k: int,
        diversity_weight: float,
    ) -> List[ScoredResult[T]]:
        """Greedy MMR-style pick: relevance minus weighted max similarity to what is already chosen."""
        logger.debug(
            "Diversity retrieval, candidate count: %d, topK: %d, diversity weight: %.2f",
            len(candidates), top_k, diversity_weight,
        )
        query_vector = self._query_vector(query)
        remaining = [item for item in candidates if _embedding(item) is not None]
        relevance: Dict[int, float] = {
            id(item): self._similarity(query_vector, item) for item in remaining
        }
        selected: List[ScoredResult[T]] = []

        while len(selected) < top_k and remaining:
            best_index, best_score = -1, None
            for i, item in enumerate(remaining):
                penalty = max(
                    (self.embeddings.cosine(_embedding(item), _embedding(s.item)) for s in selected),
                    default=0.0,
                )
                score = relevance[id(item)] - diversity_weight * penalty
                if best_score is None or score > best_score:
                    best_index, best_score = i, score
            chosen = remaining.pop(best_index)
            selected.append(ScoredResult(chosen, best_score))

        return selected

    def hierarchical_retrieval(
        self, candidates: Sequence[T], query: QueryInput, levels: Sequence[str]
    ) -> List[ScoredResult[T]]:
        """
        Group candidates into levels by case-insensitive substring match of the
        level name against the candidate's source (first match wins, unmatched
        candidates go to the first level), then weight similarity by level.
        """
        logger.debug(
            "Hierarchical retrieval, candidate count: %d, hierarchy levels: %s",
            len(candidates), list(levels),
        )
        if not levels:
            return []
        query_vector = self._query_vector(query)

        results: List[ScoredResult[T]] = []
        for item in candidates:
            if _embedding(item) is None:
                continue
            index = self._level_index(item, levels)
            score = self._similarity(query_vector, item) * level_weight(index)
            results.append(ScoredResult(item, score))
        return sort_by_score(results)

    @staticmethod
    def _level_index(item: Any, levels: Sequence[str]) -> int:
        source = (getattr(item, "source", None) or "").lower()
        if source:
            for i, level in enumerate(levels):
                if level.lower() in source:
                    return i
        return 0

    def adaptive_threshold(
        self, candidates: Sequence[T], query: QueryInput, base_threshold: float
    ) -> List[ScoredResult[T]]:
        """Keep everything scoring at least max(base, 0.8 * best score)."""
        logger.debug(
            "Adaptive threshold retrieval, candidate count: %d, base threshold: %.2f",
            len(candidates), base_threshold,
        )
        query_vector = self._query_vector(query)
        scored = sort_by_score(
            [
                ScoredResult(item, self._similarity(query_vector, item))
                for item in candidates
                if _embedding(item) is not None
            ]
        )
        if not scored:
            return []
        threshold = max(base_threshold, scored[0].score * ADAPTIVE_RATIO)
        return [r for r in scored if r.score >= threshold]
