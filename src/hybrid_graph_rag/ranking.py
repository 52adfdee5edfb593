from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, TypeVar
import logging

from .embeddings import EmbeddingGateway
from .schemas import Document, Entity, ScoredResult, sort_by_score

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FACTOR_SCORE = 0.5
COMPLETE_CONTENT_CHARS = 5000.0

# keyword in source -> authority score, first match wins
AUTHORITY_KEYWORDS = [
    (("official", "authoritative"), 0.9),
    (("academic", "research"), 0.8),
    (("news", "media"), 0.6),
]


@dataclass
class RankingConfig:
    """
    Zero / empty values switch a stage off. ``start_time`` and ``end_time`` are
    independent: either end of the window may be left open.
    """

    min_relevance_threshold: float = 0.0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    allowed_sources: Set[str] = field(default_factory=set)
    blocked_sources: Set[str] = field(default_factory=set)
    factor_weights: Dict[str, float] = field(default_factory=dict)
    diversity_threshold: float = 0.0
    max_results: int = 0


def _source(item: Any) -> Optional[str]:
    return getattr(item, "source", None)


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def recency_score(item: Any, now: datetime):
    if isinstance(item, Document) and item.created_at is not None:
        age_days = (as_utc(now) - as_utc(item.created_at)).days
        return max(0.0, 1.0 - age_days / 365.0)
    return DEFAULT_FACTOR_SCORE


def authority_score(item: Any):
    source = _source(item) if isinstance(item, Document) else None
    if source:
        lowered = source.lower()
        for keywords, score in AUTHORITY_KEYWORDS:
            if any(k in lowered for k in keywords):
                return score
    return DEFAULT_FACTOR_SCORE


def completeness_score(item: Any):
    if isinstance(item, Document):
        return min(1.0, len(item.content or "") / COMPLETE_CONTENT_CHARS)
    if isinstance(item, Entity):
        has_description = bool(item.description and item.description.strip())
        has_embedding = item.embedding is not None
        return 0.5 * has_description + 0.5 * has_embedding
    return DEFAULT_FACTOR_SCORE


def popularity_score(item: Any):
    # Placeholder hook: no view/citation signal exists yet.
    return DEFAULT_FACTOR_SCORE


def _title_similarity(t1: str, t2: str):
    if t1 == t2:
        return 1.0
    if not t1 or not t2:
        return 0.0
    w1, w2 = set(t1.split()), set(t2.split())
    return len(w1 & w2) / len(w1 | w2)


def content_similarity(a: Any, b: Any):
    """Embedding cosine when both sides have one, else 0.7 * title Jaccard + 0.3 * same source."""
    e1, e2 = getattr(a, "embedding", None), getattr(b, "embedding", None)
    if e1 is not None and e2 is not None and len(e1) == len(e2):
        return EmbeddingGateway.cosine(e1, e2)
    title1 = (getattr(a, "title", None) or getattr(a, "name", None) or "").lower()
    title2 = (getattr(b, "title", None) or getattr(b, "name", None) or "").lower()
    source1 = (_source(a) or "").lower()
    source2 = (_source(b) or "").lower()
    return 0.7 * _title_similarity(title1, title2) + 0.3 * (1.0 if source1 == source2 else 0.0)


class ResultRanker:
    def __init__(self, now: Callable[[], datetime] = utc_now):
        self._now = now
        self.factors: Dict[str, Callable[[Any], float]] = {
            "recency": lambda item: recency_score(item, self._now()),
            "authority": authority_score,
            "completeness": completeness_score,
            "popularity": popularity_score,
        }

    def rank(self, results: Sequence[ScoredResult[T]], config: RankingConfig) -> List[ScoredResult[T]]:
        logger.debug("Ranking %d results with %s", len(results), config)
        processed = list(results)

        if config.min_relevance_threshold > 0:
            processed = self.filter_by_relevance(processed, config.min_relevance_threshold)
        if config.start_time is not None or config.end_time is not None:
            processed = self.time_window_filter(processed, config.start_time, config.end_time)
        if config.allowed_sources or config.blocked_sources:
            processed = self.source_filter(processed, config.allowed_sources, config.blocked_sources)
        if config.factor_weights:
            processed = self.multi_factor_ranking(processed, config.factor_weights)
        if config.diversity_threshold > 0:
            processed = self.diversity_filter(processed, config.diversity_threshold, config.max_results)
        elif config.max_results > 0:
            processed = processed[: config.max_results]

        logger.info("Ranking completed, final result count: %d", len(processed))
        return processed

    def filter_by_relevance(self, results: Sequence[ScoredResult[T]], threshold: float):
        return [r for r in results if r.score >= threshold]

    def time_window_filter(
        self,
        results: Sequence[ScoredResult[T]],
        start: Optional[datetime],
        end: Optional[datetime],
    ):
        """Items without a timestamp always pass."""
        kept = []
        for r in results:
            created = getattr(r.item, "created_at", None)
            if created is None:
                kept.append(r)
                continue
            created = as_utc(created)
            if start is not None and created < as_utc(start):
                continue
            if end is not None and created > as_utc(end):
                continue
            kept.append(r)
        return kept

    def source_filter(
        self,
        results: Sequence[ScoredResult[T]],
        allowed: Set[str],
        blocked: Set[str],
    ):
        kept = []
        for r in results:
            source = _source(r.item)
            if source is None:
                if not allowed:
                    kept.append(r)
                continue
            if source in blocked:
                continue
            if allowed and source not in allowed:
                continue
            kept.append(r)
        return kept

    def multi_factor_ranking(self, results: Sequence[ScoredResult[T]], factor_weights: Dict[str, float]):
        """Base score plus weight * factor for each recognised factor, clamped to [0, 1]."""
        rescored = []
        for r in results:
            score = r.score
            for name, weight in factor_weights.items():
                factor = self.factors.get(name)
                if factor is not None:
                    score += weight * factor(r.item)
            rescored.append(ScoredResult(r.item, max(0.0, min(1.0, score))))
        return sort_by_score(rescored)

    def diversity_filter(self, results: Sequence[ScoredResult[T]], threshold: float, max_results: int):
        """Greedy: accept in order unless too similar to something already accepted."""
        selected: List[ScoredResult[T]] = []
        for candidate in results:
            if max_results > 0 and len(selected) >= max_results:
                break
            if all(content_similarity(candidate.item, s.item) <= threshold for s in selected):
                selected.append(candidate)
        return selected
