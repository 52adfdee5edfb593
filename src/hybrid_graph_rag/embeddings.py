from __future__ import annotations
import logging
import math
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional, Sequence

from .cache import Cache
from .errors import InvalidArgumentError, TransientDependencyError
from .llm import EmbeddingProvider
from .workers import WorkerPool

logger = logging.getLogger(__name__)


class EmbeddingGateway:
    """
    Front door to the embedding provider.

    Calls run on the (small) embedding pool when one is given and are bounded
    by ``timeout``; any provider failure surfaces as TransientDependencyError.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        pool: Optional[WorkerPool] = None,
        timeout: Optional[float] = None,
        cache: Optional[Cache] = None,
        cache_ttl: float = 3600.0,
    ):
        self.provider = provider
        self.pool = pool
        self.timeout = timeout
        self.cache = cache
        self.cache_ttl = cache_ttl

    def _call(self, fn: Callable, arg, what: str):
        try:
            if self.pool is None:
                return fn(arg)
            return self.pool.submit(fn, arg).result(timeout=self.timeout)
        except FutureTimeoutError as e:
            raise TransientDependencyError(f"{what} timed out after {self.timeout}s") from e
        except TransientDependencyError:
            raise
        except Exception as e:
            raise TransientDependencyError(f"{what} failed: {e}") from e

    def embed(self, text: str) -> List[float]:
        if self.cache is not None:
            cached = self.cache.get(f"embed:{text}")
            if cached is not None:
                return cached
        vector = self._call(self._embed_one, text, "embedding")
        logger.debug("Embedded text (%d chars) into %d dims", len(text), len(vector))
        if self.cache is not None:
            self.cache.put(f"embed:{text}", vector, self.cache_ttl)
        return vector

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        if not texts:
            return []
        vectors = self._call(self._embed_many, texts, "batch embedding")
        if len(vectors) != len(texts):
            raise TransientDependencyError(
                f"batch embedding returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    # coerced inside _call: malformed provider output becomes TransientDependencyError
    def _embed_one(self, text: str):
        return [float(x) for x in self.provider.embed_query(text)]

    def _embed_many(self, texts: List[str]):
        return [[float(x) for x in v] for v in self.provider.embed_texts(texts)]

    @staticmethod
    def cosine(v1: Sequence[float], v2: Sequence[float]) -> float:
        if len(v1) != len(v2):
            raise InvalidArgumentError(
                f"vector dimensions do not match: {len(v1)} != {len(v2)}"
            )
        dot = sum(a * b for a, b in zip(v1, v2))
        norm1 = math.sqrt(sum(a * a for a in v1))
        norm2 = math.sqrt(sum(b * b for b in v2))
        if norm1 == 0.0 or norm2 == 0.0:
            return 0.0
        # clamp float drift so cos(a, a) never exceeds 1
        return max(-1.0, min(1.0, dot / (norm1 * norm2)))

    def find_most_similar(self, query: Sequence[float], vectors: Sequence[Sequence[float]]) -> int:
        best_index, best_score = -1, -math.inf
        for i, vector in enumerate(vectors):
            score = self.cosine(query, vector)
            if score > best_score:
                best_index, best_score = i, score
        return best_index

    def top_k_similar(self, query: Sequence[float], vectors: Sequence[Sequence[float]], k: int) -> List[int]:
        scored = [(i, self.cosine(query, v)) for i, v in enumerate(vectors)]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [i for i, _ in scored[: max(0, k)]]
