"""Shared in-memory fakes for the pipeline tests."""

import threading
from typing import Dict, List, Optional, Sequence

import pytest

from hybrid_graph_rag.embeddings import EmbeddingGateway
from hybrid_graph_rag.graph_store import NetworkXGraphStore
from hybrid_graph_rag.schemas import Entity, Relation


class FakeEmbeddingProvider:
    """Looks vectors up by exact text; unknown text gets ``default``."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default: Sequence[float] = (0.0, 0.0, 1.0)):
        self.vectors = dict(vectors or {})
        self.default = list(default)
        self.query_calls: List[str] = []
        self.batch_calls: List[List[str]] = []

    def embed_query(self, text: str) -> List[float]:
        self.query_calls.append(text)
        return list(self.vectors.get(text, self.default))

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.batch_calls.append(list(texts))
        return [list(self.vectors.get(t, self.default)) for t in texts]


class FailingEmbeddingProvider:
    def embed_query(self, text: str) -> List[float]:
        raise ConnectionError("embedding service down")

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        raise ConnectionError("embedding service down")


class FakeTextGenerator:
    """Returns scripted responses in order, then repeats the last one."""

    def __init__(self, responses: Sequence[str] = ("",), error: Optional[Exception] = None):
        self.responses = list(responses)
        self.error = error
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class BlockingTextGenerator(FakeTextGenerator):
    """Blocks every call until ``release`` is set."""

    def __init__(self, responses: Sequence[str] = ("",)):
        super().__init__(responses)
        self.release = threading.Event()

    def generate(self, prompt: str) -> str:
        self.release.wait(timeout=10)
        return super().generate(prompt)


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def gateway(provider: FakeEmbeddingProvider) -> EmbeddingGateway:
    return EmbeddingGateway(provider)


@pytest.fixture
def graph_store() -> NetworkXGraphStore:
    """
    Python -uses-> NumPy -part_of-> SciPy Stack
    Python -created_by-> Guido
    Pandas -uses-> NumPy
    """
    store = NetworkXGraphStore()
    store.upsert_entity(Entity(id="py", name="Python", type="LANGUAGE", description="A programming language", embedding=[1.0, 0.0, 0.0]))
    store.upsert_entity(Entity(id="np", name="NumPy", type="LIBRARY", description="Array computing", embedding=[0.9, 0.1, 0.0]))
    store.upsert_entity(Entity(id="pd", name="Pandas", type="LIBRARY", embedding=[0.0, 1.0, 0.0]))
    store.upsert_entity(Entity(id="guido", name="Guido", type="PERSON"))
    store.upsert_entity(Entity(id="scipy", name="SciPy Stack", type="ECOSYSTEM"))
    store.add_relation(Relation("Python", "NumPy", "uses", "numerical arrays", weight=0.9))
    store.add_relation(Relation("NumPy", "SciPy Stack", "part_of", weight=0.6))
    store.add_relation(Relation("Python", "Guido", "created_by", weight=0.4))
    store.add_relation(Relation("Pandas", "NumPy", "uses", weight=0.8))
    return store
