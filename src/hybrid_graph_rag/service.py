from __future__ import annotations
from typing import Optional, Sequence
import logging

from .answer_generator import AnswerGenerator
from .cache import InMemoryTTLCache
from .config import settings
from .context_fusion import ContextFusioner
from .embeddings import EmbeddingGateway
from .errors import Result
from .graph_store import GraphQueryExecutor, NetworkXGraphStore
from .graph_traverser import GraphTraverser
from .llm import LLMClient
from .orchestrator import PipelineOrchestrator, RetrievalOptions, build_pools
from .query_analyzer import QueryAnalyzer
from .ranking import ResultRanker
from .schemas import Document, Entity, StructuredAnswer
from .tasks import TaskStatus
from .vector_retriever import VectorRetriever

logger = logging.getLogger(__name__)


class GraphRAGService:
    """Wires the Ollama client, the configured graph backend and the pipeline together."""

    def __init__(self, llm: Optional[LLMClient] = None, executor: Optional[GraphQueryExecutor] = None):
        self.llm = llm or LLMClient()
        self.executor = executor or self._load_executor()

        query_pool, document_pool, embedding_pool = build_pools()
        self.cache = InMemoryTTLCache()
        self.embeddings = EmbeddingGateway(
            self.llm,
            pool=embedding_pool,
            timeout=settings.embedding_timeout_seconds,
            cache=self.cache,
        )
        self.orchestrator = PipelineOrchestrator(
            analyzer=QueryAnalyzer(self.llm, self.embeddings),
            vector_retriever=VectorRetriever(self.embeddings),
            traverser=GraphTraverser(self.executor),
            ranker=ResultRanker(),
            fusioner=ContextFusioner(self.embeddings),
            answer_generator=AnswerGenerator(self.llm, cache=self.cache),
            query_pool=query_pool,
            document_pool=document_pool,
            embedding_pool=embedding_pool,
        )

    @staticmethod
    def _load_executor():
        if settings.graph_backend == "neo4j":
            from .neo4j_executor import Neo4jGraphExecutor

            return Neo4jGraphExecutor()

        path = settings.graph_store_path
        if path.exists():
            try:
                return NetworkXGraphStore.load(path)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load graph store %s: %s", path, e)
        return NetworkXGraphStore()

    def _options(self, documents: Sequence[Document], entities: Sequence[Entity]):
        return RetrievalOptions(documents=tuple(documents), entities=tuple(entities))

    def answer(
        self,
        question: str,
        documents: Sequence[Document] = (),
        entities: Sequence[Entity] = (),
    ) -> Result[StructuredAnswer]:
        return self.orchestrator.retrieve(question, self._options(documents, entities))

    def submit(self, question: str, documents: Sequence[Document] = (), entities: Sequence[Entity] = ()) -> str:
        return self.orchestrator.submit(question, self._options(documents, entities))

    def poll(self, task_id: str) -> TaskStatus:
        return self.orchestrator.poll(task_id)

    def close(self):
        self.orchestrator.shutdown()
        close = getattr(self.executor, "close", None)
        if close is not None:
            close()
