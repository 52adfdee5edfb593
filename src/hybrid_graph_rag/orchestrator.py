"""
Request pipeline:

    analyze -> (vector retrieval || graph traversal) -> rank(vector) -> join -> fuse -> generate

The driver for a request runs on the caller's thread (``retrieve``) or on the
task registry's runner pool (``submit``); stage work is handed to the query and
document pools and embedding calls to the embedding pool inside the gateway.
A driver never waits on the pool it runs on.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence
import logging

from .answer_generator import AnswerGenerator
from .config import settings
from .context_fusion import ContextFusioner
from .errors import GraphRAGError, Result
from .graph_traverser import GraphTraverser, relations_from_paths
from .query_analyzer import QueryAnalyzer
from .ranking import RankingConfig, ResultRanker
from .schemas import Document, Entity, QueryAnalysis, StructuredAnswer
from .tasks import TaskRegistry, TaskStatus
from .vector_retriever import VectorRetriever
from .workers import Deadline, WorkerPool

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    SUBMITTED = "submitted"
    ANALYZING = "analyzing"
    RETRIEVING = "retrieving"
    RANKING = "ranking"
    FUSING = "fusing"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


def default_ranking_config():
    return RankingConfig(
        min_relevance_threshold=settings.ranking_min_relevance,
        diversity_threshold=settings.ranking_diversity_threshold,
        max_results=settings.ranking_max_results,
    )


@dataclass
class RetrievalOptions:
    """Per-request inputs. The candidate pools are read-only snapshots for this request."""

    documents: Sequence[Document] = ()
    entities: Sequence[Entity] = ()
    vector_top_k: int = field(default_factory=lambda: settings.vector_top_k)
    graph_max_hops: int = field(default_factory=lambda: settings.graph_max_hops)
    graph_max_results: int = field(default_factory=lambda: settings.graph_max_results)
    ranking: RankingConfig = field(default_factory=default_ranking_config)
    timeout: Optional[float] = field(default_factory=lambda: settings.pipeline_timeout_seconds)


def build_pools():
    return (
        WorkerPool("query", settings.query_pool_workers, settings.query_pool_queue),
        WorkerPool("document", settings.document_pool_workers, settings.document_pool_queue),
        WorkerPool("embedding", settings.embedding_pool_workers, settings.embedding_pool_queue),
    )


class PipelineOrchestrator:
    def __init__(
        self,
        analyzer: QueryAnalyzer,
        vector_retriever: VectorRetriever,
        traverser: GraphTraverser,
        ranker: ResultRanker,
        fusioner: ContextFusioner,
        answer_generator: AnswerGenerator,
        query_pool: Optional[WorkerPool] = None,
        document_pool: Optional[WorkerPool] = None,
        embedding_pool: Optional[WorkerPool] = None,
        task_registry: Optional[TaskRegistry] = None,
    ):
        self.analyzer = analyzer
        self.vector_retriever = vector_retriever
        self.traverser = traverser
        self.ranker = ranker
        self.fusioner = fusioner
        self.answer_generator = answer_generator

        self.query_pool = query_pool or WorkerPool(
            "query", settings.query_pool_workers, settings.query_pool_queue
        )
        self.document_pool = document_pool or WorkerPool(
            "document", settings.document_pool_workers, settings.document_pool_queue
        )
        self.embedding_pool = embedding_pool or WorkerPool(
            "embedding", settings.embedding_pool_workers, settings.embedding_pool_queue
        )
        self.tasks = task_registry or TaskRegistry(
            WorkerPool("task-runner", settings.task_runner_workers, settings.task_runner_queue),
            ttl=settings.task_ttl_seconds,
            initial_stage=PipelineState.SUBMITTED.value,
        )

    # Entry points

    def retrieve(
        self,
        question: str,
        options: Optional[RetrievalOptions] = None,
        on_stage: Optional[Callable[[str], None]] = None,
        task_id: Optional[str] = None,
    ) -> Result[StructuredAnswer]:
        options = options or RetrievalOptions()
        report = on_stage or (lambda stage: None)
        label = task_id or "sync"
        deadline = Deadline(options.timeout)
        try:
            answer = self._run(question, options, deadline, report, label)
        except GraphRAGError as e:
            report(PipelineState.FAILED.value)
            logger.error("Pipeline %s failed [%s]: %s", label, e.error_code, e)
            return Result.failure(e)
        except Exception as e:
            report(PipelineState.FAILED.value)
            logger.exception("Pipeline %s failed unexpectedly", label)
            return Result.failure(GraphRAGError(f"unexpected pipeline failure: {e}", error_code="INTERNAL_ERROR"))
        report(PipelineState.DONE.value)
        return Result.success(answer)

    def submit(self, question: str, options: Optional[RetrievalOptions] = None) -> str:
        return self.tasks.submit(
            lambda task_id, report: self.retrieve(question, options, on_stage=report, task_id=task_id)
        )

    def poll(self, task_id: str) -> TaskStatus:
        return self.tasks.poll(task_id)

    # Stages

    def _run(self, question, options: RetrievalOptions, deadline: Deadline, report, label):
        report(PipelineState.ANALYZING.value)
        deadline.check("analysis")
        analysis: QueryAnalysis = deadline.wait(
            self.query_pool.submit(self.analyzer.analyze, question), "analysis"
        )

        report(PipelineState.RETRIEVING.value)
        deadline.check("retrieval")
        queries = list(dict.fromkeys([question, *analysis.expanded_queries]))
        vector_future = self.document_pool.submit(
            self.vector_retriever.multi_query, queries, list(options.documents), options.vector_top_k
        )
        graph_future = self.query_pool.submit(self._graph_stage, analysis, options)

        vector_results = deadline.wait(vector_future, "retrieval")
        report(PipelineState.RANKING.value)
        ranked = deadline.wait(
            self.query_pool.submit(self.ranker.rank, vector_results, options.ranking), "ranking"
        )

        report(PipelineState.FUSING.value)
        graph_rows = deadline.wait(graph_future, "fusion")
        relations = relations_from_paths(graph_rows)
        context = deadline.wait(
            self.query_pool.submit(
                self.fusioner.fuse,
                [r.item for r in ranked],
                list(options.entities),
                relations,
                question,
                analysis.query_vector,
            ),
            "fusion",
        )

        report(PipelineState.GENERATING.value)
        answer = deadline.wait(
            self.query_pool.submit(self.answer_generator.generate_structured, question, context, analysis),
            "generation",
        )
        logger.info(
            "Pipeline %s completed, sources: %d, confidence: %.3f",
            label, answer.source_count, answer.confidence,
        )
        return answer

    def _graph_stage(self, analysis: QueryAnalysis, options: RetrievalOptions) -> List[dict]:
        if not analysis.key_entities:
            return []
        return self.traverser.multi_hop(
            analysis.key_entities[0], options.graph_max_hops, options.graph_max_results
        )

    # Lifecycle

    def shutdown(self, wait: bool = True):
        for pool in (self.tasks.pool, self.query_pool, self.document_pool, self.embedding_pool):
            if not pool.closed:
                pool.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
        return False
