"""Error taxonomy and the tagged result type returned by the pipeline.

Leaf components prefer a degraded (empty/default) value over raising; only
dependency failures and programmer errors travel up as exceptions, and the
orchestrator turns those into a failed ``Result``.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class GraphRAGError(Exception):
    error_code = "GRAPH_RAG_ERROR"

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        if error_code:
            self.error_code = error_code


class TransientDependencyError(GraphRAGError):
    """An embedding, graph or generation call failed after its own retries."""

    error_code = "DEPENDENCY_UNAVAILABLE"


class PipelineTimeoutError(TransientDependencyError):
    """The request deadline expired (or it was cancelled) at a blocking boundary."""

    error_code = "PIPELINE_TIMEOUT"


class InvalidArgumentError(GraphRAGError, ValueError):
    error_code = "INVALID_ARGUMENT"


class TaskNotFoundError(GraphRAGError, KeyError):
    error_code = "TASK_NOT_FOUND"

    def __str__(self):
        return self.args[0] if self.args else "task not found"


class ResultStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class Result(Generic[T]):
    status: ResultStatus
    value: Optional[T] = None
    error: Optional[GraphRAGError] = None
    reason: str = ""

    @property
    def ok(self):
        return self.status is not ResultStatus.FAILED

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(status=ResultStatus.OK, value=value)

    @staticmethod
    def degraded(value: T, reason: str) -> "Result[T]":
        return Result(status=ResultStatus.DEGRADED, value=value, reason=reason)

    @staticmethod
    def failure(error: GraphRAGError) -> "Result[T]":
        return Result(status=ResultStatus.FAILED, error=error, reason=str(error))

    def unwrap_or(self, default: T) -> T:
        if self.status is ResultStatus.FAILED or self.value is None:
            return default
        return self.value
