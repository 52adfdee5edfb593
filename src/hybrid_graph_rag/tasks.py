"""
Async submit / poll registry.

Tasks live in a plain dict keyed by a fresh uuid4 string: inserting a new id and
looking one up are single dict operations, so unrelated tasks never wait on each
other. Finished tasks are evicted once they are older than ``ttl``. A task whose
caller stops polling still runs to completion.
"""
from __future__ import annotations
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging
import time
import uuid

from .errors import Result, TaskNotFoundError
from .schemas import StructuredAnswer
from .workers import WorkerPool

logger = logging.getLogger(__name__)

RUNNING = "running"
DONE = "done"
FAILED = "failed"


@dataclass(frozen=True)
class TaskStatus:
    task_id: str
    state: str
    stage: Optional[str] = None
    answer: Optional[StructuredAnswer] = None
    error: Optional[str] = None


class _Task:
    def __init__(self, task_id: str, stage: str):
        self.task_id = task_id
        self.stage = stage
        self.future: Optional[Future] = None
        self.finished_at: Optional[float] = None


class TaskRegistry:
    def __init__(
        self,
        pool: WorkerPool,
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
        initial_stage: str = "submitted",
    ):
        self.pool = pool
        self.ttl = ttl
        self._clock = clock
        self._initial_stage = initial_stage
        self._tasks: Dict[str, _Task] = {}

    def submit(self, fn: Callable[[str, Callable[[str], None]], Any]) -> str:
        """
        Run ``fn(task_id, report_stage)`` on the runner pool and return the id at once.
        ``fn`` may return a ``Result``: a failed one marks the task failed.
        """
        self._evict_expired()
        task_id = str(uuid.uuid4())
        task = _Task(task_id, self._initial_stage)

        def report_stage(stage: str):
            task.stage = stage

        # registered only once the pool accepted it
        future = self.pool.submit(fn, task_id, report_stage)
        task.future = future
        self._tasks[task_id] = task
        future.add_done_callback(lambda f: self._finished(task, f))
        logger.info("Task %s submitted", task_id)
        return task_id

    def _finished(self, task: _Task, future: Future):
        task.finished_at = self._clock()
        if future.exception() is not None:
            logger.error("Task %s failed: %s", task.task_id, future.exception())

    def poll(self, task_id: str) -> TaskStatus:
        self._evict_expired()
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"unknown or expired task id: {task_id}")

        future = task.future
        if future is None or not future.done():
            return TaskStatus(task_id=task_id, state=RUNNING, stage=task.stage)

        error = future.exception()
        if error is not None:
            return TaskStatus(task_id=task_id, state=FAILED, stage=task.stage, error=str(error))
        value = future.result()
        if isinstance(value, Result):
            if not value.ok:
                return TaskStatus(task_id=task_id, state=FAILED, stage=task.stage, error=value.reason)
            value = value.value
        return TaskStatus(task_id=task_id, state=DONE, stage=task.stage, answer=value)

    def _evict_expired(self):
        cutoff = self._clock() - self.ttl
        for task_id, task in list(self._tasks.items()):
            if task.finished_at is not None and task.finished_at < cutoff:
                self._tasks.pop(task_id, None)
                logger.debug("Evicted finished task %s", task_id)

    def __len__(self):
        return len(self._tasks)
