"""Tests for the async submit / poll registry."""

import threading
import time

import pytest

from hybrid_graph_rag.errors import GraphRAGError, Result, TaskNotFoundError
from hybrid_graph_rag.schemas import StructuredAnswer
from hybrid_graph_rag.tasks import DONE, FAILED, RUNNING, TaskRegistry
from hybrid_graph_rag.workers import WorkerPool

ANSWER = StructuredAnswer(main_answer="42", confidence=0.8, source_count=1, answer_type="short")


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def pool():
    pool = WorkerPool("task-runner", 2, 4)
    yield pool
    pool.shutdown()


def wait_finished(registry: TaskRegistry, task_id: str, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while registry._tasks[task_id].finished_at is None:
        assert time.monotonic() < deadline, "task did not finish in time"
        time.sleep(0.01)


class TestTaskRegistry:
    def test_unknown_id(self, pool) -> None:
        with pytest.raises(TaskNotFoundError, match="unknown or expired task id"):
            TaskRegistry(pool).poll("no-such-task")

    def test_running_then_done(self, pool) -> None:
        """Stages reported by the task show up while it runs; the answer once it is done."""
        registry = TaskRegistry(pool)
        release = threading.Event()

        def work(task_id, report):
            report("retrieving")
            release.wait(timeout=5)
            return Result.success(ANSWER)

        task_id = registry.submit(work)
        deadline = time.monotonic() + 5
        status = registry.poll(task_id)
        while status.stage != "retrieving" and time.monotonic() < deadline:
            time.sleep(0.01)
            status = registry.poll(task_id)
        assert status.state == RUNNING
        assert status.stage == "retrieving"

        release.set()
        wait_finished(registry, task_id)
        status = registry.poll(task_id)
        assert status.state == DONE
        assert status.answer == ANSWER
        assert status.error is None

    def test_ids_are_distinct(self, pool) -> None:
        registry = TaskRegistry(pool)
        ids = {registry.submit(lambda task_id, report: None) for _ in range(5)}
        assert len(ids) == 5
        assert len(registry) == 5

    def test_failed_result(self, pool) -> None:
        registry = TaskRegistry(pool)
        task_id = registry.submit(lambda task_id, report: Result.failure(GraphRAGError("graph down")))
        wait_finished(registry, task_id)
        status = registry.poll(task_id)
        assert status.state == FAILED
        assert status.error == "graph down"

    def test_raised_exception(self, pool) -> None:
        def work(task_id, report):
            raise RuntimeError("boom")

        registry = TaskRegistry(pool)
        task_id = registry.submit(work)
        wait_finished(registry, task_id)
        status = registry.poll(task_id)
        assert status.state == FAILED
        assert status.error == "boom"

    def test_finished_tasks_expire(self, pool) -> None:
        clock = FakeClock()
        registry = TaskRegistry(pool, ttl=60, clock=clock)
        task_id = registry.submit(lambda task_id, report: Result.success(ANSWER))
        wait_finished(registry, task_id)

        clock.now += 30
        assert registry.poll(task_id).state == DONE

        clock.now += 31
        with pytest.raises(TaskNotFoundError):
            registry.poll(task_id)
        assert len(registry) == 0

    def test_running_tasks_never_expire(self, pool) -> None:
        clock = FakeClock()
        registry = TaskRegistry(pool, ttl=1, clock=clock)
        release = threading.Event()
        task_id = registry.submit(lambda task_id, report: release.wait(timeout=5))

        clock.now += 100
        assert registry.poll(task_id).state == RUNNING
        release.set()

    def test_rejected_submission_leaves_no_entry(self) -> None:
        """A closed runner pool refuses the task and nothing is registered for it."""
        closed_pool = WorkerPool("task-runner", 1, 0)
        closed_pool.shutdown()
        registry = TaskRegistry(closed_pool)

        with pytest.raises(RuntimeError, match="shut down"):
            registry.submit(lambda task_id, report: None)
        assert len(registry) == 0
