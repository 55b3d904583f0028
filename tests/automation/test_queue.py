"""Tests for the execution queue."""

import threading

import pytest

from store_workflows.automation.queue import ExecutionQueue, QueuedExecution
from store_workflows.core.exceptions import QueueFullError


class TestExecutionQueue:
    """FIFO hand-out with one active item per workflow."""

    def test_fifo_across_workflows(self):
        queue = ExecutionQueue()
        items = [QueuedExecution("wf-a"), QueuedExecution("wf-b")]
        for item in items:
            queue.put(item)

        assert queue.get(timeout=0) is items[0]
        assert queue.get(timeout=0) is items[1]

    def test_busy_workflow_is_skipped_until_task_done(self):
        queue = ExecutionQueue()
        first, second, other = (
            QueuedExecution("wf-a"),
            QueuedExecution("wf-a"),
            QueuedExecution("wf-b"),
        )
        for item in (first, second, other):
            queue.put(item)

        assert queue.get(timeout=0) is first
        assert queue.get(timeout=0) is other
        assert queue.get(timeout=0) is None

        queue.task_done(first)

        assert queue.get(timeout=0) is second

    def test_maxsize_rejects(self):
        queue = ExecutionQueue(maxsize=1)
        queue.put(QueuedExecution("wf-a"))

        with pytest.raises(QueueFullError):
            queue.put(QueuedExecution("wf-b"))

        assert queue.get_stats()["total_rejected"] == 1

    def test_closed_queue_refuses_and_releases_waiters(self):
        queue = ExecutionQueue()
        results = []
        waiter = threading.Thread(target=lambda: results.append(queue.get(timeout=5)))
        waiter.start()

        queue.close()
        waiter.join(timeout=5)

        assert results == [None]
        with pytest.raises(QueueFullError):
            queue.put(QueuedExecution("wf-a"))

    def test_get_blocks_until_put(self):
        queue = ExecutionQueue()
        item = QueuedExecution("wf-a")
        results = []
        waiter = threading.Thread(target=lambda: results.append(queue.get(timeout=5)))
        waiter.start()

        queue.put(item)
        waiter.join(timeout=5)

        assert results == [item]

    def test_remove_waiting_item(self):
        queue = ExecutionQueue()
        item = QueuedExecution("wf-a")
        queue.put(item)

        assert queue.remove(item.id) is item
        assert queue.remove(item.id) is None
        assert queue.qsize() == 0

    def test_pending_for_and_stats(self):
        queue = ExecutionQueue()
        for workflow_id in ("wf-a", "wf-b", "wf-a"):
            queue.put(QueuedExecution(workflow_id))
        queue.get(timeout=0)

        assert len(queue.pending_for("wf-a")) == 1
        assert queue.get_stats() == {
            "total_enqueued": 3,
            "total_dequeued": 1,
            "total_rejected": 0,
            "current_size": 2,
            "active_workflows": 1,
        }
