"""In-memory execution queue with per-workflow exclusivity."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..core.exceptions import QueueFullError
from ..core.logger import get_logger
from .models import new_id, utcnow

logger = get_logger("automation.queue")


@dataclass
class QueuedExecution:
    """A triggered execution waiting for a worker."""

    workflow_id: str
    trigger_data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    enqueued_at: datetime = field(default_factory=utcnow)


class ExecutionQueue:
    """Bounded FIFO queue handing out at most one item per workflow at a time.

    ``get`` returns the oldest item whose workflow has no item checked out.
    Items of a busy workflow stay queued in their original order, so each
    workflow's executions run one at a time in enqueue order while other
    workflows proceed in parallel. Workers must call ``task_done`` when an
    item finishes.

    The queue lives in memory only: items not yet handed out are lost on
    restart.
    """

    def __init__(self, maxsize: int = 0) -> None:
        """Initialize the queue.

        Args:
            maxsize: Maximum queued items, 0 for unbounded
        """
        self.maxsize = maxsize
        self._items: deque[QueuedExecution] = deque()
        self._active: set[str] = set()
        self._closed = False
        self._cond = threading.Condition()
        self._stats = {
            "total_enqueued": 0,
            "total_dequeued": 0,
            "total_rejected": 0,
        }

    def put(self, item: QueuedExecution) -> None:
        """Append an item.

        Raises:
            QueueFullError: If the queue is at capacity or closed
        """
        with self._cond:
            if self._closed:
                raise QueueFullError("Execution queue is closed")
            if self.maxsize and len(self._items) >= self.maxsize:
                self._stats["total_rejected"] += 1
                raise QueueFullError(f"Execution queue is full ({self.maxsize} items)")
            self._items.append(item)
            self._stats["total_enqueued"] += 1
            self._cond.notify_all()
        logger.debug(
            "Queued execution %s for workflow %s (size=%d)",
            item.id,
            item.workflow_id,
            len(self._items),
        )

    def _eligible_index(self) -> int | None:
        for index, item in enumerate(self._items):
            if item.workflow_id not in self._active:
                return index
        return None

    def get(self, timeout: float | None = None) -> QueuedExecution | None:
        """Take the oldest item whose workflow is idle.

        Returns:
            The item, or None on timeout or once the queue is closed
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed:
                    return None
                index = self._eligible_index()
                if index is not None:
                    item = self._items[index]
                    del self._items[index]
                    self._active.add(item.workflow_id)
                    self._stats["total_dequeued"] += 1
                    return item
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)

    def task_done(self, item: QueuedExecution) -> None:
        """Release the item's workflow so its next item can be handed out."""
        with self._cond:
            self._active.discard(item.workflow_id)
            self._cond.notify_all()

    def close(self) -> None:
        """Wake all waiting workers and refuse new items."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def qsize(self) -> int:
        with self._cond:
            return len(self._items)

    def pending_for(self, workflow_id: str) -> list[QueuedExecution]:
        with self._cond:
            return [item for item in self._items if item.workflow_id == workflow_id]

    def remove(self, item_id: str) -> QueuedExecution | None:
        """Drop a queued item that has not been handed out yet.

        Returns:
            The removed item, or None if no such item is waiting
        """
        with self._cond:
            for item in self._items:
                if item.id == item_id:
                    self._items.remove(item)
                    return item
        return None

    def get_stats(self) -> dict[str, Any]:
        with self._cond:
            return {
                **self._stats,
                "current_size": len(self._items),
                "active_workflows": len(self._active),
            }


__all__ = ["ExecutionQueue", "QueuedExecution"]
