"""Admission order for pending tasks: highest priority first, FIFO among equals."""
from typing import Callable, List, Optional, Tuple
import heapq

from ..models import TaskStatus, UploadTask


class PendingQueue:
    """
    Heap of pending tasks.

    Entries go stale when a task is cancelled, removed or re-prioritized;
    pop() skips them, so callers never have to delete from the heap.
    """

    def __init__(self):
        self._heap: List[Tuple[int, int, str]] = []

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, task: UploadTask) -> None:
        heapq.heappush(self._heap, (-task.priority, task.sequence, task.id))

    def pop(self, lookup: Callable[[str], Optional[UploadTask]]) -> Optional[UploadTask]:
        """Return the next admissible task, or None when nothing is pending."""
        while self._heap:
            neg_priority, _, task_id = heapq.heappop(self._heap)
            task = lookup(task_id)
            if task is None or task.status != TaskStatus.PENDING:
                continue
            if -neg_priority != task.priority:
                continue
            return task
        return None

    def clear(self) -> None:
        self._heap.clear()
