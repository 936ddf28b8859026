"""
Task queue interface.

The orchestrator only ever enqueues ``(task_name, {"job_id", "batch_number"})``;
how and when the task runs is up to the host.
"""

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class QueuedTask:
    task_name: str
    job_id: str
    batch_number: int


class Queue(ABC):
    @abstractmethod
    def enqueue(self, task_name: str, payload: dict[str, Any]) -> None:
        pass


class InMemoryQueue(Queue):
    """FIFO queue for in-process runs and tests."""

    def __init__(self):
        self._tasks: deque[QueuedTask] = deque()

    def enqueue(self, task_name: str, payload: dict[str, Any]) -> None:
        self._tasks.append(
            QueuedTask(task_name=task_name, job_id=payload["job_id"], batch_number=payload["batch_number"])
        )

    def pop(self) -> Optional[QueuedTask]:
        return self._tasks.popleft() if self._tasks else None

    @property
    def tasks(self) -> list[QueuedTask]:
        return list(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)
