"""Task completion events.

The service publishes a TaskCompletedEvent once the completing transaction
has committed. Delivery is handed off: with an executor the listeners run on
a worker thread, and the HTTP layer defers publishing to FastAPI background
tasks. Listeners are best-effort: a listener that raises is logged and the
remaining listeners still run. Nothing here reports back to the caller of
the completion operation.
"""

import functools
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional

from .schemas import TaskOut

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskCompletedEvent:
    completed_tasks: List[TaskOut]
    username: str

    @property
    def task_ids(self) -> List[int]:
        return [t.id for t in self.completed_tasks]


Listener = Callable[[TaskCompletedEvent], None]


class CompletionPublisher:
    def __init__(self, listeners: Optional[List[Listener]] = None, executor: Optional[Executor] = None):
        self._listeners: List[Listener] = list(listeners or [])
        self._executor = executor

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def publish(self, event: TaskCompletedEvent):
        """Deliver event to every listener, on the executor when one is set."""
        if self._executor is None:
            self.deliver(event)
        else:
            self._executor.submit(self.deliver, event)

    def deliver(self, event: TaskCompletedEvent):
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Completion listener %r failed for user %s, tasks %s",
                    listener, event.username, event.task_ids,
                )

    def shutdown(self, wait: bool = True):
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


def log_task_completion(event: TaskCompletedEvent):
    logger.info("Task completion event received for user: %s", event.username)
    logger.info(
        "%d task(s) completed: %s",
        len(event.completed_tasks), [t.title for t in event.completed_tasks],
    )


@functools.lru_cache(maxsize=None)
def default_publisher() -> CompletionPublisher:
    """Process-wide publisher that logs completions on a worker thread."""
    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="task-completion")
    return CompletionPublisher([log_task_completion], executor=executor)
