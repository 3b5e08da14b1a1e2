# src/conductor_worker/tasks/events.py

"""
Lifecycle events published by the schedulers.

Listeners are plain objects implementing any subset of:
    on_poll_started, on_poll_completed, on_poll_failure,
    on_task_execution_started, on_task_execution_completed,
    on_task_execution_failure, on_task_update_failure

Each hook receives the matching event dataclass and may be sync or async.
A listener that raises is logged and skipped; it never affects polling.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from .task_models import TaskResult

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True, kw_only=True)
class TaskRunnerEvent:
    task_type: str
    timestamp: datetime = field(default_factory=_utcnow)

    hook_name = ""


@dataclass(slots=True, frozen=True, kw_only=True)
class PollStarted(TaskRunnerEvent):
    worker_id: str
    poll_count: int

    hook_name = "on_poll_started"


@dataclass(slots=True, frozen=True, kw_only=True)
class PollCompleted(TaskRunnerEvent):
    duration_ms: float
    tasks_received: int

    hook_name = "on_poll_completed"


@dataclass(slots=True, frozen=True, kw_only=True)
class PollFailure(TaskRunnerEvent):
    duration_ms: float
    cause: BaseException

    hook_name = "on_poll_failure"


@dataclass(slots=True, frozen=True, kw_only=True)
class TaskExecutionStarted(TaskRunnerEvent):
    task_id: str
    worker_id: str
    workflow_instance_id: str | None = None

    hook_name = "on_task_execution_started"


@dataclass(slots=True, frozen=True, kw_only=True)
class TaskExecutionCompleted(TaskRunnerEvent):
    task_id: str
    worker_id: str
    duration_ms: float
    workflow_instance_id: str | None = None
    output_size_bytes: int | None = None

    hook_name = "on_task_execution_completed"


@dataclass(slots=True, frozen=True, kw_only=True)
class TaskExecutionFailure(TaskRunnerEvent):
    task_id: str
    worker_id: str
    cause: BaseException
    duration_ms: float
    workflow_instance_id: str | None = None

    hook_name = "on_task_execution_failure"


@dataclass(slots=True, frozen=True, kw_only=True)
class TaskUpdateFailure(TaskRunnerEvent):
    """The task ran but its result could not be delivered; the result is lost."""

    task_id: str
    worker_id: str
    cause: BaseException
    task_result: TaskResult
    workflow_instance_id: str | None = None

    hook_name = "on_task_update_failure"


class EventDispatcher:
    def __init__(self, listeners: Iterable[Any] = ()) -> None:
        self._listeners: list[Any] = list(listeners)

    def register(self, listener: Any) -> None:
        self._listeners.append(listener)

    def unregister(self, listener: Any) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def has_listeners(self) -> bool:
        return bool(self._listeners)

    async def publish(self, event: TaskRunnerEvent) -> None:
        for listener in list(self._listeners):
            hook = getattr(listener, event.hook_name, None)
            if not callable(hook):
                continue
            try:
                result = hook(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Event listener %r failed on %s", listener, type(event).__name__
                )
