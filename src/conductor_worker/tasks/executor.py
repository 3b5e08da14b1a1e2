# src/conductor_worker/tasks/executor.py

from __future__ import annotations

"""
Task executor.

Runs a worker on one polled task and turns whatever happens into a TaskResult:
- normal return           -> the worker's own status/output/logs
- NonRetryableError       -> FAILED_WITH_TERMINAL_ERROR (server never retries)
- any other exception     -> FAILED (server retries per task definition)

Failures are never re-raised: the scheduler always has a result to report.
"""

import inspect
import json
import logging
import time
from typing import Any, Mapping

from ..core.errors import NonRetryableError
from ..core.ports import TaskErrorHandler, Worker
from .events import EventDispatcher, TaskExecutionCompleted, TaskExecutionFailure, TaskExecutionStarted
from .task_models import Task, TaskOutput, TaskResult, TaskResultStatus

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "An unknown error occurred"


def _error_message(exc: BaseException) -> str:
    return str(exc).strip() or type(exc).__name__ or DEFAULT_ERROR_MESSAGE


def failure_result(task: Task, exc: BaseException, *, worker_id: str = "") -> TaskResult:
    """FAILED (or FAILED_WITH_TERMINAL_ERROR for NonRetryableError) result carrying the error message."""
    message = _error_message(exc)
    if isinstance(exc, NonRetryableError):
        status = TaskResultStatus.FAILED_WITH_TERMINAL_ERROR
    else:
        status = TaskResultStatus.FAILED
    return TaskResult(
        task_id=task.task_id,
        workflow_instance_id=task.workflow_instance_id,
        status=status,
        output_data={},
        logs=(message,),
        reason_for_incompletion=message,
        worker_id=worker_id or None,
    )


def _coerce_output(raw: Any) -> TaskOutput:
    if isinstance(raw, TaskOutput):
        return raw
    if raw is None:
        return TaskOutput()
    if isinstance(raw, Mapping):
        return TaskOutput(output_data=dict(raw))
    raise TypeError(f"Worker returned unsupported value of type {type(raw).__name__}")


def _output_size(output_data: Mapping[str, Any]) -> int | None:
    try:
        return len(json.dumps(output_data, default=str))
    except (TypeError, ValueError):
        return None


class TaskExecutor:
    def __init__(
            self,
            *,
            on_error: TaskErrorHandler | None = None,
            events: EventDispatcher | None = None,
    ) -> None:
        self.on_error = on_error
        self.events = events or EventDispatcher()

    async def run(self, worker: Worker, task: Task, *, worker_id: str = "") -> TaskResult:
        name = worker.task_def_name
        started = time.monotonic()

        await self.events.publish(
            TaskExecutionStarted(
                task_type=name,
                task_id=task.task_id,
                worker_id=worker_id,
                workflow_instance_id=task.workflow_instance_id,
            )
        )

        try:
            raw = worker.execute(task)
            if inspect.isawaitable(raw):
                raw = await raw
            output = _coerce_output(raw)
            result = TaskResult(
                task_id=task.task_id,
                workflow_instance_id=task.workflow_instance_id,
                status=output.status,
                output_data=dict(output.output_data),
                logs=output.logs,
                worker_id=worker_id or None,
            )
        except Exception as exc:
            return await self._failed(worker, task, exc, worker_id=worker_id, started=started)

        duration_ms = (time.monotonic() - started) * 1000
        await self.events.publish(
            TaskExecutionCompleted(
                task_type=name,
                task_id=task.task_id,
                worker_id=worker_id,
                workflow_instance_id=task.workflow_instance_id,
                duration_ms=duration_ms,
                output_size_bytes=_output_size(output.output_data),
            )
        )
        logger.debug("Task %s (%s) executed in %.1fms", task.task_id, name, duration_ms)
        return result

    async def _failed(
            self,
            worker: Worker,
            task: Task,
            exc: Exception,
            *,
            worker_id: str,
            started: float,
    ) -> TaskResult:
        if isinstance(exc, NonRetryableError):
            logger.error("Task %s failed with terminal error (no retry): %s", task.task_id, _error_message(exc))
        else:
            logger.error("Error executing task %s (%s): %s", task.task_id, worker.task_def_name, _error_message(exc),
                         exc_info=exc)

        await self.events.publish(
            TaskExecutionFailure(
                task_type=worker.task_def_name,
                task_id=task.task_id,
                worker_id=worker_id,
                workflow_instance_id=task.workflow_instance_id,
                cause=exc,
                duration_ms=(time.monotonic() - started) * 1000,
            )
        )
        await self._call_error_hook(exc, task)
        return failure_result(task, exc, worker_id=worker_id)

    async def _call_error_hook(self, exc: BaseException, task: Task) -> None:
        if self.on_error is None:
            return
        try:
            result = self.on_error(exc, task)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Error handler failed for task %s", task.task_id)
