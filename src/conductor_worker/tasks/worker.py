# src/conductor_worker/tasks/worker.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..config import PollingOptions
from .task_models import Task, TaskDef

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class FunctionWorker:
    """Worker built from a plain (sync or async) function."""

    task_def_name: str
    fn: Callable[[Task], Any]
    options: PollingOptions | None = None
    task_def: TaskDef | None = None

    def execute(self, task: Task) -> Any:
        return self.fn(task)


# Workers declared with @worker_task, keyed by (task_def_name, domain).
_REGISTERED: dict[tuple[str, str], FunctionWorker] = {}


def _registry_key(task_def_name: str, domain: str | None) -> tuple[str, str]:
    return task_def_name, domain or ""


def register_worker(worker: FunctionWorker) -> None:
    domain = worker.options.domain if worker.options else None
    key = _registry_key(worker.task_def_name, domain)
    if key in _REGISTERED:
        logger.warning(
            "Worker %r with domain %r is already registered; overwriting previous registration",
            worker.task_def_name, domain or "default",
        )
    _REGISTERED[key] = worker


def registered_workers() -> list[FunctionWorker]:
    """All workers declared with @worker_task, in declaration order."""
    return list(_REGISTERED.values())


def get_registered_worker(task_def_name: str, domain: str | None = None) -> FunctionWorker | None:
    return _REGISTERED.get(_registry_key(task_def_name, domain))


def clear_worker_registry() -> None:
    _REGISTERED.clear()


def worker_task(
        task_def_name: str,
        *,
        poll_interval: float | None = None,
        concurrency: int | None = None,
        domain: str | None = None,
        worker_id: str | None = None,
        poll_timeout: float | None = None,
        paused: bool | None = None,
        register_task_def: bool | None = None,
        overwrite_task_def: bool | None = None,
        strict_schema: bool | None = None,
        task_def: TaskDef | None = None,
        register: bool = True,
) -> Callable[[Callable[[Task], Any]], FunctionWorker]:
    """
    Decorator turning a function into a FunctionWorker.

        @worker_task("send_email", concurrency=4)
        async def send_email(task: Task) -> TaskOutput: ...

    The keyword arguments become the worker's per-worker overrides; the
    environment can still override them. The worker is also added to the
    module registry (see TaskManager.from_registered) unless register=False.
    """
    if not task_def_name:
        raise ValueError("worker_task requires a task_def_name")

    options = PollingOptions(
        poll_interval=poll_interval,
        concurrency=concurrency,
        domain=domain,
        worker_id=worker_id,
        poll_timeout=poll_timeout,
        paused=paused,
        register_task_def=register_task_def,
        overwrite_task_def=overwrite_task_def,
        strict_schema=strict_schema,
    )

    def decorate(fn: Callable[[Task], Any]) -> FunctionWorker:
        if not callable(fn):
            raise TypeError(f"worker_task can only decorate callables, got {type(fn).__name__}")
        worker = FunctionWorker(
            task_def_name=task_def_name,
            fn=fn,
            options=options if options.set_fields() else None,
            task_def=task_def,
        )
        if register:
            register_worker(worker)
        return worker

    return decorate
