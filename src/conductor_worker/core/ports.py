# src/conductor_worker/core/ports.py

"""
Ports (interfaces) used by the scheduling engine.

The engine depends on Protocols instead of concrete implementations:
- Worker: the pluggable unit of work (one execute() method)
- TaskClient: the three server operations the engine needs
- TaskErrorHandler: optional hook called when a worker fails

ConductorClient (api/client.py) is the production TaskClient; tests use fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Sequence

if TYPE_CHECKING:
    from ..config import PollingOptions
    from ..tasks.task_models import Task, TaskDef, TaskOutput, TaskResult


class Worker(Protocol):
    """
    A named unit of work bound to one task type.

    execute() may be a coroutine function or a plain function. It returns a
    TaskOutput (or a dict of output data) and raises to signal failure.
    `options` carries per-worker overrides and may be None.
    """

    task_def_name: str
    options: PollingOptions | None

    def execute(self, task: Task) -> Awaitable[TaskOutput | dict[str, Any]] | TaskOutput | dict[str, Any]: ...


class TaskClient(Protocol):
    async def batch_poll(
            self,
            task_type: str,
            *,
            worker_id: str | None = None,
            domain: str | None = None,
            count: int = 1,
            timeout_ms: float = 100,
    ) -> list[Task]: ...

    async def update_task(self, result: TaskResult) -> str: ...

    async def register_task_defs(self, task_defs: Sequence[TaskDef], *, overwrite: bool = True) -> None: ...


TaskErrorHandler = Callable[[BaseException, "Task | None"], Any]
# Called as handler(error, task). May return an awaitable.
