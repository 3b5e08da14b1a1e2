# src/conductor_worker/tasks/task_scheduler.py

from __future__ import annotations

"""
Per-worker scheduler.

A small polling loop that, every poll_interval:
- computes free concurrency slots (concurrency - in_flight),
- batch-polls up to that many tasks for its task type,
- starts one asyncio task per polled task (execute, then report),
- never waits for those executions before the next tick.

The config is an immutable WorkerConfig snapshot. The loop reads it once per
tick; apply_config() swaps the reference and wakes the interval wait when the
interval changed. stop() is graceful: no new polls, in-flight work drains and
is still reported.
"""

import asyncio
import logging
import time
from enum import Enum

from ..config import WorkerConfig, config_oneline
from ..core.ports import TaskClient, Worker
from .events import EventDispatcher, PollCompleted, PollFailure, PollStarted, TaskUpdateFailure
from .executor import TaskExecutor, failure_result
from .reporter import ResultReporter
from .task_models import Task

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class WorkerScheduler:
    def __init__(
            self,
            worker: Worker,
            config: WorkerConfig,
            *,
            client: TaskClient,
            executor: TaskExecutor,
            reporter: ResultReporter,
            events: EventDispatcher | None = None,
            default_worker_id: str = "",
            log: logging.Logger | None = None,
    ) -> None:
        self.worker = worker
        self.client = client
        self.executor = executor
        self.reporter = reporter
        self.events = events or EventDispatcher()
        self.default_worker_id = default_worker_id
        self.log = log or logger

        self._config = config
        self._state = SchedulerState.IDLE
        self._loop_task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._wake = asyncio.Event()
        self._stopped = asyncio.Event()

    @property
    def name(self) -> str:
        return self.worker.task_def_name

    @property
    def config(self) -> WorkerConfig:
        return self._config

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> bool:
        """Start the poll loop. Returns False if it is already running or stopping."""
        if self._state not in (SchedulerState.IDLE, SchedulerState.STOPPED):
            return False

        self._state = SchedulerState.RUNNING
        self._stopped.clear()
        self._wake.clear()
        self._loop_task = asyncio.create_task(self._run(), name=f"worker-loop:{self.name}")

        cfg = self._config
        self.log.info(
            "TaskWorker %s initialized with concurrency of %s and poll interval of %s",
            self.name, cfg.concurrency, f"{cfg.poll_interval:g}",
        )
        self.log.debug("%s", config_oneline(self.name, cfg))
        return True

    def apply_config(self, config: WorkerConfig) -> bool:
        """Swap the config snapshot. Returns True if anything changed; logging is up to the caller."""
        old = self._config
        if config == old:
            return False

        self._config = config
        if config.poll_interval != old.poll_interval:
            # Cut the current interval wait short so the new interval applies now.
            self._wake.set()
        return True

    async def stop(self) -> None:
        if self._state is SchedulerState.STOPPED:
            return
        if self._state is SchedulerState.IDLE:
            self._state = SchedulerState.STOPPED
            self._stopped.set()
            return
        if self._state is SchedulerState.STOPPING:
            await self._stopped.wait()
            return

        self._state = SchedulerState.STOPPING
        self._wake.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        self._state = SchedulerState.STOPPED
        self._stopped.set()
        self.log.info("TaskWorker %s stopped", self.name)

    async def wait_stopped(self) -> None:
        """Wait until a stop() in progress has drained. Returns at once unless STOPPING."""
        if self._state is SchedulerState.STOPPING:
            await self._stopped.wait()

    async def _run(self) -> None:
        while self._state is SchedulerState.RUNNING:
            self._wake.clear()
            config = self._config

            if not config.paused:
                try:
                    await self._tick(config)
                except Exception:
                    logger.exception("Poll tick failed worker=%s", self.name)

            if self._state is not SchedulerState.RUNNING:
                break

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=config.poll_interval / 1000.0)
            except asyncio.TimeoutError:
                pass

    async def _tick(self, config: WorkerConfig) -> None:
        free = config.concurrency - len(self._in_flight)
        if free <= 0:
            return

        worker_id = config.worker_id or self.default_worker_id
        await self.events.publish(PollStarted(task_type=self.name, worker_id=worker_id, poll_count=free))
        started = time.monotonic()

        try:
            tasks = await self.client.batch_poll(
                self.name,
                worker_id=worker_id or None,
                domain=config.domain,
                count=free,
                timeout_ms=config.poll_timeout,
            )
        except Exception as exc:
            logger.exception("Batch poll failed worker=%s", self.name)
            await self.events.publish(
                PollFailure(task_type=self.name, duration_ms=(time.monotonic() - started) * 1000, cause=exc)
            )
            return

        tasks = list(tasks or [])
        await self.events.publish(
            PollCompleted(
                task_type=self.name,
                duration_ms=(time.monotonic() - started) * 1000,
                tasks_received=len(tasks),
            )
        )

        if len(tasks) > free:
            logger.warning(
                "Server returned %d tasks for %s but only %d slots are free; dropping the extra",
                len(tasks), self.name, free,
            )
            tasks = tasks[:free]

        for task in tasks:
            self._dispatch(task, worker_id)

    def _dispatch(self, task: Task, worker_id: str) -> None:
        if not task.task_id or not task.workflow_instance_id:
            logger.error(
                "Task missing required fields: workflowInstanceId=%s, taskId=%s",
                task.workflow_instance_id, task.task_id,
            )
            return

        running = asyncio.create_task(
            self._execute_and_report(task, worker_id),
            name=f"worker-task:{self.name}:{task.task_id}",
        )
        self._in_flight.add(running)
        running.add_done_callback(self._in_flight.discard)

    async def _execute_and_report(self, task: Task, worker_id: str) -> None:
        try:
            result = await self.executor.run(self.worker, task, worker_id=worker_id)
        except Exception as exc:
            logger.exception("Executor failed for task_id=%s worker=%s", task.task_id, self.name)
            result = failure_result(task, exc, worker_id=worker_id)

        try:
            await self.reporter.report(result)
        except Exception as exc:
            logger.exception(
                "Task update failed, result LOST for task_id=%s worker=%s", task.task_id, self.name
            )
            await self.events.publish(
                TaskUpdateFailure(
                    task_type=self.name,
                    task_id=task.task_id,
                    worker_id=worker_id,
                    workflow_instance_id=task.workflow_instance_id,
                    cause=exc,
                    task_result=result,
                )
            )
