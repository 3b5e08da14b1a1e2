# src/conductor_worker/tasks/manager.py

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import replace
from typing import Any, Iterable, Mapping

from ..config import ConfigResolver, EnvSource, PollingOptions, WorkerConfig, as_polling_options
from ..core.errors import ConductorWorkerError, ConfigurationError
from ..core.ports import TaskClient, TaskErrorHandler, Worker
from .events import EventDispatcher
from .executor import TaskExecutor
from .registry import build_worker_registry
from .reporter import ResultReporter
from .task_models import TaskDef
from .task_scheduler import SchedulerState, WorkerScheduler
from .worker import registered_workers

logger = logging.getLogger(__name__)

OptionsInput = PollingOptions | Mapping[str, Any] | None


class TaskManager:
    """
    Runs one WorkerScheduler per registered worker.

    Typical use:

        async with ConductorClient.from_env() as client:
            manager = TaskManager(client, [send_email, resize_image], {"concurrency": 4})
            await manager.start_polling()
            ...
            await manager.stop_polling()

    Options may be PollingOptions or a mapping (snake- or camel-case keys).
    Environment variables (see config.py) override anything set in code.
    """

    def __init__(
            self,
            client: TaskClient,
            workers: Iterable[Worker],
            options: OptionsInput = None,
            *,
            env: EnvSource | None = None,
            on_error: TaskErrorHandler | None = None,
            event_listeners: Iterable[Any] = (),
            log: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.workers = build_worker_registry(list(workers))
        self.log = log or logger
        self.resolver = ConfigResolver(env if env is not None else EnvSource.from_environ(), log=self.log)
        self.events = EventDispatcher(event_listeners)

        self._options = as_polling_options(options)
        self._worker_overrides: dict[str, PollingOptions] = {
            name: as_polling_options(getattr(w, "options", None)) for name, w in self.workers.items()
        }

        executor = TaskExecutor(on_error=on_error, events=self.events)
        reporter = ResultReporter(client)
        default_worker_id = socket.gethostname()

        self._schedulers: dict[str, WorkerScheduler] = {
            name: WorkerScheduler(
                worker,
                self._resolve(name),
                client=client,
                executor=executor,
                reporter=reporter,
                events=self.events,
                default_worker_id=default_worker_id,
                log=self.log,
            )
            for name, worker in self.workers.items()
        }

    @classmethod
    def from_registered(
            cls,
            client: TaskClient,
            workers: Iterable[Worker] = (),
            options: OptionsInput = None,
            **kwargs: Any,
    ) -> TaskManager:
        """Build a manager from every @worker_task-declared worker plus any extra `workers`."""
        discovered = registered_workers()
        extra = list(workers)
        logger.info("Discovered %d declared worker(s), %d supplied directly", len(discovered), len(extra))
        return cls(client, [*discovered, *extra], options, **kwargs)

    @property
    def is_polling(self) -> bool:
        return any(s.is_running for s in self._schedulers.values())

    @property
    def options(self) -> WorkerConfig:
        """Manager-wide options over built-in defaults (environment not applied)."""
        return self.resolver.resolve_defaults(self._options)

    def worker_config(self, name: str) -> WorkerConfig:
        return self._scheduler(name).config

    @property
    def schedulers(self) -> Mapping[str, WorkerScheduler]:
        return dict(self._schedulers)

    async def start_polling(self) -> None:
        if self.is_polling:
            self.log.debug("TaskManager is already polling; start_polling ignored")
            return

        # A stop_polling() still draining must finish before the loops restart.
        for scheduler in self._schedulers.values():
            if scheduler.state is SchedulerState.STOPPING:
                await scheduler.wait_stopped()

        await self._register_task_defs()
        for scheduler in self._schedulers.values():
            if not scheduler.start() and not scheduler.is_running:
                raise ConductorWorkerError(f"TaskWorker {scheduler.name} could not be started")

    async def stop_polling(self) -> None:
        await asyncio.gather(*(s.stop() for s in self._schedulers.values()))

    def update_polling_options(self, partial: OptionsInput) -> None:
        """
        Merge `partial` into the manager-wide options and re-resolve every worker.

        Fields a worker overrides itself keep the worker's value.
        """
        self._options = self._options.merged(partial)
        for name, scheduler in self._schedulers.items():
            scheduler.apply_config(self._resolve(name))

    def update_polling_option_for_worker(self, name: str, partial: OptionsInput) -> None:
        scheduler = self._scheduler(name)
        self._worker_overrides[name] = self._worker_overrides[name].merged(partial)
        if scheduler.apply_config(self._resolve(name)):
            cfg = scheduler.config
            self.log.info(
                "TaskWorker %s configuration updated with concurrency of %s and poll interval of %s",
                name, cfg.concurrency, f"{cfg.poll_interval:g}",
            )

    def _resolve(self, name: str) -> WorkerConfig:
        return self.resolver.resolve(name, self._options, self._worker_overrides[name])

    def _scheduler(self, name: str) -> WorkerScheduler:
        try:
            return self._schedulers[name]
        except KeyError:
            raise ConfigurationError(f"No worker registered for taskDefName: {name}") from None

    async def _register_task_defs(self) -> None:
        for name, scheduler in self._schedulers.items():
            config = scheduler.config
            if not config.register_task_def:
                continue

            task_def = getattr(scheduler.worker, "task_def", None) or TaskDef(name=name)
            if config.strict_schema and not task_def.enforce_schema:
                task_def = replace(task_def, enforce_schema=True)

            try:
                await self.client.register_task_defs([task_def], overwrite=config.overwrite_task_def)
            except Exception:
                logger.exception("Failed to register task definition for %s", name)
