"""Conductor worker runtime: poll, execute and report tasks with asyncio."""

from .api.client import ConductorClient
from .api.retry import RateLimitRetryTransport, retry_on_rate_limit
from .config import ClientSettings, ConfigResolver, EnvSource, PollingOptions, WorkerConfig
from .core.errors import ConductorAPIError, ConductorWorkerError, ConfigurationError, NonRetryableError
from .logging_setup import setup_logging, setup_logging_from_settings
from .tasks.manager import TaskManager
from .tasks.task_models import Task, TaskDef, TaskOutput, TaskResult, TaskResultStatus
from .tasks.worker import FunctionWorker, clear_worker_registry, registered_workers, worker_task

__all__ = [
    "ClientSettings",
    "ConductorAPIError",
    "ConductorClient",
    "ConductorWorkerError",
    "ConfigResolver",
    "ConfigurationError",
    "EnvSource",
    "FunctionWorker",
    "NonRetryableError",
    "PollingOptions",
    "RateLimitRetryTransport",
    "Task",
    "TaskDef",
    "TaskManager",
    "TaskOutput",
    "TaskResult",
    "TaskResultStatus",
    "WorkerConfig",
    "clear_worker_registry",
    "registered_workers",
    "retry_on_rate_limit",
    "setup_logging",
    "setup_logging_from_settings",
    "worker_task",
]
