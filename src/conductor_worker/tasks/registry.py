# src/conductor_worker/tasks/registry.py

from __future__ import annotations

from typing import Iterable

from ..core.errors import ConfigurationError
from ..core.ports import Worker


def build_worker_registry(workers: Iterable[Worker]) -> dict[str, Worker]:
    """
    Validate workers and index them by task type name.

    Raises ConfigurationError on an empty list or on the first duplicate
    name (scanning first to last).
    """
    registry: dict[str, Worker] = {}
    for worker in workers:
        name = worker.task_def_name
        if name in registry:
            raise ConfigurationError(f"Duplicate worker taskDefName: {name}")
        registry[name] = worker

    if not registry:
        raise ConfigurationError("No workers supplied to TaskManager")
    return registry
