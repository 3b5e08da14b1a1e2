# src/conductor_worker/tasks/reporter.py

from __future__ import annotations

import logging

from ..core.ports import TaskClient
from .task_models import TaskResult

logger = logging.getLogger(__name__)


class ResultReporter:
    """
    Sends task results back to the server.

    Rate limiting is handled by the client's transport (see api/retry.py).
    Anything else raises to the caller: a result is reported once, never
    retried here.
    """

    def __init__(self, client: TaskClient) -> None:
        self.client = client

    async def report(self, result: TaskResult) -> str:
        ack = await self.client.update_task(result)
        logger.debug("Reported task %s as %s", result.task_id, result.status.value)
        return ack
