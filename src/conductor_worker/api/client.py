# src/conductor_worker/api/client.py

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from ..config import ClientSettings
from ..core.errors import ConductorAPIError
from ..tasks.task_models import Task, TaskDef, TaskResult
from .retry import RateLimitRetryTransport, Sleep

logger = logging.getLogger(__name__)


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.is_success:
        return
    body = response.text[:500]
    message = f"{what} failed with HTTP {response.status_code}"
    raise ConductorAPIError(
        f"{message}: {body}" if body else message,
        status_code=response.status_code,
        body=body,
    )


class ConductorClient:
    """
    Async REST client for the three task-queue calls the workers need.

    Every request goes through RateLimitRetryTransport, so 429 answers are
    retried with exponential backoff before a ConductorAPIError is raised.
    One client is shared by all workers of a TaskManager.
    """

    def __init__(
            self,
            settings: ClientSettings,
            *,
            transport: httpx.AsyncBaseTransport | None = None,
            sleep: Sleep | None = None,
    ) -> None:
        self.settings = settings
        retry_kwargs: dict[str, Any] = {
            "retries": settings.rate_limit_retries,
            "delay": settings.rate_limit_delay_ms / 1000.0,
        }
        if sleep is not None:
            retry_kwargs["sleep"] = sleep

        self._http = httpx.AsyncClient(
            base_url=settings.server_url,
            timeout=httpx.Timeout(settings.http_timeout_seconds, connect=min(5.0, settings.http_timeout_seconds)),
            transport=RateLimitRetryTransport(transport, **retry_kwargs),
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_env(cls) -> ConductorClient:
        return cls(ClientSettings.from_env())

    async def __aenter__(self) -> ConductorClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def batch_poll(
            self,
            task_type: str,
            *,
            worker_id: str | None = None,
            domain: str | None = None,
            count: int = 1,
            timeout_ms: float = 100,
    ) -> list[Task]:
        params: dict[str, Any] = {"count": int(count), "timeout": int(timeout_ms)}
        if worker_id:
            params["workerid"] = worker_id
        if domain:
            params["domain"] = domain

        # Long poll: the server may hold the request for timeout_ms.
        read_timeout = self.settings.http_timeout_seconds + timeout_ms / 1000.0
        response = await self._http.get(
            f"/tasks/poll/batch/{task_type}",
            params=params,
            timeout=httpx.Timeout(read_timeout, connect=min(5.0, read_timeout)),
        )
        if response.status_code == 204:
            return []
        _raise_for_status(response, f"Batch poll for {task_type}")

        raw = response.json() if response.content else []
        return [Task.from_api(item) for item in raw or []]

    async def update_task(self, result: TaskResult) -> str:
        response = await self._http.post("/tasks", json=result.to_api())
        _raise_for_status(response, f"Update of task {result.task_id}")
        return response.text

    async def register_task_defs(self, task_defs: Sequence[TaskDef], *, overwrite: bool = True) -> None:
        body = [td.to_api() for td in task_defs]
        if overwrite:
            response = await self._http.put("/metadata/taskdefs", json=body)
        else:
            response = await self._http.post("/metadata/taskdefs", json=body)
        _raise_for_status(response, "Task definition registration")
        logger.info("Registered task definitions: %s", ", ".join(td.name for td in task_defs))
