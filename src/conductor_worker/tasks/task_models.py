# src/conductor_worker/tasks/task_models.py

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping


class TaskResultStatus(StrEnum):
    """
    Statuses a worker may report back to the server.

    Notes:
    - FAILED is subject to the task definition's retry policy (server side).
    - FAILED_WITH_TERMINAL_ERROR is never retried.
    """

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    FAILED_WITH_TERMINAL_ERROR = "FAILED_WITH_TERMINAL_ERROR"


@dataclass(slots=True, frozen=True)
class Task:
    """A polled work item. Owned by the server; the runtime only reads it."""

    task_id: str
    workflow_instance_id: str
    task_type: str
    input_data: dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    poll_count: int = 0
    worker_id: str | None = None
    domain: str | None = None

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> Task:
        return cls(
            task_id=str(raw.get("taskId") or ""),
            workflow_instance_id=str(raw.get("workflowInstanceId") or ""),
            task_type=str(raw.get("taskType") or raw.get("taskDefName") or ""),
            input_data=dict(raw.get("inputData") or {}),
            retry_count=int(raw.get("retryCount") or 0),
            poll_count=int(raw.get("pollCount") or 0),
            worker_id=raw.get("workerId"),
            domain=raw.get("domain"),
        )


@dataclass(slots=True, frozen=True)
class TaskOutput:
    """
    What a worker's execute() returns.

    A worker may also return a plain dict; it is treated as the output data
    of a COMPLETED task.
    """

    status: TaskResultStatus = TaskResultStatus.COMPLETED
    output_data: dict[str, Any] = field(default_factory=dict)
    logs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept plain strings ("COMPLETED") from worker code.
        object.__setattr__(self, "status", TaskResultStatus(self.status))
        object.__setattr__(self, "output_data", dict(self.output_data or {}))
        object.__setattr__(self, "logs", tuple(self.logs))


@dataclass(slots=True, frozen=True)
class TaskResult:
    task_id: str
    workflow_instance_id: str
    status: TaskResultStatus
    output_data: dict[str, Any] = field(default_factory=dict)
    logs: tuple[str, ...] = ()
    reason_for_incompletion: str | None = None
    worker_id: str | None = None

    def to_api(self) -> dict[str, Any]:
        """Serialize to the server's camelCase TaskResult body."""
        now_ms = int(time.time() * 1000)
        body: dict[str, Any] = {
            "taskId": self.task_id,
            "workflowInstanceId": self.workflow_instance_id,
            "status": self.status.value,
            "outputData": dict(self.output_data),
            "logs": [
                {"taskId": self.task_id, "log": line, "createdTime": now_ms}
                for line in self.logs
            ],
        }
        if self.reason_for_incompletion is not None:
            body["reasonForIncompletion"] = self.reason_for_incompletion
        if self.worker_id is not None:
            body["workerId"] = self.worker_id
        return body


@dataclass(slots=True, frozen=True)
class TaskDef:
    """Minimal task definition used when a worker registers its task type."""

    name: str
    description: str = ""
    retry_count: int = 3
    timeout_seconds: int = 3600
    response_timeout_seconds: int = 600
    owner_email: str | None = None
    input_schema: dict[str, Any] | None = None
    output_schema: dict[str, Any] | None = None
    enforce_schema: bool = False

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "name": self.name,
            "description": self.description or self.name,
            "retryCount": self.retry_count,
            "timeoutSeconds": self.timeout_seconds,
            "responseTimeoutSeconds": self.response_timeout_seconds,
            "enforceSchema": self.enforce_schema,
        }
        if self.owner_email:
            body["ownerEmail"] = self.owner_email
        if self.input_schema is not None:
            body["inputSchema"] = self.input_schema
        if self.output_schema is not None:
            body["outputSchema"] = self.output_schema
        return body
