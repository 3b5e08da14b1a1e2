# src/conductor_worker/core/errors.py

"""
Exception types raised by the worker runtime.

Worker code only needs NonRetryableError; the rest are raised by the runtime
itself (configuration problems, non-2xx answers from the server).
"""

from __future__ import annotations


class ConductorWorkerError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ConductorWorkerError):
    """Invalid worker set or an update that names an unknown worker."""


class NonRetryableError(ConductorWorkerError):
    """
    Raise from a worker's execute() to fail the task permanently.

    The task is reported as FAILED_WITH_TERMINAL_ERROR and the server will not
    retry it, whatever retry_count its task definition carries. Use it for
    failures that a retry cannot fix:
    - validation errors in the task input
    - missing entities
    - permission problems
    """


class ConductorAPIError(ConductorWorkerError):
    """Non-2xx response from the Conductor server."""

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429
