# src/conductor_worker/api/retry.py

"""Rate-limit backoff for outbound HTTP calls.

On HTTP 429 the request is re-sent after `delay`, doubling the delay after
every further 429, at most `retries` times. When the ceiling is reached the
last 429 response is handed back unchanged; the caller decides what to do
with it. Any other status, or a transport error, is returned/raised at once.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 5
DEFAULT_DELAY_SECONDS = 1.0

Sleep = Callable[[float], Awaitable[None]]


def _rate_limited(response: httpx.Response) -> bool:
    return response.status_code == 429


def _last_response(state: RetryCallState) -> httpx.Response:
    return state.outcome.result()


def _retry_strategy(retries: int, delay: float, sleep: Sleep, description: str) -> AsyncRetrying:
    """Create the 429 backoff strategy for one call."""

    async def discard_429(state: RetryCallState) -> None:
        logger.info(
            "Rate limited (429) on %s, retry %d/%d in %.2fs",
            description, state.attempt_number, retries, state.next_action.sleep,
        )
        await state.outcome.result().aclose()

    return AsyncRetrying(
        retry=retry_if_result(_rate_limited),
        wait=wait_exponential(multiplier=delay, exp_base=2, min=0, max=delay * 2 ** max(retries - 1, 0)),
        stop=stop_after_attempt(retries + 1),
        sleep=sleep,
        before_sleep=discard_429,
        retry_error_callback=_last_response,
    )


async def retry_on_rate_limit(
        send: Callable[[], Awaitable[httpx.Response]],
        *,
        retries: int = DEFAULT_RETRIES,
        delay: float = DEFAULT_DELAY_SECONDS,
        sleep: Sleep = asyncio.sleep,
        description: str = "request",
) -> httpx.Response:
    """Call `send()` until it returns something other than 429 or retries run out."""
    retrying = _retry_strategy(max(0, int(retries)), max(0.0, float(delay)), sleep, description)
    return await retrying(send)


class RateLimitRetryTransport(httpx.AsyncBaseTransport):
    """httpx transport wrapper applying retry_on_rate_limit to every request."""

    def __init__(
            self,
            inner: httpx.AsyncBaseTransport | None = None,
            *,
            retries: int = DEFAULT_RETRIES,
            delay: float = DEFAULT_DELAY_SECONDS,
            sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.inner = inner or httpx.AsyncHTTPTransport()
        self.retries = max(0, int(retries))
        self.delay = max(0.0, float(delay))
        self.sleep = sleep

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        # Request bodies built from bytes/json are replayable, so the same
        # Request object can be sent again.
        return await retry_on_rate_limit(
            functools.partial(self.inner.handle_async_request, request),
            retries=self.retries,
            delay=self.delay,
            sleep=self.sleep,
            description=f"{request.method} {request.url.path}",
        )

    async def aclose(self) -> None:
        await self.inner.aclose()
