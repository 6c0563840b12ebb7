"""
Bounded retry for rate-limited HTTP endpoints.

The retry loop is an explicit state machine:

    ATTEMPT(n) -> SUCCESS
               -> RATE_LIMITED -> (backoff) -> ATTEMPT(n + 1)
               -> FAILURE

``transition`` is pure so the retry cap and the backoff source can be tested
without any I/O; ``execute`` drives it against a real request callable.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from ..providers.base import APIError, RetryExhaustedError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_AFTER_SECONDS = 60


class RetryPhase(Enum):
    ATTEMPT = "attempt"
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    FAILURE = "failure"


@dataclass(frozen=True)
class RetryState:
    phase: RetryPhase
    attempt: int
    retry_after: int | None = None
    response: httpx.Response | None = None
    error: Exception | None = None


class BoundedRetry:
    """Retry policy honoring a vendor retry-after header on HTTP 429."""

    def __init__(
        self,
        retry_after_header: str,
        max_retries: int = DEFAULT_MAX_RETRIES,
        default_retry_after: int = DEFAULT_RETRY_AFTER_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        provider: str | None = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.retry_after_header = retry_after_header
        self.max_retries = max_retries
        self.default_retry_after = default_retry_after
        self.sleep = sleep
        self.provider = provider

    def retry_after_seconds(self, response: httpx.Response) -> int:
        """Backoff hint from the vendor header, or the default."""
        raw = response.headers.get(self.retry_after_header)
        if raw is None:
            return self.default_retry_after
        try:
            return max(int(raw), 0)
        except ValueError:
            logger.debug(f"Unparseable {self.retry_after_header} header {raw!r}, using default")
            return self.default_retry_after

    def transition(self, state: RetryState, response: httpx.Response | None = None) -> RetryState:
        """Compute the next state from the current one and the latest response."""
        if state.phase is RetryPhase.ATTEMPT:
            if response is None:
                raise ValueError("An ATTEMPT transition needs a response")
            if response.status_code == 200:
                return RetryState(RetryPhase.SUCCESS, state.attempt, response=response)
            if response.status_code == 429:
                if state.attempt >= self.max_retries:
                    return RetryState(
                        RetryPhase.FAILURE,
                        state.attempt,
                        error=RetryExhaustedError(attempts=state.attempt, provider=self.provider),
                    )
                return RetryState(
                    RetryPhase.RATE_LIMITED,
                    state.attempt,
                    retry_after=self.retry_after_seconds(response),
                )
            return RetryState(
                RetryPhase.FAILURE,
                state.attempt,
                error=APIError(response.text, status_code=response.status_code, provider=self.provider),
            )

        if state.phase is RetryPhase.RATE_LIMITED:
            return RetryState(RetryPhase.ATTEMPT, state.attempt + 1)

        raise ValueError(f"No transition out of terminal phase {state.phase.value}")

    async def execute(self, send: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        """
        Run ``send`` until it succeeds, fails, or the retry cap is hit.

        Returns:
            The first 200 response

        Raises:
            RetryExhaustedError: If every attempt was rate limited
            APIError: On any other non-200 response, with the body as message
        """
        state = RetryState(RetryPhase.ATTEMPT, attempt=1)
        while True:
            if state.phase is RetryPhase.ATTEMPT:
                state = self.transition(state, await send())
            elif state.phase is RetryPhase.RATE_LIMITED:
                logger.warning(
                    f"Hit {self.provider or 'provider'} rate limit, retrying after {state.retry_after} seconds "
                    f"(attempt {state.attempt}/{self.max_retries})"
                )
                await self.sleep(state.retry_after)
                state = self.transition(state)
            elif state.phase is RetryPhase.SUCCESS:
                return state.response
            else:
                raise state.error
