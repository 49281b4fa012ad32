"""ResilientEndpoint — retry with backoff across an ordered fallback chain."""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from taskteam.core.types import ChatMessage
from taskteam.endpoints.base import Endpoint
from taskteam.errors import TerminalProviderError, TransientProviderError
from taskteam.stats import UsageStats

logger = logging.getLogger(__name__)

ProgressCallback = Callable[..., None]

RATE_LIMIT_FLOOR = 5.0
TRANSIENT_NETWORK_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "ENOTFOUND"})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape, delays in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0


def error_status(error: BaseException) -> int | None:
    status = getattr(error, "status", None)
    if status is None:
        status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limited(error: BaseException | None) -> bool:
    if error is None:
        return False
    return error_status(error) == 429 or getattr(error, "code", None) == "rate_limit_exceeded"


def is_retryable(error: BaseException) -> bool:
    """Classify a failure.

    429, 5xx, and network failures are retryable; any other 4xx is not.
    An error without a status is assumed transient. Cancellation and other
    non-``Exception`` signals are never retried.
    """
    if not isinstance(error, Exception):
        return False
    if isinstance(error, (TransientProviderError, ConnectionError, TimeoutError)):
        return True
    if getattr(error, "code", None) in TRANSIENT_NETWORK_CODES:
        return True
    status = error_status(error)
    if status is None or status == 429:
        return True
    return not 400 <= status < 500


class ResilientEndpoint(Endpoint):
    """Composite endpoint over ``[primary, *fallbacks]``.

    Each endpoint gets up to ``max_retries + 1`` attempts through
    ``tenacity.AsyncRetrying``. Non-retryable failures move straight to the
    next endpoint. A success on any endpoint but the first emits one
    "fallback used" progress message. When every endpoint is exhausted a
    ``TerminalProviderError`` carrying the last failure is raised.

    If ``stats`` is given, every attempt is recorded against the endpoint name.
    """

    def __init__(
        self,
        endpoints: Sequence[Endpoint],
        *,
        policy: RetryPolicy | None = None,
        on_progress: ProgressCallback | None = None,
        stats: UsageStats | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if not endpoints:
            raise ValueError("ResilientEndpoint needs at least one endpoint")
        self.endpoints = list(endpoints)
        self.policy = policy or RetryPolicy()
        self.on_progress = on_progress
        self.stats = stats
        self._sleep = sleep
        self._rng = rng
        self.name = self.endpoints[0].name

    def backoff_delay(self, retry: int, error: BaseException | None) -> float:
        """Delay before retry number *retry* (1-based)."""
        delay = self.policy.base_delay * self.policy.multiplier ** (retry - 1)
        if is_rate_limited(error):
            delay = max(delay, RATE_LIMIT_FLOOR) * 2
        delay += delay * 0.2 * (self._rng() - 0.5)
        return min(delay, self.policy.max_delay)

    def _wait(self, retry_state: RetryCallState) -> float:
        # attempt_number counts finished attempts, so it is the upcoming retry number
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return self.backoff_delay(retry_state.attempt_number, error)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Attempt %d/%d failed: %s; retrying in %.1fs",
            retry_state.attempt_number,
            self.policy.max_retries + 1,
            error,
            retry_state.upcoming_sleep,
        )

    async def _call(self, endpoint: Endpoint, transcript: list[ChatMessage]) -> str:
        started = time.monotonic()
        try:
            result = await endpoint.invoke(transcript)
        except Exception as e:
            if self.stats is not None:
                self.stats.record(endpoint.name, time.monotonic() - started, False, str(e))
            raise
        if self.stats is not None:
            self.stats.record(endpoint.name, time.monotonic() - started, True)
        return result

    async def _attempt(self, endpoint: Endpoint, transcript: list[ChatMessage]) -> str:
        """Call one endpoint, retrying retryable failures; re-raise the last one."""
        result = ""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_retries + 1),
            retry=retry_if_exception(is_retryable),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                result = await self._call(endpoint, transcript)
        return result

    async def invoke(self, transcript: list[ChatMessage]) -> str:
        last_error: Exception | None = None

        for index, endpoint in enumerate(self.endpoints):
            try:
                result = await self._attempt(endpoint, transcript)
            except Exception as e:
                last_error = e
                logger.warning("%s failed: %s", endpoint.name, e)
                if index < len(self.endpoints) - 1:
                    logger.warning("%s unavailable, switching to next endpoint", endpoint.name)
                continue

            if index > 0:
                message = f"Fallback used: {endpoint.name}"
                logger.info(message)
                if self.on_progress:
                    self.on_progress(message)
            return result

        raise TerminalProviderError(
            f"All endpoints failed: {last_error}", last_error=last_error
        ) from last_error
