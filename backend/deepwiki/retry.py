"""
DeepWiki Backend — Query Retry Wrapper
========================================

What:  Retries a database unit of work when the server closed the connection.
Why:   Managed Postgres (Neon) and poolers (PgBouncer) drop idle connections.
       The next query on such a connection fails even though an immediate
       retry on a fresh connection would succeed.
How:   tenacity's AsyncRetrying drives the attempt loop. Only errors whose
       `code` equals the configured sentinel are retried; everything else
       propagates untouched after the first attempt.
Who:   Owned by the Database client; every `Database.run()` goes through it.

Attempt loop (max_retries = 3):
    attempt 1 ── closed ──▶ log (1/3), sleep ──▶ attempt 2 ── closed ──▶ ...
    attempt 4 ── closed ──▶ RetryLimitExceeded
    any attempt ── other error ──▶ original error, unchanged
    any attempt ── success ──▶ result

Note:
    max_retries=0 still converts a closed-connection failure into
    RetryLimitExceeded. Callers can rely on one exception type for
    "the database kept dropping us".
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field, model_validator
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_none,
)
from tenacity.wait import wait_base

from deepwiki.exceptions import RetryLimitExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE class 08 "connection_failure": the code the Database client attaches
# to errors raised when the server has closed the connection.
SERVER_CLOSED_CONNECTION = "08006"

SleepFunc = Callable[[float], Awaitable[Any]]


class RetryOptions(BaseModel):
    """
    Immutable retry configuration.

    Attributes:
        max_retries: Retries allowed after the first failed attempt.
        backoff:     Pause between retries.
        backoff_min: Lower delay bound in milliseconds (inclusive).
        backoff_max: Upper delay bound in milliseconds (inclusive).
        error_code:  `code` value that marks a closed connection.
    """

    model_config = {"frozen": True}

    max_retries: int = Field(default=3, ge=0)
    backoff: bool = True
    backoff_min: int = Field(default=5, ge=0)
    backoff_max: int = Field(default=30, ge=0)
    error_code: str = SERVER_CLOSED_CONNECTION

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "RetryOptions":
        if self.backoff_min > self.backoff_max:
            raise ValueError(
                f"Minimum backoff ({self.backoff_min}ms) must not exceed "
                f"maximum backoff ({self.backoff_max}ms)"
            )
        return self


def is_connection_closed(exc: BaseException, code: str = SERVER_CLOSED_CONNECTION) -> bool:
    """True when the error exposes a `code` equal to the closed-connection sentinel."""
    return getattr(exc, "code", None) == code


class wait_random_ms(wait_base):
    """
    Uniform integer delay in [min_ms, max_ms], returned in seconds.

    Named like tenacity's own wait strategies so it reads naturally next to
    them. Re-sampled on every call, so every retry gets a fresh delay.
    """

    def __init__(self, min_ms: int, max_ms: int, rng: Optional[random.Random] = None):
        self.min_ms = min_ms
        self.max_ms = max_ms
        self._rng = rng or random

    def __call__(self, retry_state: RetryCallState) -> float:
        return self._rng.randint(self.min_ms, self.max_ms) / 1000


class QueryRetrier:
    """
    Wraps awaitable database operations with closed-connection retries.

    Stateless between calls: each `call()` builds its own AsyncRetrying, so the
    retry counter lives on that call's stack and concurrent calls never
    interfere. The only suspension point is the backoff sleep, which
    suspends the calling task alone.

    Args:
        options: Retry configuration (defaults: 3 retries, 5-30ms backoff).
        sleep:   Awaitable delay function taking seconds. Tests pass a recorder.
        rng:     Random source for backoff sampling.
    """

    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.options = options or RetryOptions()
        self._sleep = sleep
        self._rng = rng

    async def call(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run `operation(*args, **kwargs)`, retrying closed-connection failures.

        Returns:
            Whatever the operation returns on its first successful attempt.

        Raises:
            RetryLimitExceeded: max_retries + 1 attempts all hit a closed connection.
            Exception: Any other error from the operation, unchanged.
        """
        opts = self.options
        retrying = AsyncRetrying(
            sleep=self._pause,
            retry=retry_if_exception(lambda exc: is_connection_closed(exc, opts.error_code)),
            stop=stop_after_attempt(opts.max_retries + 1),
            wait=(
                wait_random_ms(opts.backoff_min, opts.backoff_max, self._rng)
                if opts.backoff
                else wait_none()
            ),
            before_sleep=self._log_retry,
            retry_error_callback=self._give_up,
        )
        return await retrying(operation, *args, **kwargs)

    async def _pause(self, seconds: float) -> None:
        if self.options.backoff:
            await self._sleep(float(seconds))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "Database server closed the connection. Retrying (%d/%d)...",
            retry_state.attempt_number,
            self.options.max_retries,
        )

    def _give_up(self, retry_state: RetryCallState) -> Any:
        last_error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.error(
            "Database retry limit exceeded after %d attempts",
            retry_state.attempt_number,
        )
        raise RetryLimitExceeded(attempts=retry_state.attempt_number) from last_error
