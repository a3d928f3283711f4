"""
Bounded exponential backoff for whole-target operations.

The policy wraps an awaitable operation with tenacity: the delay before
retry ``k`` (0-based) is ``min(base_delay * 2**k, max_delay)``, multiplied by
a uniform factor in ``[0.85, 1.15]`` when jitter is enabled. Failures whose
``ErrorKind`` is resource exhaustion add a cooldown on top of the backoff.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from rankharvest.config.config import BrowserConfig
from rankharvest.errors import ErrorKind, HarvestError, error_kind
from rankharvest.observability.metrics import increment

logger = structlog.get_logger(__name__)

T = TypeVar("T")

JITTER_RANGE = (0.85, 1.15)


def default_is_retryable(exc: BaseException) -> bool:
    return error_kind(exc).retryable


@dataclass
class RetryPolicy:
    """Retry configuration plus the logic to apply it."""

    max_retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True
    resource_cooldown: float = 60.0
    is_retryable: Callable[[BaseException], bool] = default_is_retryable
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)
    last_attempts: int = field(default=0, init=False)

    @classmethod
    def from_config(cls, config: BrowserConfig, **overrides: Any) -> RetryPolicy:
        params: dict[str, Any] = dict(
            max_retries=config.max_retries,
            base_delay=config.retry_delay_ms / 1000,
            max_delay=config.max_retry_delay_ms / 1000,
            jitter=config.jitter,
            resource_cooldown=config.resource_cooldown_ms / 1000,
        )
        params.update(overrides)
        return cls(**params)

    def compute_delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0 for the first retry)."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay *= random.uniform(*JITTER_RANGE)
        return delay

    def _wait(self, retry_state: RetryCallState) -> float:
        delay = self.compute_delay(retry_state.attempt_number - 1)
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if exc is not None and error_kind(exc) is ErrorKind.RESOURCE_EXHAUSTED:
            delay += self.resource_cooldown
        return delay

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        kind = error_kind(exc) if exc is not None else ErrorKind.TRANSIENT
        increment("retries", kind=kind.value)
        logger.warning(
            "Retrying operation",
            attempt=retry_state.attempt_number,
            max_retries=self.max_retries,
            delay=round(retry_state.upcoming_sleep, 3),
            error_kind=kind.value,
            error=str(exc),
        )

    async def call(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``operation`` until it succeeds, fails permanently or retries run out.

        The exception raised is always the last one the operation raised.
        When retries ran out it carries ``retry_exhausted = True`` and a note.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=self._before_sleep,
            sleep=self.sleep,
            reraise=True,
        )
        try:
            return await retrying(operation, *args, **kwargs)
        except Exception as exc:
            attempts = retrying.statistics.get("attempt_number", 1)
            if self.is_retryable(exc) and attempts > self.max_retries:
                _annotate_exhausted(exc, attempts)
                logger.error("Retries exhausted", attempts=attempts, error=str(exc))
            raise
        finally:
            self.last_attempts = retrying.statistics.get("attempt_number", 0)


def _annotate_exhausted(exc: Exception, attempts: int) -> None:
    exc.add_note(f"retry exhausted after {attempts} attempts")
    if isinstance(exc, HarvestError):
        exc.retry_exhausted = True
    else:
        try:
            setattr(exc, "retry_exhausted", True)
        except AttributeError:
            pass


async def with_retry(
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    **kwargs: Any,
) -> T:
    """Functional form of :meth:`RetryPolicy.call`."""
    return await (policy or RetryPolicy()).call(operation, *args, **kwargs)
