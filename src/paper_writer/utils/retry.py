"""
Retry policy shared by the PubMed client and the chat orchestrator.

One configurable policy covers both the exponential backoff used against
NCBI and the flat delay used between LLM attempts.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """How many attempts to make and how long to wait between them."""

    max_attempts: int = Field(default=3, ge=1)  # total attempts, first included
    base_delay: float = Field(default=1.0, ge=0.0)  # seconds
    backoff_factor: float = Field(default=1.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0)  # seconds
    honor_retry_after: bool = False

    @classmethod
    def exponential(
        cls,
        max_retries: int = 2,
        base_delay: float = 0.4,
        max_delay: float = 2.0,
        backoff_factor: float = 2.0,
    ) -> "RetryPolicy":
        """Doubling backoff that defers to a server-supplied Retry-After."""
        return cls(
            max_attempts=max_retries + 1,
            base_delay=base_delay,
            backoff_factor=backoff_factor,
            max_delay=max_delay,
            honor_retry_after=True,
        )

    @classmethod
    def fixed(cls, max_attempts: int = 3, delay: float = 1.0) -> "RetryPolicy":
        """Same wait before every retry."""
        return cls(
            max_attempts=max_attempts,
            base_delay=delay,
            backoff_factor=1.0,
            max_delay=delay,
            honor_retry_after=False,
        )

    @property
    def max_retries(self) -> int:
        return self.max_attempts - 1

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """
        Seconds to wait before retry number ``attempt`` (1-based).

        A positive, finite ``retry_after`` wins when the policy honors it.
        """
        if (
            self.honor_retry_after
            and retry_after is not None
            and math.isfinite(retry_after)
            and retry_after > 0
        ):
            return retry_after
        return min(self.max_delay, self.base_delay * self.backoff_factor ** (attempt - 1))


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds; anything else is ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) and seconds > 0 else None


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds or the policy's attempts run out.

    Every ``Exception`` counts as a failed attempt.  The last one is
    re-raised unchanged once attempts are exhausted.  Cancellation is not
    an ``Exception`` and propagates immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if attempt >= policy.max_attempts:
                logger.error("%s failed after %d attempt(s): %s", label, attempt, e)
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s attempt %d/%d failed: %s; retrying in %.2fs",
                label,
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            await asyncio.sleep(delay)
